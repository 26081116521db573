"""Pydantic schemas for accounts."""

import uuid
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class AccountCreate(BaseModel):
    """Profile for the verified identity making the request."""
    name: str = Field(..., min_length=1, max_length=100)
    gender: str = Field(..., pattern=r"^(MALE|FEMALE|OTHER|PREFER_NOT_TO_SAY)$")
    email: EmailStr

    model_config = {"str_strip_whitespace": True}


class AccountRead(BaseModel):
    id: uuid.UUID
    name: str
    email: str
    gender: str
    role: str
    created_at: datetime

    model_config = {"from_attributes": True}


class AccountBrief(BaseModel):
    """Embedded in member events and lookups — no profile details."""
    id: uuid.UUID
    name: str
    email: str

    model_config = {"from_attributes": True}
