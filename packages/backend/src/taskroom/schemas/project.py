"""Pydantic schemas for projects and membership.

Learn: Separate "Create" schemas (input) from "Read" schemas (output).
ProjectUpdate is partial — only fields present in the request body are
applied, and at least one must be present.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

PROJECT_STATUS = r"^(ACTIVE|ON_HOLD|COMPLETED|ARCHIVED)$"


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="")

    model_config = {"str_strip_whitespace": True}


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    status: Optional[str] = Field(None, pattern=PROJECT_STATUS)

    model_config = {"str_strip_whitespace": True}

    @model_validator(mode="after")
    def require_one_field(self):
        if not self.model_fields_set:
            raise ValueError("At least one field is required for update")
        return self


class MemberAdd(BaseModel):
    account_id: uuid.UUID


class ProjectRead(BaseModel):
    id: int
    name: str
    description: str
    status: str
    owner_id: uuid.UUID
    member_ids: list[uuid.UUID]
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
