"""Pydantic schemas for tasks and comments.

Learn: Separate schemas for create/update/read keeps the API clean.
- TaskCreate: what you POST to create a task
- TaskUpdate: what you PATCH to modify a task (all optional, at least one)
- TaskRead: what the API returns (and what task:* events carry)
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

TASK_STATUS = r"^(OPEN|IN_PROGRESS|ON_HOLD|CLOSED)$"


# ─── Tasks ───────────────────────────────────────────────

class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(default="")
    assignee_id: Optional[uuid.UUID] = None

    model_config = {"str_strip_whitespace": True}


class TaskUpdate(BaseModel):
    """Partial update — only fields present in the body are applied.

    `assignee_id: null` unassigns; omitting it leaves the assignee alone.
    """
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[str] = Field(None, pattern=TASK_STATUS)
    assignee_id: Optional[uuid.UUID] = None

    model_config = {"str_strip_whitespace": True}

    @model_validator(mode="after")
    def require_one_field(self):
        if not self.model_fields_set:
            raise ValueError("At least one field is required for update")
        return self


class TaskRead(BaseModel):
    id: int
    project_id: int
    title: str
    description: str
    status: str
    assignee_id: Optional[uuid.UUID]
    created_by_id: uuid.UUID
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# ─── Comments ────────────────────────────────────────────

class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1)

    model_config = {"str_strip_whitespace": True}


class CommentUpdate(CommentCreate):
    pass


class CommentRead(BaseModel):
    id: int
    task_id: int
    author_id: uuid.UUID
    content: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

