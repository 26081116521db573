"""Pydantic schemas for global search results."""

from typing import Optional

from pydantic import BaseModel


class ProjectHit(BaseModel):
    id: int
    name: str
    description: str
    status: str


class TaskHit(BaseModel):
    id: int
    project_id: int
    title: str
    description: str
    status: str


class CommentHit(BaseModel):
    id: int
    task_id: int
    project_id: int
    content: str


class SearchResults(BaseModel):
    query: str
    projects: list[ProjectHit]
    tasks: list[TaskHit]
    comments: list[CommentHit]
    total: int
    limit: Optional[int] = None
