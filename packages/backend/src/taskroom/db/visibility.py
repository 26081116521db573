"""Tombstone visibility filter.

Every read of projects, tasks, or comments applies `visible()` — the
paginator, the access guard's snapshot loader, search, and single-row
lookups all share this one predicate so no read path can surface a
soft-deleted row.
"""

from sqlalchemy import ColumnElement

from taskroom.db.models import Comment, Project, Task

SoftDeletable = type[Project] | type[Task] | type[Comment]


def visible(model: SoftDeletable) -> ColumnElement[bool]:
    """WHERE clause that hides tombstoned rows of `model`."""
    return model.deleted_at.is_(None)
