"""Cursor pagination for every list endpoint."""

from taskroom.pagination.cursor import (
    Cursor,
    InvalidCursorError,
    Page,
    SortDirection,
    SortField,
    SortSpec,
    clamp_limit,
    paginate,
)

__all__ = [
    "Cursor",
    "InvalidCursorError",
    "Page",
    "SortDirection",
    "SortField",
    "SortSpec",
    "clamp_limit",
    "paginate",
]
