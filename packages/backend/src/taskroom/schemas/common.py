"""Shared response envelopes.

Learn: Every list endpoint returns the same shape:

    {"data": [...], "pagination": {"hasMore": bool, "nextCursor": str | null}}

The pagination keys are camelCase on the wire because clients pass
nextCursor straight back as the `cursor` query parameter.
"""

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

from taskroom.pagination import Page

T = TypeVar("T")


class Pagination(BaseModel):
    hasMore: bool
    nextCursor: Optional[str] = None


class Paginated(BaseModel, Generic[T]):
    data: list[T]
    pagination: Pagination

    @classmethod
    def from_page(cls, page: Page) -> "Paginated[T]":
        return cls(
            data=page.items,
            pagination=Pagination(hasMore=page.has_more, nextCursor=page.next_cursor),
        )
