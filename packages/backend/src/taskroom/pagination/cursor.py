"""Cursor-based (keyset) pagination.

Learn: Offset pagination breaks as soon as rows are inserted or deleted
between two page fetches — items shift across the page boundary and are
either shown twice or skipped. Keyset pagination instead remembers the
last item's position and asks for "everything strictly after it".

Ordering is (sort column, id). The id is a monotonic integer, so no two
rows ever compare equal and the position of a cursor is unambiguous even
when many rows share a timestamp.

The cursor is an opaque base64url token:

    {"f": "createdAt", "d": "asc", "v": "<iso timestamp>", "id": 42}

It is stateless. A cursor stays valid after its anchor row is deleted:
"strictly after (v, id)" doesn't need the anchor to exist.

Limitation: only createdAt ordering is resumable. A row's updatedAt can
move while a client is walking the list, which would make it reappear
or vanish between pages. For updatedAt ordering next_cursor is always
null and cursors are refused; has_more still reports whether more rows
exist.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from sqlalchemy import Select, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from taskroom.config import settings
from taskroom.db.visibility import SoftDeletable, visible
from taskroom.errors import ValidationFailedError

T = TypeVar("T")


class InvalidCursorError(ValidationFailedError):
    """The cursor didn't decode, or was issued for a different ordering."""


class SortField(str, Enum):
    CREATED_AT = "createdAt"
    UPDATED_AT = "updatedAt"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


_COLUMNS = {
    SortField.CREATED_AT: "created_at",
    SortField.UPDATED_AT: "updated_at",
}


@dataclass(frozen=True)
class SortSpec:
    field: SortField = SortField.CREATED_AT
    direction: SortDirection = SortDirection.DESC

    @property
    def resumable(self) -> bool:
        return self.field == SortField.CREATED_AT

    def column(self, model: SoftDeletable):
        return getattr(model, _COLUMNS[self.field])

    def order_by(self, model: SoftDeletable) -> tuple:
        col = self.column(model)
        if self.direction == SortDirection.ASC:
            return col.asc(), model.id.asc()
        return col.desc(), model.id.desc()


@dataclass(frozen=True)
class Cursor:
    field: SortField
    direction: SortDirection
    value: datetime
    id: int

    def encode(self) -> str:
        raw = json.dumps(
            {
                "f": self.field.value,
                "d": self.direction.value,
                "v": self.value.isoformat(),
                "id": self.id,
            },
            separators=(",", ":"),
        )
        return base64.urlsafe_b64encode(raw.encode()).decode().rstrip("=")

    @classmethod
    def decode(cls, token: str) -> "Cursor":
        try:
            padded = token + "=" * (-len(token) % 4)
            data = json.loads(base64.urlsafe_b64decode(padded.encode()))
            last_id = data["id"]
            if not isinstance(last_id, int) or isinstance(last_id, bool):
                raise TypeError("id must be an integer")
            return cls(
                field=SortField(data["f"]),
                direction=SortDirection(data["d"]),
                value=datetime.fromisoformat(data["v"]),
                id=last_id,
            )
        except (binascii.Error, UnicodeDecodeError, ValueError, KeyError, TypeError):
            raise InvalidCursorError("Malformed pagination cursor")

    def matches(self, sort: SortSpec) -> bool:
        return self.field == sort.field and self.direction == sort.direction


@dataclass
class Page(Generic[T]):
    items: list[T]
    has_more: bool
    next_cursor: Optional[str] = None


def clamp_limit(limit: Optional[int]) -> int:
    """Clamp a requested page size to [1, pagination_max_limit]."""
    if limit is None:
        return settings.pagination_default_limit
    return max(1, min(int(limit), settings.pagination_max_limit))


def _after(model: SoftDeletable, sort: SortSpec, cursor: Cursor):
    """Rows strictly after (cursor.value, cursor.id) in `sort` order."""
    col = sort.column(model)
    if sort.direction == SortDirection.ASC:
        return or_(col > cursor.value, and_(col == cursor.value, model.id > cursor.id))
    return or_(col < cursor.value, and_(col == cursor.value, model.id < cursor.id))


async def paginate(
    db: AsyncSession,
    query: Select[Any],
    model: SoftDeletable,
    sort: SortSpec,
    cursor: Optional[str] = None,
    limit: Optional[int] = None,
) -> Page:
    """Fetch one page of `query` (a select over `model`).

    The tombstone filter is applied here, not by the caller, so no list
    endpoint can forget it.
    """
    size = clamp_limit(limit)
    query = query.where(visible(model))

    if cursor:
        if not sort.resumable:
            raise InvalidCursorError(
                f"Cursors are only supported when sorting by {SortField.CREATED_AT.value}"
            )
        position = Cursor.decode(cursor)
        if not position.matches(sort):
            raise InvalidCursorError("Cursor was issued for a different sort order")
        query = query.where(_after(model, sort, position))

    query = query.order_by(*sort.order_by(model)).limit(size + 1)
    rows = list((await db.execute(query)).scalars().all())

    has_more = len(rows) > size
    items = rows[:size]

    next_cursor = None
    if has_more and sort.resumable:
        last = items[-1]
        next_cursor = Cursor(
            field=sort.field,
            direction=sort.direction,
            value=getattr(last, _COLUMNS[sort.field]),
            id=last.id,
        ).encode()

    return Page(items=items, has_more=has_more, next_cursor=next_cursor)
