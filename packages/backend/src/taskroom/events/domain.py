"""Domain events and room addressing.

Learn: A DomainEvent is the contract between the mutation gateway
(services) and the broadcast core (realtime.rooms). It's transient —
produced once after a successful write, handed to the publisher, and
forgotten. Nothing here is persisted or replayed; REST reads remain the
source of truth.

Addressing rules:
- task and project events → project:<project_id>
- comment events → task:<task_id>
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Protocol

from taskroom.events import types


class RoomKind(str, Enum):
    PROJECT = "project"
    TASK = "task"


class InvalidRoomKeyError(ValueError):
    pass


@dataclass(frozen=True, order=True)
class RoomKey:
    kind: RoomKind
    id: int

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"

    @classmethod
    def project(cls, project_id: int) -> "RoomKey":
        return cls(RoomKind.PROJECT, int(project_id))

    @classmethod
    def task(cls, task_id: int) -> "RoomKey":
        return cls(RoomKind.TASK, int(task_id))

    @classmethod
    def parse(cls, raw: str) -> "RoomKey":
        """Parse "project:<id>" or "task:<id>"."""
        kind, sep, ident = str(raw).partition(":")
        if not sep:
            raise InvalidRoomKeyError(f"Malformed room key: {raw!r}")
        try:
            return cls(RoomKind(kind), int(ident))
        except ValueError:
            raise InvalidRoomKeyError(f"Malformed room key: {raw!r}")


@dataclass(frozen=True)
class DomainEvent:
    type: str
    room: RoomKey
    payload: dict[str, Any] = field(default_factory=dict)

    def to_frame(self) -> dict[str, Any]:
        """The JSON frame sent to subscribers."""
        return {"type": self.type, "room": str(self.room), "data": self.payload}


class EventPublisher(Protocol):
    """Anything that can fan a DomainEvent out to its room.

    revoke() drops subscribers whose read access a write just removed.
    """

    async def publish(self, event: DomainEvent) -> int: ...

    async def revoke(
        self,
        rooms: Iterable[RoomKey],
        account_id: Optional[uuid.UUID] = None,
        reason: str = "NOT_FOUND",
    ) -> int: ...


# ─── Factories ───────────────────────────────────────────
# Payloads are already JSON-ready dicts (schemas dumped with mode="json").


def task_created(project_id: int, task: dict) -> DomainEvent:
    return DomainEvent(types.TASK_CREATED, RoomKey.project(project_id), {"task": task})


def task_updated(project_id: int, task: dict) -> DomainEvent:
    return DomainEvent(types.TASK_UPDATED, RoomKey.project(project_id), {"task": task})


def task_deleted(project_id: int, task_id: int) -> DomainEvent:
    return DomainEvent(
        types.TASK_DELETED, RoomKey.project(project_id), {"taskId": task_id}
    )


def comment_created(task_id: int, comment: dict) -> DomainEvent:
    return DomainEvent(
        types.COMMENT_CREATED, RoomKey.task(task_id), {"comment": comment}
    )


def comment_updated(task_id: int, comment: dict) -> DomainEvent:
    return DomainEvent(
        types.COMMENT_UPDATED, RoomKey.task(task_id), {"comment": comment}
    )


def comment_deleted(task_id: int, comment_id: int) -> DomainEvent:
    return DomainEvent(
        types.COMMENT_DELETED, RoomKey.task(task_id), {"commentId": comment_id}
    )


def project_updated(project_id: int, project: dict) -> DomainEvent:
    return DomainEvent(
        types.PROJECT_UPDATED, RoomKey.project(project_id), {"project": project}
    )


def member_added(project_id: int, project: dict, member: dict) -> DomainEvent:
    return DomainEvent(
        types.MEMBER_ADDED,
        RoomKey.project(project_id),
        {"project": project, "member": member},
    )


def member_removed(project_id: int, project: dict, member_id: str) -> DomainEvent:
    return DomainEvent(
        types.MEMBER_REMOVED,
        RoomKey.project(project_id),
        {"project": project, "memberId": member_id},
    )
