"""Mutation gateway — the shared commit-then-publish path.

Learn: Every state change to a project, task, or comment goes through
a service built on Gateway. The order is always:

1. authorize (AccessGuard.check + enforce, fresh state every time)
2. write
3. commit
4. publish exactly one DomainEvent to the Room Manager

Writes that take read access away (removing a member, deleting a
project or task) also revoke the matching room subscriptions after the
commit, so a live socket never outlasts the access it was granted on.

The event is published only after the commit succeeded, so subscribers
never hear about a write that didn't happen. The reverse isn't
guaranteed: if publishing fails, the write stays committed and the
failure is logged. Clients that missed an event re-fetch over REST,
which is always authoritative.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from taskroom.access import AccessGuard, Action, DenyReason, ResourceRef, enforce
from taskroom.events.domain import DomainEvent, EventPublisher, RoomKey

logger = structlog.get_logger()


class Gateway:
    """Base for services that mutate shared state."""

    def __init__(self, db: AsyncSession, publisher: Optional[EventPublisher] = None):
        self.db = db
        self.publisher = publisher
        self.guard = AccessGuard(db)

    async def authorize(
        self,
        account_id: uuid.UUID,
        resource: ResourceRef,
        action: Action,
        label: str,
    ) -> None:
        """Raise NotFoundError / ForbiddenError unless the action is allowed."""
        enforce(await self.guard.check(account_id, resource, action), label)

    async def commit_and_publish(self, event: DomainEvent) -> None:
        await self.db.commit()
        await self.emit(event)

    async def emit(self, event: DomainEvent) -> int:
        """Hand the event to the publisher. Never raises."""
        if self.publisher is None:
            return 0
        try:
            delivered = await self.publisher.publish(event)
        except Exception as e:
            logger.error(
                "gateway.publish_failed",
                event_type=event.type,
                room=str(event.room),
                error=str(e),
            )
            return 0
        logger.debug(
            "gateway.published",
            event_type=event.type,
            room=str(event.room),
            delivered=delivered,
        )
        return delivered

    async def revoke(
        self,
        rooms: list[RoomKey],
        account_id: Optional[uuid.UUID] = None,
        reason: DenyReason = DenyReason.NOT_FOUND,
    ) -> int:
        """Drop live subscriptions a committed write just made unreadable.

        Called after commit, like emit(). Never raises.
        """
        if self.publisher is None or not rooms:
            return 0
        try:
            return await self.publisher.revoke(rooms, account_id=account_id, reason=reason.value)
        except Exception as e:
            logger.error(
                "gateway.revoke_failed",
                rooms=[str(room) for room in rooms],
                account_id=str(account_id) if account_id else None,
                error=str(e),
            )
            return 0
