"""Mutation gateway tests — commit first, publish second.

Learn: A publisher that blows up must not undo the write. The service
call succeeds, the row is there, and the failure only shows up in logs.
"""

import pytest
from sqlalchemy import select
from structlog.testing import capture_logs

from taskroom.db.models import Task
from taskroom.events.domain import DomainEvent
from taskroom.services.task_service import TaskService


class RecordingPublisher:
    def __init__(self):
        self.events: list[DomainEvent] = []
        self.calls: list[str] = []

    async def publish(self, event: DomainEvent) -> int:
        self.events.append(event)
        self.calls.append(event.type)
        return 1

    async def revoke(self, rooms, account_id=None, reason="NOT_FOUND") -> int:
        self.calls.append(f"revoke:{reason}:" + ",".join(str(r) for r in rooms))
        return 0


class BrokenPublisher:
    async def publish(self, event: DomainEvent) -> int:
        raise RuntimeError("fan-out exploded")

    async def revoke(self, rooms, account_id=None, reason="NOT_FOUND") -> int:
        raise RuntimeError("fan-out exploded")


@pytest.mark.asyncio
async def test_exactly_one_event_per_write(session_factory, project, alice):
    publisher = RecordingPublisher()
    async with session_factory() as db:
        svc = TaskService(db, publisher)
        task = await svc.create(alice.id, project["id"], title="One")
        await svc.update(alice.id, task.id, {"status": "CLOSED"})
        await svc.delete(alice.id, task.id)

    assert [e.type for e in publisher.events] == [
        "task:created",
        "task:updated",
        "task:deleted",
    ]


@pytest.mark.asyncio
async def test_publish_failure_keeps_the_write(session_factory, project, alice):
    async with session_factory() as db:
        with capture_logs() as logs:
            task = await TaskService(db, BrokenPublisher()).create(
                alice.id, project["id"], title="Survives"
            )

    assert any(entry["event"] == "gateway.publish_failed" for entry in logs)
    async with session_factory() as db:
        stored = await db.scalar(select(Task).where(Task.id == task.id))
    assert stored is not None
    assert stored.title == "Survives"


@pytest.mark.asyncio
async def test_denied_write_publishes_nothing(session_factory, project, outsider):
    from taskroom.errors import NotFoundError

    publisher = RecordingPublisher()
    async with session_factory() as db:
        with pytest.raises(NotFoundError):
            await TaskService(db, publisher).create(outsider.id, project["id"], title="x")
    assert publisher.events == []


@pytest.mark.asyncio
async def test_no_publisher_is_allowed(session_factory, project, alice):
    async with session_factory() as db:
        task = await TaskService(db).create(alice.id, project["id"], title="Quiet")
    assert task.id is not None


@pytest.mark.asyncio
async def test_member_removal_revokes_before_publishing(session_factory, project, task, admin, alice):
    from taskroom.services.project_service import ProjectService

    publisher = RecordingPublisher()
    async with session_factory() as db:
        await ProjectService(db, publisher).remove_member(admin.id, project["id"], alice.id)

    assert publisher.calls == [
        f"revoke:NOT_MEMBER:project:{project['id']},task:{task['id']}",
        "member:removed",
    ]


@pytest.mark.asyncio
async def test_task_delete_publishes_then_revokes(session_factory, task, alice):
    publisher = RecordingPublisher()
    async with session_factory() as db:
        await TaskService(db, publisher).delete(alice.id, task["id"])

    assert publisher.calls == ["task:deleted", f"revoke:NOT_FOUND:task:{task['id']}"]


@pytest.mark.asyncio
async def test_revoke_failure_keeps_the_write(session_factory, task, alice):
    async with session_factory() as db:
        with capture_logs() as logs:
            await TaskService(db, BrokenPublisher()).delete(alice.id, task["id"])

    assert any(entry["event"] == "gateway.revoke_failed" for entry in logs)
    async with session_factory() as db:
        stored = await db.scalar(select(Task).where(Task.id == task["id"]))
    assert stored.deleted_at is not None
