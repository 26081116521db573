"""Task service — tasks inside a project.

Learn: Two data rules live here, everything else is the AccessGuard's:

- An assignee must be a member of the task's project *at the moment of
  assignment*. Removing that member later doesn't unassign the task.
- Deleting a task tombstones the task and all of its comments in the
  same transaction.

Events (all to project:<project_id>): task:created, task:updated,
task:deleted (id only). Deleting a task also empties its room.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import select, update

from taskroom.access import Action, ResourceRef
from taskroom.db.models import Comment, Project, Task, utcnow
from taskroom.db.visibility import visible
from taskroom.errors import NotFoundError, ValidationFailedError
from taskroom.events import domain
from taskroom.events.domain import RoomKey
from taskroom.pagination import Page, SortDirection, SortField, SortSpec, paginate
from taskroom.schemas.task import TaskRead
from taskroom.services.gateway import Gateway

logger = structlog.get_logger()

NEWEST_FIRST = SortSpec(SortField.CREATED_AT, SortDirection.DESC)


def task_payload(task: Task) -> dict:
    return TaskRead.model_validate(task).model_dump(mode="json")


class TaskService(Gateway):
    """Business logic for task CRUD."""

    # ─── Reads ───────────────────────────────────────────

    async def list_for_project(
        self,
        account_id: uuid.UUID,
        project_id: int,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Page:
        """A project's tasks, newest first."""
        await self.authorize(
            account_id, ResourceRef.project(project_id), Action.PROJECT_READ, "Project"
        )
        query = select(Task).where(Task.project_id == project_id)
        return await paginate(self.db, query, Task, NEWEST_FIRST, cursor=cursor, limit=limit)

    async def get(self, account_id: uuid.UUID, task_id: int) -> Task:
        await self.authorize(
            account_id, ResourceRef.task(task_id), Action.TASK_READ, "Task"
        )
        return await self._load(task_id)

    # ─── Mutations ───────────────────────────────────────

    async def create(
        self,
        account_id: uuid.UUID,
        project_id: int,
        title: str,
        description: str = "",
        assignee_id: Optional[uuid.UUID] = None,
    ) -> Task:
        await self.authorize(
            account_id, ResourceRef.project(project_id), Action.TASK_CREATE, "Project"
        )
        if assignee_id is not None:
            await self._require_member(project_id, assignee_id)

        task = Task(
            project_id=project_id,
            title=title,
            description=description,
            assignee_id=assignee_id,
            created_by_id=account_id,
        )
        self.db.add(task)
        await self.db.flush()
        await self.commit_and_publish(domain.task_created(project_id, task_payload(task)))
        logger.info("tasks.created", task_id=task.id, project_id=project_id)
        return task

    async def update(self, account_id: uuid.UUID, task_id: int, changes: dict) -> Task:
        """Apply a partial update.

        Learn: `changes` holds only the fields the client sent, so an
        explicit `assignee_id: None` unassigns while an absent key leaves
        the assignee alone.
        """
        await self.authorize(
            account_id, ResourceRef.task(task_id), Action.TASK_UPDATE, "Task"
        )
        task = await self._load(task_id)

        if "assignee_id" in changes:
            assignee_id = changes["assignee_id"]
            if assignee_id is not None and assignee_id != task.assignee_id:
                await self._require_member(task.project_id, assignee_id)
            task.assignee_id = assignee_id
        for field in ("title", "description", "status"):
            if changes.get(field) is not None:
                setattr(task, field, changes[field])

        await self.db.flush()
        await self.commit_and_publish(
            domain.task_updated(task.project_id, task_payload(task))
        )
        return task

    async def delete(self, account_id: uuid.UUID, task_id: int) -> None:
        """Tombstone the task and its comments."""
        await self.authorize(
            account_id, ResourceRef.task(task_id), Action.TASK_DELETE, "Task"
        )
        task = await self._load(task_id)
        now = utcnow()
        await self.db.execute(
            update(Comment)
            .where(Comment.task_id == task_id, visible(Comment))
            .values(deleted_at=now)
        )
        task.deleted_at = now
        await self.db.flush()
        await self.commit_and_publish(domain.task_deleted(task.project_id, task.id))
        await self.revoke([RoomKey.task(task.id)])
        logger.info("tasks.deleted", task_id=task_id, project_id=task.project_id)

    # ─── Helpers ─────────────────────────────────────────

    async def _load(self, task_id: int) -> Task:
        task = await self.db.scalar(
            select(Task).where(Task.id == task_id, visible(Task))
        )
        if task is None:
            raise NotFoundError("Task not found")
        return task

    async def _require_member(self, project_id: int, account_id: uuid.UUID) -> None:
        project = await self.db.scalar(
            select(Project).where(Project.id == project_id, visible(Project))
        )
        if project is None:
            raise NotFoundError("Project not found")
        if not project.has_member(account_id):
            raise ValidationFailedError("Assignee must be a project member")
