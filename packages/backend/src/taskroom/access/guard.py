"""Access control guard — loads a fresh snapshot and applies the policy.

Learn: check() re-reads the account role and project membership from the
database on every call. Decisions are never cached: membership can change
between two requests (or between a REST call and a room join), and a
stale ALLOW would let a removed member keep reading.

Used by:
- REST routes, before every read and mutation
- RoomManager.join, before registering a connection in a room
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskroom.access.policy import (
    Action,
    Decision,
    ProjectFacts,
    ResourceKind,
    ResourceRef,
    ResourceSnapshot,
    decide,
)
from taskroom.db.models import Account, Comment, Project, ProjectMember, Task
from taskroom.db.visibility import visible

logger = structlog.get_logger()


class AccessGuard:
    """Authorization decisions against the current database state."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def check(
        self,
        account_id: uuid.UUID,
        resource: ResourceRef,
        action: Action,
    ) -> Decision:
        snapshot = await self.snapshot(account_id, resource)
        decision = decide(account_id, action, resource, snapshot)
        if not decision:
            logger.info(
                "access.denied",
                account_id=str(account_id),
                action=action.value,
                resource=resource.kind.value if resource.kind else None,
                resource_id=resource.id,
                reason=decision.reason.value,
            )
        return decision

    # ─── Snapshot loading ────────────────────────────────

    async def snapshot(
        self, account_id: uuid.UUID, resource: ResourceRef
    ) -> ResourceSnapshot:
        role = await self.db.scalar(
            select(Account.role).where(Account.id == account_id)
        )
        if resource.kind is None:
            return ResourceSnapshot(role=role)

        if resource.kind == ResourceKind.PROJECT:
            return ResourceSnapshot(
                role=role, project=await self._project_facts(resource.id)
            )

        if resource.kind == ResourceKind.TASK:
            row = (
                await self.db.execute(
                    select(Task.project_id, Task.created_by_id).where(
                        Task.id == resource.id, visible(Task)
                    )
                )
            ).first()
            if row is None:
                return ResourceSnapshot(role=role)
            return ResourceSnapshot(
                role=role,
                project=await self._project_facts(row.project_id),
                task_created_by=row.created_by_id,
            )

        row = (
            await self.db.execute(
                select(Comment.author_id, Task.project_id, Task.created_by_id)
                .join(Task, Task.id == Comment.task_id)
                .where(
                    Comment.id == resource.id,
                    visible(Comment),
                    visible(Task),
                )
            )
        ).first()
        if row is None:
            return ResourceSnapshot(role=role)
        return ResourceSnapshot(
            role=role,
            project=await self._project_facts(row.project_id),
            task_created_by=row.created_by_id,
            comment_author=row.author_id,
        )

    async def _project_facts(self, project_id: Optional[int]) -> Optional[ProjectFacts]:
        owner_id = await self.db.scalar(
            select(Project.owner_id).where(Project.id == project_id, visible(Project))
        )
        if owner_id is None:
            return None
        members = await self.db.scalars(
            select(ProjectMember.account_id).where(
                ProjectMember.project_id == project_id
            )
        )
        return ProjectFacts(
            id=project_id, owner_id=owner_id, member_ids=frozenset(members.all())
        )
