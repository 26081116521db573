"""Project service — projects, membership, and cascading soft delete.

Learn: Membership lives in project_members. The owner gets a row at
creation, so "owner ∈ members" holds in the table, and removing that row
is refused. Everything else about who may do what is the AccessGuard's
call; this module only enforces the data invariants.

Events (all to project:<id>):
- create / update / delete → project:updated (delete carries deleted_at)
- add member               → member:added
- remove member            → member:removed

Removing a member revokes that account's project and task room
subscriptions; deleting the project empties them for everyone.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from taskroom.access import Action, DenyReason, ResourceRef
from taskroom.db.models import Account, Comment, Project, ProjectMember, Task, utcnow
from taskroom.db.visibility import visible
from taskroom.errors import ForbiddenError, NotFoundError, ValidationFailedError
from taskroom.events import domain
from taskroom.events.domain import RoomKey
from taskroom.pagination import Page, SortSpec, paginate
from taskroom.schemas.account import AccountBrief
from taskroom.schemas.project import ProjectRead
from taskroom.services.gateway import Gateway

logger = structlog.get_logger()


def project_payload(project: Project) -> dict:
    return ProjectRead.model_validate(project).model_dump(mode="json")


class ProjectService(Gateway):
    """Business logic for projects and their members."""

    # ─── Reads ───────────────────────────────────────────

    async def get(self, account_id: uuid.UUID, project_id: int) -> Project:
        await self.authorize(
            account_id, ResourceRef.project(project_id), Action.PROJECT_READ, "Project"
        )
        return await self._load(project_id)

    async def list_for_member(
        self,
        account_id: uuid.UUID,
        sort: SortSpec,
        status: Optional[str] = None,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Page:
        """Projects the account owns or is a member of."""
        member_of = select(ProjectMember.project_id).where(
            ProjectMember.account_id == account_id
        )
        query = select(Project).where(
            (Project.owner_id == account_id) | Project.id.in_(member_of)
        )
        if status:
            query = query.where(Project.status == status)
        return await paginate(self.db, query, Project, sort, cursor=cursor, limit=limit)

    # ─── Mutations ───────────────────────────────────────

    async def create(
        self, account_id: uuid.UUID, name: str, description: str = ""
    ) -> Project:
        await self.authorize(
            account_id, ResourceRef.none(), Action.PROJECT_CREATE, "Project"
        )
        project = Project(name=name, description=description, owner_id=account_id)
        project.member_links.append(ProjectMember(account_id=account_id))
        self.db.add(project)
        await self.db.flush()
        await self.commit_and_publish(
            domain.project_updated(project.id, project_payload(project))
        )
        logger.info("projects.created", project_id=project.id, owner_id=str(account_id))
        return project

    async def update(
        self, account_id: uuid.UUID, project_id: int, changes: dict
    ) -> Project:
        """Apply a partial update (name, description, status)."""
        await self.authorize(
            account_id, ResourceRef.project(project_id), Action.PROJECT_UPDATE, "Project"
        )
        project = await self._load(project_id)
        for field in ("name", "description", "status"):
            if field in changes and changes[field] is not None:
                setattr(project, field, changes[field])
        await self.db.flush()
        await self.commit_and_publish(
            domain.project_updated(project.id, project_payload(project))
        )
        return project

    async def delete(self, account_id: uuid.UUID, project_id: int) -> None:
        """Tombstone the project, its tasks, and their comments."""
        await self.authorize(
            account_id, ResourceRef.project(project_id), Action.PROJECT_DELETE, "Project"
        )
        project = await self._load(project_id)
        now = utcnow()

        task_ids = select(Task.id).where(Task.project_id == project_id)
        await self.db.execute(
            update(Comment)
            .where(Comment.task_id.in_(task_ids), visible(Comment))
            .values(deleted_at=now)
        )
        await self.db.execute(
            update(Task)
            .where(Task.project_id == project_id, visible(Task))
            .values(deleted_at=now)
        )
        project.deleted_at = now
        await self.db.flush()
        rooms = await self._rooms_of(project_id)
        await self.commit_and_publish(
            domain.project_updated(project.id, project_payload(project))
        )
        # Subscribers hear about the delete, then lose the rooms.
        await self.revoke(rooms)
        logger.info("projects.deleted", project_id=project_id)

    # ─── Members ─────────────────────────────────────────

    async def add_member(
        self, account_id: uuid.UUID, project_id: int, member_id: uuid.UUID
    ) -> Project:
        await self.authorize(
            account_id, ResourceRef.project(project_id), Action.MEMBER_MANAGE, "Project"
        )
        project = await self._load(project_id)
        member = await self.db.get(Account, member_id)
        if member is None:
            raise NotFoundError("Account not found")
        if project.has_member(member_id):
            raise ValidationFailedError("Account is already a project member")

        self.db.add(ProjectMember(project_id=project_id, account_id=member_id))
        try:
            await self.db.flush()
        except IntegrityError:
            # Lost a race with a concurrent add of the same member.
            await self.db.rollback()
            raise ValidationFailedError("Account is already a project member")
        await self.db.refresh(project, ["member_links"])

        await self.commit_and_publish(
            domain.member_added(
                project_id,
                project_payload(project),
                AccountBrief.model_validate(member).model_dump(mode="json"),
            )
        )
        logger.info("projects.member_added", project_id=project_id, member_id=str(member_id))
        return project

    async def remove_member(
        self, account_id: uuid.UUID, project_id: int, member_id: uuid.UUID
    ) -> Project:
        await self.authorize(
            account_id, ResourceRef.project(project_id), Action.MEMBER_MANAGE, "Project"
        )
        project = await self._load(project_id)
        if member_id == project.owner_id:
            raise ForbiddenError("The project owner cannot be removed", reason="FORBIDDEN")

        link = next(
            (m for m in project.member_links if m.account_id == member_id), None
        )
        if link is None:
            raise NotFoundError("Member not found")
        project.member_links.remove(link)
        await self.db.flush()
        rooms = await self._rooms_of(project_id)

        await self.db.commit()
        # Revoke first: the removed member must not receive the event,
        # which carries the project record they can no longer read.
        await self.revoke(rooms, account_id=member_id, reason=DenyReason.NOT_MEMBER)
        await self.emit(
            domain.member_removed(project_id, project_payload(project), str(member_id))
        )
        logger.info(
            "projects.member_removed", project_id=project_id, member_id=str(member_id)
        )
        return project

    # ─── Helpers ─────────────────────────────────────────

    async def _load(self, project_id: int) -> Project:
        project = await self.db.scalar(
            select(Project).where(Project.id == project_id, visible(Project))
        )
        if project is None:
            raise NotFoundError("Project not found")
        return project

    async def _rooms_of(self, project_id: int) -> list[RoomKey]:
        """The project room plus the room of every task in it."""
        task_ids = await self.db.scalars(
            select(Task.id).where(Task.project_id == project_id)
        )
        return [RoomKey.project(project_id)] + [RoomKey.task(t) for t in task_ids]
