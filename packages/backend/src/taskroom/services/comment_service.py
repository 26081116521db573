"""Comment service — discussion on a task.

Learn: Only the author may edit or delete a comment. No role and no
project ownership overrides that; the AccessGuard's authorship rule
comes before everything else for these two actions.

Events (all to task:<task_id>): comment:created, comment:updated,
comment:deleted (id only).
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import select

from taskroom.access import Action, ResourceRef
from taskroom.db.models import Comment, Task, utcnow
from taskroom.db.visibility import visible
from taskroom.errors import NotFoundError
from taskroom.events import domain
from taskroom.pagination import Page, SortDirection, SortField, SortSpec, paginate
from taskroom.schemas.task import CommentRead
from taskroom.services.gateway import Gateway

logger = structlog.get_logger()

OLDEST_FIRST = SortSpec(SortField.CREATED_AT, SortDirection.ASC)


def comment_payload(comment: Comment) -> dict:
    return CommentRead.model_validate(comment).model_dump(mode="json")


class CommentService(Gateway):
    """Business logic for comments."""

    async def list_for_task(
        self,
        account_id: uuid.UUID,
        task_id: int,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Page:
        """A task's comments, oldest first."""
        await self.authorize(
            account_id, ResourceRef.task(task_id), Action.COMMENT_LIST, "Task"
        )
        query = select(Comment).where(Comment.task_id == task_id)
        return await paginate(
            self.db, query, Comment, OLDEST_FIRST, cursor=cursor, limit=limit
        )

    async def create(self, account_id: uuid.UUID, task_id: int, content: str) -> Comment:
        await self.authorize(
            account_id, ResourceRef.task(task_id), Action.COMMENT_CREATE, "Task"
        )
        comment = Comment(task_id=task_id, author_id=account_id, content=content)
        self.db.add(comment)
        await self.db.flush()
        await self.commit_and_publish(
            domain.comment_created(task_id, comment_payload(comment))
        )
        logger.info("comments.created", comment_id=comment.id, task_id=task_id)
        return comment

    async def update(
        self, account_id: uuid.UUID, comment_id: int, content: str
    ) -> Comment:
        await self.authorize(
            account_id, ResourceRef.comment(comment_id), Action.COMMENT_UPDATE, "Comment"
        )
        comment = await self._load(comment_id)
        comment.content = content
        await self.db.flush()
        await self.commit_and_publish(
            domain.comment_updated(comment.task_id, comment_payload(comment))
        )
        return comment

    async def delete(self, account_id: uuid.UUID, comment_id: int) -> None:
        await self.authorize(
            account_id, ResourceRef.comment(comment_id), Action.COMMENT_DELETE, "Comment"
        )
        comment = await self._load(comment_id)
        comment.deleted_at = utcnow()
        await self.db.flush()
        await self.commit_and_publish(domain.comment_deleted(comment.task_id, comment.id))
        logger.info("comments.deleted", comment_id=comment_id, task_id=comment.task_id)

    async def _load(self, comment_id: int) -> Comment:
        comment = await self.db.scalar(
            select(Comment)
            .join(Task, Task.id == Comment.task_id)
            .where(Comment.id == comment_id, visible(Comment), visible(Task))
        )
        if comment is None:
            raise NotFoundError("Comment not found")
        return comment
