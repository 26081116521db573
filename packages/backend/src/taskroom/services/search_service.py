"""Global search over the projects, tasks, and comments an account can read.

Learn: Scope first, match second. The readable project ids are computed
once as a subquery (owner or member, not tombstoned), and every match
is constrained to it, so search can never surface something the account
couldn't fetch directly. Matching is a case-insensitive substring test;
LIKE wildcards in the query are escaped.
"""

import uuid

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskroom.db.models import Comment, Project, ProjectMember, Task
from taskroom.db.visibility import visible
from taskroom.errors import ValidationFailedError
from taskroom.schemas.search import CommentHit, ProjectHit, SearchResults, TaskHit

DEFAULT_LIMIT = 10
MAX_LIMIT = 50


def _pattern(query: str) -> str:
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class SearchService:
    def __init__(self, db: AsyncSession):
        self.db = db

    def _readable_projects(self, account_id: uuid.UUID):
        member_of = select(ProjectMember.project_id).where(
            ProjectMember.account_id == account_id
        )
        return select(Project.id).where(
            visible(Project),
            or_(Project.owner_id == account_id, Project.id.in_(member_of)),
        )

    async def search(
        self, account_id: uuid.UUID, query: str, limit: int = DEFAULT_LIMIT
    ) -> SearchResults:
        query = (query or "").strip()
        if not query:
            raise ValidationFailedError("Search query is required")
        limit = max(1, min(limit, MAX_LIMIT))
        pattern = _pattern(query)
        readable = self._readable_projects(account_id)

        projects = await self.db.scalars(
            select(Project)
            .where(
                Project.id.in_(readable),
                or_(
                    Project.name.ilike(pattern, escape="\\"),
                    Project.description.ilike(pattern, escape="\\"),
                ),
            )
            .order_by(Project.updated_at.desc(), Project.id.desc())
            .limit(limit)
        )
        tasks = await self.db.scalars(
            select(Task)
            .where(
                visible(Task),
                Task.project_id.in_(readable),
                or_(
                    Task.title.ilike(pattern, escape="\\"),
                    Task.description.ilike(pattern, escape="\\"),
                ),
            )
            .order_by(Task.updated_at.desc(), Task.id.desc())
            .limit(limit)
        )
        comments = await self.db.execute(
            select(Comment, Task.project_id)
            .join(Task, Task.id == Comment.task_id)
            .where(
                visible(Comment),
                visible(Task),
                Task.project_id.in_(readable),
                Comment.content.ilike(pattern, escape="\\"),
            )
            .order_by(Comment.created_at.desc(), Comment.id.desc())
            .limit(limit)
        )

        project_hits = [
            ProjectHit(id=p.id, name=p.name, description=p.description, status=p.status)
            for p in projects.all()
        ]
        task_hits = [
            TaskHit(
                id=t.id,
                project_id=t.project_id,
                title=t.title,
                description=t.description,
                status=t.status,
            )
            for t in tasks.all()
        ]
        comment_hits = [
            CommentHit(
                id=c.id, task_id=c.task_id, project_id=project_id, content=c.content
            )
            for c, project_id in comments.all()
        ]
        return SearchResults(
            query=query,
            projects=project_hits,
            tasks=task_hits,
            comments=comment_hits,
            total=len(project_hits) + len(task_hits) + len(comment_hits),
            limit=limit,
        )
