"""Task and comment routes.

Learn: Tasks hang off a project for creation and listing
(/projects/{id}/tasks) and are addressed directly afterwards
(/tasks/{id}). Comments follow the same shape one level down.

Ordering of list endpoints is fixed:
- tasks: newest first
- comments: oldest first (reads like a conversation)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from taskroom.api.deps import comment_service, task_service
from taskroom.auth.dependencies import get_current_account
from taskroom.db.models import Account
from taskroom.schemas.common import Paginated
from taskroom.schemas.task import (
    CommentCreate,
    CommentRead,
    CommentUpdate,
    TaskCreate,
    TaskRead,
    TaskUpdate,
)
from taskroom.services.comment_service import CommentService
from taskroom.services.task_service import TaskService

router = APIRouter()


# ═══════════════════════════════════════════════════════════
# Tasks
# ═══════════════════════════════════════════════════════════


@router.post("/projects/{project_id}/tasks", response_model=TaskRead, status_code=201)
async def create_task(
    project_id: int,
    body: TaskCreate,
    account: Account = Depends(get_current_account),
    svc: TaskService = Depends(task_service),
):
    """Create a task. The assignee, if any, must be a project member."""
    return await svc.create(
        account.id,
        project_id,
        title=body.title,
        description=body.description,
        assignee_id=body.assignee_id,
    )


@router.get("/projects/{project_id}/tasks", response_model=Paginated[TaskRead])
async def list_tasks(
    project_id: int,
    cursor: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    account: Account = Depends(get_current_account),
    svc: TaskService = Depends(task_service),
):
    page = await svc.list_for_project(account.id, project_id, cursor=cursor, limit=limit)
    return Paginated[TaskRead].from_page(page)


@router.get("/tasks/{task_id}", response_model=TaskRead)
async def get_task(
    task_id: int,
    account: Account = Depends(get_current_account),
    svc: TaskService = Depends(task_service),
):
    return await svc.get(account.id, task_id)


@router.patch("/tasks/{task_id}", response_model=TaskRead)
async def update_task(
    task_id: int,
    body: TaskUpdate,
    account: Account = Depends(get_current_account),
    svc: TaskService = Depends(task_service),
):
    """Partial update. Send `"assignee_id": null` to unassign."""
    return await svc.update(account.id, task_id, body.model_dump(exclude_unset=True))


@router.delete("/tasks/{task_id}", status_code=204)
async def delete_task(
    task_id: int,
    account: Account = Depends(get_current_account),
    svc: TaskService = Depends(task_service),
):
    """ADMIN or the task's creator. Tombstones the task's comments too."""
    await svc.delete(account.id, task_id)
    return Response(status_code=204)


# ═══════════════════════════════════════════════════════════
# Comments
# ═══════════════════════════════════════════════════════════


@router.post("/tasks/{task_id}/comments", response_model=CommentRead, status_code=201)
async def create_comment(
    task_id: int,
    body: CommentCreate,
    account: Account = Depends(get_current_account),
    svc: CommentService = Depends(comment_service),
):
    return await svc.create(account.id, task_id, body.content)


@router.get("/tasks/{task_id}/comments", response_model=Paginated[CommentRead])
async def list_comments(
    task_id: int,
    cursor: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    account: Account = Depends(get_current_account),
    svc: CommentService = Depends(comment_service),
):
    page = await svc.list_for_task(account.id, task_id, cursor=cursor, limit=limit)
    return Paginated[CommentRead].from_page(page)


@router.patch("/comments/{comment_id}", response_model=CommentRead)
async def update_comment(
    comment_id: int,
    body: CommentUpdate,
    account: Account = Depends(get_current_account),
    svc: CommentService = Depends(comment_service),
):
    """Author-only. No role overrides authorship."""
    return await svc.update(account.id, comment_id, body.content)


@router.delete("/comments/{comment_id}", status_code=204)
async def delete_comment(
    comment_id: int,
    account: Account = Depends(get_current_account),
    svc: CommentService = Depends(comment_service),
):
    await svc.delete(account.id, comment_id)
    return Response(status_code=204)
