"""Project and membership routes.

Learn: Routes translate HTTP to service calls and nothing else. The
ProjectService authorizes (through the AccessGuard), writes, commits,
and publishes; failures surface as TaskroomError and the app-level
handler turns them into 401/403/404/422/503.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from taskroom.api.deps import project_service
from taskroom.auth.dependencies import get_current_account
from taskroom.db.models import Account
from taskroom.pagination import SortDirection, SortField, SortSpec
from taskroom.schemas.common import Paginated
from taskroom.schemas.project import (
    PROJECT_STATUS,
    MemberAdd,
    ProjectCreate,
    ProjectRead,
    ProjectUpdate,
)
from taskroom.services.project_service import ProjectService

router = APIRouter()


@router.post("/projects", response_model=ProjectRead, status_code=201)
async def create_project(
    body: ProjectCreate,
    account: Account = Depends(get_current_account),
    svc: ProjectService = Depends(project_service),
):
    """Create a project owned by the caller (ADMIN only)."""
    return await svc.create(account.id, name=body.name, description=body.description)


@router.get("/projects", response_model=Paginated[ProjectRead])
async def list_projects(
    status: Optional[str] = Query(None, pattern=PROJECT_STATUS),
    sort_by: SortField = Query(SortField.CREATED_AT, alias="sortBy"),
    sort_order: SortDirection = Query(SortDirection.DESC, alias="sortOrder"),
    cursor: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    account: Account = Depends(get_current_account),
    svc: ProjectService = Depends(project_service),
):
    """Projects the caller owns or is a member of.

    Learn: Only createdAt ordering pages with a cursor; with
    sortBy=updatedAt the first page is all you get (nextCursor is null).
    """
    page = await svc.list_for_member(
        account.id,
        SortSpec(sort_by, sort_order),
        status=status,
        cursor=cursor,
        limit=limit,
    )
    return Paginated[ProjectRead].from_page(page)


@router.get("/projects/{project_id}", response_model=ProjectRead)
async def get_project(
    project_id: int,
    account: Account = Depends(get_current_account),
    svc: ProjectService = Depends(project_service),
):
    return await svc.get(account.id, project_id)


@router.patch("/projects/{project_id}", response_model=ProjectRead)
async def update_project(
    project_id: int,
    body: ProjectUpdate,
    account: Account = Depends(get_current_account),
    svc: ProjectService = Depends(project_service),
):
    """Owner-only partial update of name, description, status."""
    return await svc.update(account.id, project_id, body.model_dump(exclude_unset=True))


@router.delete("/projects/{project_id}", status_code=204)
async def delete_project(
    project_id: int,
    account: Account = Depends(get_current_account),
    svc: ProjectService = Depends(project_service),
):
    """Owner-only. Tombstones the project with its tasks and comments."""
    await svc.delete(account.id, project_id)
    return Response(status_code=204)


# ═══════════════════════════════════════════════════════════
# Members
# ═══════════════════════════════════════════════════════════


@router.post("/projects/{project_id}/members", response_model=ProjectRead, status_code=201)
async def add_member(
    project_id: int,
    body: MemberAdd,
    account: Account = Depends(get_current_account),
    svc: ProjectService = Depends(project_service),
):
    return await svc.add_member(account.id, project_id, body.account_id)


@router.delete("/projects/{project_id}/members/{member_id}", response_model=ProjectRead)
async def remove_member(
    project_id: int,
    member_id: uuid.UUID,
    account: Account = Depends(get_current_account),
    svc: ProjectService = Depends(project_service),
):
    """Remove a member. The owner can never be removed."""
    return await svc.remove_member(account.id, project_id, member_id)
