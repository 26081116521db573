"""Shared route dependencies.

Learn: Services are built per request from the request's session and
the app's Room Manager. Routes never reach for a global publisher; the
Room Manager instance comes from app.state, where create_app() put it.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from taskroom.db.engine import get_db
from taskroom.realtime.rooms import RoomManager
from taskroom.services.comment_service import CommentService
from taskroom.services.project_service import ProjectService
from taskroom.services.task_service import TaskService


def get_rooms(request: Request) -> RoomManager:
    return request.app.state.rooms


def project_service(
    db: AsyncSession = Depends(get_db),
    rooms: RoomManager = Depends(get_rooms),
) -> ProjectService:
    return ProjectService(db, rooms)


def task_service(
    db: AsyncSession = Depends(get_db),
    rooms: RoomManager = Depends(get_rooms),
) -> TaskService:
    return TaskService(db, rooms)


def comment_service(
    db: AsyncSession = Depends(get_db),
    rooms: RoomManager = Depends(get_rooms),
) -> CommentService:
    return CommentService(db, rooms)
