"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Authentication is resolved per route with
Depends(get_current_account), because handlers need the Account itself
(its id feeds every access check). Health is open; account registration
needs a verified identity but no Account yet.
"""

from fastapi import APIRouter

from taskroom.api.accounts import router as accounts_router
from taskroom.api.health import router as health_router
from taskroom.api.projects import router as projects_router
from taskroom.api.search import router as search_router
from taskroom.api.tasks import router as tasks_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(accounts_router, tags=["accounts"])
api_router.include_router(projects_router, tags=["projects", "members"])
api_router.include_router(tasks_router, tags=["tasks", "comments"])
api_router.include_router(search_router, tags=["search"])
