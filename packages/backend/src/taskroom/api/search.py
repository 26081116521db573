"""Global search route."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from taskroom.auth.dependencies import get_current_account
from taskroom.db.engine import get_db
from taskroom.db.models import Account
from taskroom.schemas.search import SearchResults
from taskroom.services.search_service import DEFAULT_LIMIT, MAX_LIMIT, SearchService

router = APIRouter()


@router.get("/search", response_model=SearchResults)
async def search(
    q: str = Query(..., min_length=1, max_length=200),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """Case-insensitive match over projects, tasks, and comments the caller can read."""
    return await SearchService(db).search(account.id, q, limit=limit)
