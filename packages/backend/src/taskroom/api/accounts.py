"""Account routes — registration and profile lookup.

Learn: Registration is the one route that runs on a verified identity
*without* an Account (get_verified_identity, not get_current_account).
Everything else under /api/v1 needs the Account to exist.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from taskroom.auth.dependencies import get_current_account, get_verified_identity
from taskroom.auth.identity import VerifiedIdentity
from taskroom.db.engine import get_db
from taskroom.db.models import Account
from taskroom.errors import NotFoundError
from taskroom.schemas.account import AccountBrief, AccountCreate, AccountRead
from taskroom.services.account_service import AccountService

router = APIRouter()


@router.post("/accounts", response_model=AccountRead, status_code=201)
async def register_account(
    body: AccountCreate,
    identity: VerifiedIdentity = Depends(get_verified_identity),
    db: AsyncSession = Depends(get_db),
):
    """Create the Account for the caller's verified identity."""
    return await AccountService(db).register(
        identity, name=body.name, gender=body.gender, email=body.email
    )


@router.get("/accounts/me", response_model=AccountRead)
async def get_me(account: Account = Depends(get_current_account)):
    return account


@router.get("/accounts/lookup", response_model=AccountBrief)
async def lookup_account(
    email: str = Query(..., min_length=3),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_db),
):
    """Find an account by email (used to add project members)."""
    found = await AccountService(db).get_by_email(email)
    if found is None:
        raise NotFoundError("Account not found")
    return found
