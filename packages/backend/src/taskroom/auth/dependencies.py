"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current identity from the request.

Two levels:
1. get_verified_identity — the credential is valid (used by account
   registration, where no Account exists yet)
2. get_current_account — the credential maps to exactly one Account
   (used by everything else)
"""

from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from taskroom.auth.identity import IdentityVerifier, VerifiedIdentity
from taskroom.db.engine import get_db
from taskroom.db.models import Account
from taskroom.errors import AuthRequiredError
from taskroom.services.account_service import AccountService


def get_identity_verifier(request: Request) -> IdentityVerifier:
    """The verifier constructed by create_app()."""
    return request.app.state.identity


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip() or None
    return None


async def get_verified_identity(
    authorization: Optional[str] = Header(None),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> VerifiedIdentity:
    """Validate the bearer credential (401 if missing or invalid, 503 if
    the identity provider is unreachable)."""
    token = bearer_token(authorization)
    if not token:
        raise AuthRequiredError("Authentication required")
    return await verifier.verify(token)


async def get_current_account(
    identity: VerifiedIdentity = Depends(get_verified_identity),
    db: AsyncSession = Depends(get_db),
) -> Account:
    """Resolve the verified subject to its Account (401 if unregistered)."""
    account = await AccountService(db).get_by_subject(identity.subject_id)
    if account is None:
        raise AuthRequiredError("No account registered for this identity")
    return account
