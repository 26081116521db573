"""Account service — maps identity-provider subjects to internal accounts.

Learn: The identity provider owns credentials. We keep one Account per
subject id with a profile and a global role. Registration is the only
path that creates an Account; role changes are administrative
(`taskroom set-role`) and never exposed over HTTP.
"""

from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskroom.auth.identity import VerifiedIdentity
from taskroom.db.models import Account, Role
from taskroom.errors import NotFoundError, ValidationFailedError

logger = structlog.get_logger()


class AccountService:
    """Business logic for accounts."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Lookups ─────────────────────────────────────────

    async def get_by_subject(self, subject_id: str) -> Optional[Account]:
        result = await self.db.execute(
            select(Account).where(Account.subject_id == subject_id)
        )
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Optional[Account]:
        result = await self.db.execute(
            select(Account)
            .where(func.lower(Account.email) == email.strip().lower())
            .order_by(Account.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ─── Mutations ───────────────────────────────────────

    async def register(
        self,
        identity: VerifiedIdentity,
        name: str,
        gender: str,
        email: str,
    ) -> Account:
        """Create the Account for a verified identity.

        Learn: Role is always USER at registration. A second registration
        for the same subject is rejected rather than silently updating
        the profile.
        """
        if await self.get_by_subject(identity.subject_id):
            raise ValidationFailedError("Account already registered for this identity")
        if await self.get_by_email(email):
            raise ValidationFailedError("Email is already in use")

        account = Account(
            subject_id=identity.subject_id,
            name=name,
            gender=gender,
            email=email.lower(),
            role=Role.USER.value,
        )
        self.db.add(account)
        await self.db.commit()
        logger.info("accounts.registered", account_id=str(account.id))
        return account

    async def set_role(self, email: str, role: str) -> Account:
        """Administrative role change."""
        try:
            role = Role(role.upper()).value
        except ValueError:
            raise ValidationFailedError(
                f"Unknown role {role!r}; expected one of "
                + ", ".join(r.value for r in Role)
            )
        account = await self.get_by_email(email)
        if account is None:
            raise NotFoundError("Account not found")
        account.role = role
        await self.db.commit()
        logger.info("accounts.role_changed", account_id=str(account.id), role=role)
        return account
