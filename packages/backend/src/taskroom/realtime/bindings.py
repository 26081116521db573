"""Wiring between the Room Manager and the rest of the app.

Learn: RoomManager knows nothing about databases or identity providers.
It takes two async callables:

- an authenticator: credential → account id (the same verifier plus
  account lookup the REST layer uses)
- a room authorizer: (account id, room) → Decision, evaluated by the
  AccessGuard with the read action of the matching REST endpoint, so a
  connection can join exactly the rooms it could read over HTTP

Each call opens its own short-lived session; a WebSocket can live for
hours and must not pin a database connection.
"""

import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskroom.access import AccessGuard, Action, Decision, ResourceRef
from taskroom.auth.identity import IdentityVerifier
from taskroom.errors import AuthRequiredError, UpstreamUnavailableError
from taskroom.events.domain import RoomKey, RoomKind
from taskroom.realtime.rooms import Authenticator, RoomAuthorizer
from taskroom.services.account_service import AccountService

# Room kind → (resource ref constructor, action checked on join)
JOIN_RULES = {
    RoomKind.PROJECT: (ResourceRef.project, Action.PROJECT_READ),
    RoomKind.TASK: (ResourceRef.task, Action.TASK_READ),
}


def make_authenticator(
    verifier: IdentityVerifier,
    session_factory: async_sessionmaker[AsyncSession],
) -> Authenticator:
    async def authenticate(credential: str) -> uuid.UUID:
        identity = await verifier.verify(credential)
        try:
            async with session_factory() as db:
                account = await AccountService(db).get_by_subject(identity.subject_id)
        except SQLAlchemyError:
            raise UpstreamUnavailableError("Account store unavailable")
        if account is None:
            raise AuthRequiredError("No account registered for this identity")
        return account.id

    return authenticate


def make_room_authorizer(
    session_factory: async_sessionmaker[AsyncSession],
) -> RoomAuthorizer:
    async def authorize(account_id: uuid.UUID, room: RoomKey) -> Decision:
        ref, action = JOIN_RULES[room.kind]
        try:
            async with session_factory() as db:
                return await AccessGuard(db).check(account_id, ref(room.id), action)
        except SQLAlchemyError:
            raise UpstreamUnavailableError("Account store unavailable")

    return authorize
