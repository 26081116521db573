"""Test fixtures — a fresh SQLite database and app per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own file-backed SQLite database (aiosqlite) with
   the schema created from the ORM models. Services really commit, so
   the database is thrown away instead of rolled back.
2. The app is built with create_app(session_factory=...), so the HTTP
   routes (via the get_db override) and the Room Manager's access checks
   read the same database.
3. Identity runs in "jwt" mode. Accounts are inserted directly and get a
   freshly minted token, so tests exercise the real auth pipeline.

ASGITransport doesn't run the lifespan, so the `app` fixture starts and
closes the Room Manager itself.
"""

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, Optional

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from taskroom.auth.jwt import create_access_token
from taskroom.db.engine import get_db
from taskroom.db.models import Account, Base, Role
from taskroom.main import create_app


# ═══════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════


@dataclass
class Actor:
    """A registered account plus a valid bearer token for it."""

    id: uuid.UUID
    subject_id: str
    email: str
    token: str

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


class FakeTransport:
    """Records frames instead of writing to a socket.

    Set `gate` to an unset asyncio.Event to make send() block, which
    simulates a slow client.
    """

    def __init__(self, gate: Optional[asyncio.Event] = None, fail_on_send: bool = False):
        self.sent: list[dict[str, Any]] = []
        self.closed: Optional[tuple[int, str]] = None
        self.gate = gate
        self.fail_on_send = fail_on_send

    async def send(self, frame: dict[str, Any]) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_on_send:
            raise ConnectionResetError("peer went away")
        self.sent.append(frame)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = (code, reason)

    def types(self) -> list[str]:
        return [f["type"] for f in self.sent]


async def settle(rounds: int = 10) -> None:
    """Let pump tasks drain their outboxes."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def subscribe(rooms, actor: "Actor", *room_keys):
    """Connect `actor` to the Room Manager, join `room_keys`, start the pump.

    The pump stops when the app fixture closes the Room Manager.
    """
    transport = FakeTransport()
    conn = rooms.connect(transport)
    await rooms.authenticate(conn, actor.token)
    for key in room_keys:
        assert await rooms.join(conn, key)
    asyncio.create_task(conn.pump())
    return conn, transport


# ═══════════════════════════════════════════════════════════
# Database
# ═══════════════════════════════════════════════════════════


@pytest_asyncio.fixture()
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'taskroom.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    """A session for arranging data and for service-level tests."""
    async with session_factory() as session:
        yield session


# ═══════════════════════════════════════════════════════════
# App + client
# ═══════════════════════════════════════════════════════════


@pytest_asyncio.fixture()
async def app(session_factory):
    app = create_app(session_factory=session_factory)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    await app.state.rooms.start()
    yield app
    await app.state.rooms.close()
    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def rooms(app):
    return app.state.rooms


@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ═══════════════════════════════════════════════════════════
# Accounts
# ═══════════════════════════════════════════════════════════


@pytest_asyncio.fixture()
async def make_actor(session_factory):
    """Factory: insert an Account with the given role and mint its token."""

    async def _make(name: str = "user", role: Role = Role.USER) -> Actor:
        subject = f"sub-{uuid.uuid4().hex[:12]}"
        email = f"{name}-{subject[-6:]}@example.com"
        async with session_factory() as db:
            account = Account(
                subject_id=subject,
                email=email,
                name=name,
                gender="OTHER",
                role=role.value,
            )
            db.add(account)
            await db.commit()
        return Actor(
            id=account.id,
            subject_id=subject,
            email=email,
            token=create_access_token(subject, email=email),
        )

    return _make


@pytest_asyncio.fixture()
async def admin(make_actor) -> Actor:
    return await make_actor("admin", Role.ADMIN)


@pytest_asyncio.fixture()
async def alice(make_actor) -> Actor:
    return await make_actor("alice")


@pytest_asyncio.fixture()
async def bob(make_actor) -> Actor:
    return await make_actor("bob")


@pytest_asyncio.fixture()
async def outsider(make_actor) -> Actor:
    return await make_actor("outsider")


# ═══════════════════════════════════════════════════════════
# Projects
# ═══════════════════════════════════════════════════════════


@pytest_asyncio.fixture()
async def project(client, admin, alice):
    """A project owned by `admin` with `alice` as a member."""
    r = await client.post(
        "/api/v1/projects",
        json={"name": "Apollo", "description": "Moon shot"},
        headers=admin.headers,
    )
    assert r.status_code == 201, r.text
    data = r.json()
    r = await client.post(
        f"/api/v1/projects/{data['id']}/members",
        json={"account_id": str(alice.id)},
        headers=admin.headers,
    )
    assert r.status_code == 201, r.text
    return r.json()


@pytest_asyncio.fixture()
async def task(client, project, alice):
    r = await client.post(
        f"/api/v1/projects/{project['id']}/tasks",
        json={"title": "Build the rocket"},
        headers=alice.headers,
    )
    assert r.status_code == 201, r.text
    return r.json()
