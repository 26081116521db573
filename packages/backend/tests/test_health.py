"""Health endpoint tests."""

import pytest

from conftest import subscribe
from taskroom.events.domain import RoomKey


@pytest.mark.asyncio
async def test_health_reports_dependencies(client):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["server"] == "ok"
    assert data["database"] == "ok"
    # No Redis in tests: the rate limiter is off, the app is still healthy.
    assert data["redis"] == "disabled"
    assert data["rooms"] == {"running": True, "connections": 0, "rooms": 0}
    assert "version" in data


@pytest.mark.asyncio
async def test_health_counts_live_connections(client, rooms, project, alice):
    await subscribe(rooms, alice, RoomKey.project(project["id"]))
    data = (await client.get("/api/v1/health")).json()
    assert data["rooms"]["connections"] == 1
    assert data["rooms"]["rooms"] == 1


@pytest.mark.asyncio
async def test_health_degraded_when_rooms_stopped(client, rooms):
    await rooms.close()
    data = (await client.get("/api/v1/health")).json()
    assert data["status"] == "degraded"
    assert data["rooms"]["running"] is False


@pytest.mark.asyncio
async def test_unreachable_store_is_503_on_rest_routes(tmp_path, alice):
    """A request that can't reach the database gets a retryable error, not a 500."""
    from httpx import ASGITransport, AsyncClient
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    from taskroom.db.engine import get_db
    from taskroom.main import create_app

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'x.db'}")
    unreachable = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with unreachable() as session:
            yield session

    app = create_app(session_factory=unreachable)
    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        r = await ac.get("/api/v1/projects", headers=alice.headers)
    await engine.dispose()

    assert r.status_code == 503
    assert r.json() == {"detail": "Data store unavailable", "code": "UPSTREAM_UNAVAILABLE"}
    assert r.headers["retry-after"] == "5"
