"""Project and membership API tests.

Learn: These go through the full HTTP stack: bearer token → identity
verifier → Account → AccessGuard → service → commit. Denials are
checked for both status *and* the machine-readable code/reason, because
clients switch on those, not on the message.
"""

import pytest

from conftest import settle, subscribe
from taskroom.events.domain import RoomKey


# ═══════════════════════════════════════════════════════════
# Create
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_admin_creates_project_and_is_member(client, admin):
    r = await client.post(
        "/api/v1/projects",
        json={"name": "Gemini", "description": "Two seats"},
        headers=admin.headers,
    )
    assert r.status_code == 201
    data = r.json()
    assert data["name"] == "Gemini"
    assert data["status"] == "ACTIVE"
    assert data["owner_id"] == str(admin.id)
    assert data["member_ids"] == [str(admin.id)]
    assert data["deleted_at"] is None


@pytest.mark.asyncio
async def test_non_admin_cannot_create_project(client, alice):
    r = await client.post("/api/v1/projects", json={"name": "Nope"}, headers=alice.headers)
    assert r.status_code == 403
    assert r.json()["code"] == "FORBIDDEN"
    assert r.json()["reason"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_create_requires_name(client, admin):
    r = await client.post("/api/v1/projects", json={"name": ""}, headers=admin.headers)
    assert r.status_code == 422
    assert r.json()["code"] == "VALIDATION"


@pytest.mark.asyncio
async def test_unauthenticated_request_is_401(client):
    r = await client.get("/api/v1/projects")
    assert r.status_code == 401
    assert r.json()["code"] == "AUTH_REQUIRED"
    assert r.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_bad_token_is_401(client):
    r = await client.get(
        "/api/v1/projects", headers={"Authorization": "Bearer not.a.jwt"}
    )
    assert r.status_code == 401


# ═══════════════════════════════════════════════════════════
# Read
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_list_shows_only_own_projects(client, project, admin, alice, outsider):
    r = await client.get("/api/v1/projects", headers=alice.headers)
    assert r.status_code == 200
    assert [p["id"] for p in r.json()["data"]] == [project["id"]]

    r = await client.get("/api/v1/projects", headers=outsider.headers)
    assert r.json() == {"data": [], "pagination": {"hasMore": False, "nextCursor": None}}


@pytest.mark.asyncio
async def test_list_filters_by_status(client, project, admin):
    await client.patch(
        f"/api/v1/projects/{project['id']}",
        json={"status": "ON_HOLD"},
        headers=admin.headers,
    )
    await client.post("/api/v1/projects", json={"name": "Other"}, headers=admin.headers)

    r = await client.get(
        "/api/v1/projects", params={"status": "ON_HOLD"}, headers=admin.headers
    )
    assert [p["name"] for p in r.json()["data"]] == ["Apollo"]

    r = await client.get(
        "/api/v1/projects", params={"status": "SLEEPING"}, headers=admin.headers
    )
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_member_reads_project(client, project, alice):
    r = await client.get(f"/api/v1/projects/{project['id']}", headers=alice.headers)
    assert r.status_code == 200
    assert set(r.json()["member_ids"]) == set(project["member_ids"])


@pytest.mark.asyncio
async def test_outsider_gets_404_not_403(client, project, outsider):
    """A non-member can't tell an existing project from a missing one."""
    existing = await client.get(f"/api/v1/projects/{project['id']}", headers=outsider.headers)
    missing = await client.get("/api/v1/projects/999999", headers=outsider.headers)
    assert existing.status_code == missing.status_code == 404
    assert existing.json()["code"] == missing.json()["code"] == "NOT_FOUND"


# ═══════════════════════════════════════════════════════════
# Update / delete
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_owner_updates_project(client, project, admin):
    r = await client.patch(
        f"/api/v1/projects/{project['id']}",
        json={"description": "Land on the moon"},
        headers=admin.headers,
    )
    assert r.status_code == 200
    assert r.json()["description"] == "Land on the moon"
    assert r.json()["name"] == "Apollo"


@pytest.mark.asyncio
async def test_member_update_is_not_owner(client, project, alice):
    r = await client.patch(
        f"/api/v1/projects/{project['id']}", json={"name": "Mine"}, headers=alice.headers
    )
    assert r.status_code == 403
    assert r.json()["reason"] == "NOT_OWNER"


@pytest.mark.asyncio
async def test_empty_update_rejected(client, project, admin):
    r = await client.patch(f"/api/v1/projects/{project['id']}", json={}, headers=admin.headers)
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_delete_tombstones_project_tasks_and_comments(client, project, task, admin, alice):
    r = await client.post(
        f"/api/v1/tasks/{task['id']}/comments", json={"content": "hi"}, headers=alice.headers
    )
    comment_id = r.json()["id"]

    r = await client.delete(f"/api/v1/projects/{project['id']}", headers=alice.headers)
    assert r.status_code == 403

    r = await client.delete(f"/api/v1/projects/{project['id']}", headers=admin.headers)
    assert r.status_code == 204

    assert (await client.get(f"/api/v1/projects/{project['id']}", headers=admin.headers)).status_code == 404
    assert (await client.get(f"/api/v1/tasks/{task['id']}", headers=alice.headers)).status_code == 404
    r = await client.patch(
        f"/api/v1/comments/{comment_id}", json={"content": "edit"}, headers=alice.headers
    )
    assert r.status_code == 404
    r = await client.get("/api/v1/projects", headers=admin.headers)
    assert r.json()["data"] == []


# ═══════════════════════════════════════════════════════════
# Members
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_add_member_grants_read(client, project, admin, bob):
    assert (await client.get(f"/api/v1/projects/{project['id']}", headers=bob.headers)).status_code == 404

    r = await client.post(
        f"/api/v1/projects/{project['id']}/members",
        json={"account_id": str(bob.id)},
        headers=admin.headers,
    )
    assert r.status_code == 201
    assert str(bob.id) in r.json()["member_ids"]

    assert (await client.get(f"/api/v1/projects/{project['id']}", headers=bob.headers)).status_code == 200


@pytest.mark.asyncio
async def test_add_duplicate_member_rejected(client, project, admin, alice):
    r = await client.post(
        f"/api/v1/projects/{project['id']}/members",
        json={"account_id": str(alice.id)},
        headers=admin.headers,
    )
    assert r.status_code == 422
    assert r.json()["code"] == "VALIDATION"


@pytest.mark.asyncio
async def test_add_unknown_account_is_404(client, project, admin):
    r = await client.post(
        f"/api/v1/projects/{project['id']}/members",
        json={"account_id": "00000000-0000-0000-0000-000000000042"},
        headers=admin.headers,
    )
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_member_cannot_manage_members(client, project, alice, bob):
    r = await client.post(
        f"/api/v1/projects/{project['id']}/members",
        json={"account_id": str(bob.id)},
        headers=alice.headers,
    )
    assert r.status_code == 403
    assert r.json()["reason"] == "NOT_OWNER"


@pytest.mark.asyncio
async def test_remove_member_revokes_read(client, project, admin, alice):
    r = await client.delete(
        f"/api/v1/projects/{project['id']}/members/{alice.id}", headers=admin.headers
    )
    assert r.status_code == 200
    assert str(alice.id) not in r.json()["member_ids"]

    r = await client.get(f"/api/v1/projects/{project['id']}", headers=alice.headers)
    assert r.status_code == 404

    r = await client.delete(
        f"/api/v1/projects/{project['id']}/members/{alice.id}", headers=admin.headers
    )
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_owner_cannot_be_removed(client, project, admin):
    r = await client.delete(
        f"/api/v1/projects/{project['id']}/members/{admin.id}", headers=admin.headers
    )
    assert r.status_code == 403
    assert r.json()["code"] == "FORBIDDEN"


# ═══════════════════════════════════════════════════════════
# Events
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_member_events_reach_project_room(client, rooms, project, admin, alice, bob):
    _, transport = await subscribe(rooms, alice, RoomKey.project(project["id"]))

    await client.post(
        f"/api/v1/projects/{project['id']}/members",
        json={"account_id": str(bob.id)},
        headers=admin.headers,
    )
    await client.delete(
        f"/api/v1/projects/{project['id']}/members/{bob.id}", headers=admin.headers
    )
    await client.patch(
        f"/api/v1/projects/{project['id']}", json={"name": "Artemis"}, headers=admin.headers
    )
    await settle()

    assert transport.types() == ["member:added", "member:removed", "project:updated"]
    added, removed, updated = transport.sent
    assert added["data"]["member"]["id"] == str(bob.id)
    assert removed["data"]["memberId"] == str(bob.id)
    assert updated["data"]["project"]["name"] == "Artemis"


@pytest.mark.asyncio
async def test_removed_member_stops_receiving_events(client, rooms, project, task, admin, alice):
    conn, transport = await subscribe(
        rooms, alice, RoomKey.project(project["id"]), RoomKey.task(task["id"])
    )
    _, owner_feed = await subscribe(rooms, admin, RoomKey.project(project["id"]))

    r = await client.delete(
        f"/api/v1/projects/{project['id']}/members/{alice.id}", headers=admin.headers
    )
    assert r.status_code == 200
    await client.patch(
        f"/api/v1/projects/{project['id']}",
        json={"description": "secret plans"},
        headers=admin.headers,
    )
    await client.post(
        f"/api/v1/tasks/{task['id']}/comments", json={"content": "psst"}, headers=admin.headers
    )
    await settle()

    assert transport.sent == [
        {"type": "left", "room": f"project:{project['id']}", "reason": "NOT_MEMBER"},
        {"type": "left", "room": f"task:{task['id']}", "reason": "NOT_MEMBER"},
    ]
    assert conn.rooms == set()
    assert conn.is_open
    assert owner_feed.types() == ["member:removed", "project:updated"]

    # Rejoining goes through the access check again.
    assert not await rooms.join(conn, RoomKey.project(project["id"]))


@pytest.mark.asyncio
async def test_project_delete_empties_its_rooms(client, rooms, project, task, admin, alice):
    _, transport = await subscribe(
        rooms, alice, RoomKey.project(project["id"]), RoomKey.task(task["id"])
    )

    r = await client.delete(f"/api/v1/projects/{project['id']}", headers=admin.headers)
    assert r.status_code == 204
    await settle()

    assert transport.types() == ["project:updated", "left", "left"]
    assert transport.sent[0]["data"]["project"]["deleted_at"] is not None
    assert {f["reason"] for f in transport.sent[1:]} == {"NOT_FOUND"}
    assert rooms.members(RoomKey.project(project["id"])) == set()
    assert rooms.members(RoomKey.task(task["id"])) == set()
