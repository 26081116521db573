"""WebSocket endpoint — the real-time boundary.

Learn: Each client opens one socket at /ws and authenticates at the
handshake, with `Authorization: Bearer <token>` or `?token=<token>`.
After that it sends small JSON frames to pick the rooms it wants:

    → {"type": "join:project", "id": 7}
    ← {"type": "joined", "room": "project:7"}
    → {"type": "join:task", "id": 99}
    ← {"type": "error", "code": "NOT_FOUND", "detail": "...", "room": "task:99"}
    ← {"type": "task:created", "room": "project:7", "data": {"task": {...}}}

A failed join only answers with an error frame; the socket stays open.
A failed handshake closes the socket (4001 bad credential, 1013 identity
provider unavailable, retry later).

Two concurrent tasks run per connection:
1. pump — drains the connection's outbox to the socket (the only writer)
2. receiver — reads client frames; replies go through the outbox too,
   so acks and events reach the client in a single, ordered stream

When either finishes, the other is cancelled and the Room Manager drops
the connection from every room.
"""

import asyncio
import json
from typing import Any, Optional

import structlog
from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketState

from taskroom.access import public_reason
from taskroom.access.policy import DenyReason
from taskroom.auth.dependencies import bearer_token
from taskroom.errors import ErrorCode, TaskroomError
from taskroom.events import types
from taskroom.events.domain import RoomKey, RoomKind
from taskroom.realtime.rooms import (
    CLOSE_AUTH_FAILED,
    CLOSE_NORMAL,
    CLOSE_OVERFLOW,
    CLOSE_TRY_AGAIN_LATER,
    Connection,
    RoomManager,
)

logger = structlog.get_logger()
router = APIRouter()

# Client frame type → (room kind, join?)
ROOM_FRAMES = {
    types.JOIN_PROJECT: (RoomKind.PROJECT, True),
    types.LEAVE_PROJECT: (RoomKind.PROJECT, False),
    types.JOIN_TASK: (RoomKind.TASK, True),
    types.LEAVE_TASK: (RoomKind.TASK, False),
}


class WebSocketTransport:
    """Transport adapter over a Starlette WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send(self, frame: dict[str, Any]) -> None:
        await self.websocket.send_json(frame)

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        if (
            self.websocket.application_state == WebSocketState.CONNECTED
            and self.websocket.client_state == WebSocketState.CONNECTED
        ):
            await self.websocket.close(code=code, reason=reason)


def error_frame(
    code: str, detail: str, reason: Optional[str] = None, **extra: Any
) -> dict[str, Any]:
    frame = {"type": types.ERROR, "code": code, "detail": detail}
    if reason:
        frame["reason"] = reason
    frame.update(extra)
    return frame


async def handle_client_frame(
    rooms: RoomManager, conn: Connection, frame: Any
) -> Optional[dict[str, Any]]:
    """Apply one client frame. Returns the reply frame, if any."""
    if not isinstance(frame, dict):
        return error_frame(ErrorCode.VALIDATION.value, "Frame must be a JSON object")

    kind = frame.get("type")
    if kind == types.PING:
        return {"type": types.PONG}

    rule = ROOM_FRAMES.get(kind)
    if rule is None:
        return error_frame(ErrorCode.VALIDATION.value, f"Unknown frame type: {kind!r}")
    room_kind, joining = rule

    raw_id = frame.get("id")
    if isinstance(raw_id, bool) or not isinstance(raw_id, (int, str)):
        return error_frame(ErrorCode.VALIDATION.value, "Frame needs a room id", request=kind)
    try:
        room = RoomKey(room_kind, int(raw_id))
    except ValueError:
        return error_frame(ErrorCode.VALIDATION.value, "Room id must be an integer", request=kind)

    try:
        if not joining:
            await rooms.leave(conn, room)
            return {"type": types.LEFT, "room": str(room)}

        decision = await rooms.join(conn, room)
    except TaskroomError as e:
        return error_frame(e.code.value, e.message, e.reason, request=kind, room=str(room))

    if decision:
        return {"type": types.JOINED, "room": str(room)}

    reason = public_reason(decision)
    if reason == DenyReason.NOT_FOUND:
        return error_frame(
            ErrorCode.NOT_FOUND.value,
            f"{room_kind.value.capitalize()} not found",
            request=kind,
            room=str(room),
        )
    return error_frame(
        ErrorCode.FORBIDDEN.value,
        "Not allowed to join this room",
        reason.value,
        request=kind,
        room=str(room),
    )


async def _receive_frames(rooms: RoomManager, conn: Connection, websocket: WebSocket):
    """Read client frames until the client goes away."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return
        raw = message.get("text")
        if raw is None:
            conn.offer(error_frame(ErrorCode.VALIDATION.value, "Frames must be text"))
            continue
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            reply = error_frame(ErrorCode.VALIDATION.value, "Frame is not valid JSON")
        else:
            reply = await handle_client_frame(rooms, conn, frame)
        if reply is not None:
            conn.offer(reply)


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    """Authenticated event stream with per-room subscriptions."""
    rooms: RoomManager = websocket.app.state.rooms
    token = websocket.query_params.get("token") or bearer_token(
        websocket.headers.get("authorization")
    )

    # Accept first so the close code reaches the client.
    await websocket.accept()
    if not rooms.running:
        await websocket.close(code=CLOSE_TRY_AGAIN_LATER, reason="Server not ready")
        return

    conn = rooms.connect(WebSocketTransport(websocket))
    if not token:
        await rooms.disconnect(conn, code=CLOSE_AUTH_FAILED, reason="Authentication required")
        return
    try:
        await rooms.authenticate(conn, token)
    except TaskroomError:
        # authenticate() already closed the socket with the right code.
        return

    tasks = [
        asyncio.create_task(conn.pump()),
        asyncio.create_task(_receive_frames(rooms, conn, websocket)),
    ]
    code = CLOSE_NORMAL
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.info(
                    "ws.connection_error",
                    connection_id=conn.id,
                    error=str(task.exception()),
                )
        if conn.overflowed:
            code = CLOSE_OVERFLOW
    finally:
        # Runs on cancellation of this handler too: no task may outlive the
        # socket, and the room cleanup must finish once started.
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await asyncio.shield(rooms.disconnect(conn, code=code))
