"""Room manager — authenticated connections, room membership, fan-out.

Learn: This is the only shared mutable state in the process. Many
connections join, leave, and disconnect concurrently while request
handlers publish events, so every touch of the membership table goes
through a lock:

- The table is a dict of independent _Room entries, each with its own
  asyncio.Lock. Traffic for one project never waits on another project.
- join/leave/publish take exactly one room lock.
- disconnect takes the locks of *all* the connection's rooms, in sorted
  key order (no deadlocks), and removes it from every room at once. A
  concurrent publish sees the connection either in all its rooms or in
  none.
- An entry is retired (and dropped from the dict) when its last member
  leaves. A join that raced with the retirement notices the flag after
  acquiring the lock and retries on a fresh entry.

Access is checked at join time, so a subscription is only as good as
the membership it was granted on. When a write takes read access away
(member removed, project or task deleted) the service calls revoke()
after its commit, which pulls the affected connections out of those
rooms under the room locks. Every revoke() bumps a revision counter; a
join whose access check started before the bump re-checks instead of
adding a member on a stale ALLOW.

Delivery never blocks the publisher. publish() only enqueues into each
connection's bounded outbox; a per-connection pump task does the actual
(possibly slow) network write. When an outbox is full the connection's
overflow policy applies: drop the oldest queued frame, or close the
connection. Either way the other subscribers are unaffected.

Ordering: publishes to one room enqueue under that room's lock, and each
outbox is FIFO with a single reader, so every subscriber sees a room's
events in publish order. Nothing is promised across rooms.

Connection lifecycle: CONNECTING → AUTHENTICATED → CLOSED. CLOSED is
terminal; a reconnecting client gets a new Connection and must re-join.
"""

import asyncio
import uuid
from contextlib import AsyncExitStack
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol, Union

import structlog

from taskroom.access.policy import Decision
from taskroom.errors import (
    AuthRequiredError,
    ErrorCode,
    TaskroomError,
    ValidationFailedError,
)
from taskroom.events import types
from taskroom.events.domain import DomainEvent, InvalidRoomKeyError, RoomKey

logger = structlog.get_logger()

# WebSocket close codes
CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_TRY_AGAIN_LATER = 1013
CLOSE_AUTH_FAILED = 4001
CLOSE_OVERFLOW = 4008

Authenticator = Callable[[str], Awaitable[uuid.UUID]]
RoomAuthorizer = Callable[[uuid.UUID, RoomKey], Awaitable[Decision]]


class ConnectionState(str, Enum):
    CONNECTING = "CONNECTING"
    AUTHENTICATED = "AUTHENTICATED"
    CLOSED = "CLOSED"


class OverflowPolicy(str, Enum):
    DROP_OLDEST = "drop_oldest"
    DISCONNECT = "disconnect"


class ConnectionClosedError(TaskroomError):
    """The connection closed while an operation on it was in flight."""


class Transport(Protocol):
    """The wire underneath a Connection (a WebSocket in production)."""

    async def send(self, frame: dict[str, Any]) -> None: ...

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None: ...


_STOP = object()


class Connection:
    """One client connection and its outbound queue."""

    def __init__(
        self,
        transport: Transport,
        queue_size: int = 256,
        overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
    ):
        self.id = uuid.uuid4().hex
        self.transport = transport
        self.state = ConnectionState.CONNECTING
        self.account_id: Optional[uuid.UUID] = None
        self.rooms: set[RoomKey] = set()
        self.overflow_policy = OverflowPolicy(overflow_policy)
        self.dropped = 0
        self.overflowed = False
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=max(1, queue_size))
        self._stopped = False

    def __repr__(self) -> str:
        return f"<Connection {self.id} {self.state.value} account={self.account_id}>"

    @property
    def is_open(self) -> bool:
        return self.state != ConnectionState.CLOSED and not self.overflowed

    def offer(self, frame: dict[str, Any]) -> bool:
        """Queue a frame without blocking. Returns False if not queued."""
        if not self.is_open:
            return False
        try:
            self._outbox.put_nowait(frame)
            return True
        except asyncio.QueueFull:
            pass

        if self.overflow_policy == OverflowPolicy.DROP_OLDEST:
            self._outbox.get_nowait()
            self.dropped += 1
            self._outbox.put_nowait(frame)
            return True

        # Disconnect policy: stop accepting frames and wake the pump so the
        # owner of the connection tears it down.
        self.overflowed = True
        self._stop()
        return False

    def pending(self) -> int:
        return self._outbox.qsize()

    async def pump(self) -> None:
        """Write queued frames to the transport until stopped.

        Run as one task per connection. Transport errors propagate so the
        caller can disconnect.
        """
        while True:
            frame = await self._outbox.get()
            if frame is _STOP:
                return
            await self.transport.send(frame)

    def _stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        while not self._outbox.empty():
            self._outbox.get_nowait()
        self._outbox.put_nowait(_STOP)


class _Room:
    __slots__ = ("key", "lock", "members", "retired")

    def __init__(self, key: RoomKey):
        self.key = key
        self.lock = asyncio.Lock()
        self.members: set[Connection] = set()
        self.retired = False


class RoomManager:
    """Explicitly constructed broadcast core.

    Construct it before the server accepts connections, call start(),
    pass it to everything that publishes, and close() it on shutdown.
    """

    def __init__(
        self,
        authenticator: Authenticator,
        authorizer: RoomAuthorizer,
        queue_size: int = 256,
        overflow_policy: Union[OverflowPolicy, str] = OverflowPolicy.DROP_OLDEST,
    ):
        self._authenticate = authenticator
        self._authorize = authorizer
        self.queue_size = queue_size
        self.overflow_policy = OverflowPolicy(overflow_policy)
        self._rooms: dict[RoomKey, _Room] = {}
        self._connections: dict[str, Connection] = {}
        self._evicting: set[str] = set()
        self._background: set[asyncio.Task] = set()
        self._revision = 0
        self._running = False

    # ─── Lifecycle ───────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        self._running = True
        logger.info("rooms.started", overflow_policy=self.overflow_policy.value)

    async def close(self) -> None:
        """Close every connection and release the room table."""
        self._running = False
        connections = list(self._connections.values())
        for conn in connections:
            await self.disconnect(conn, code=CLOSE_GOING_AWAY, reason="Server shutting down")
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._rooms.clear()
        logger.info("rooms.closed", connections=len(connections))

    def stats(self) -> dict[str, int]:
        return {
            "connections": len(self._connections),
            "rooms": len(self._rooms),
        }

    def members(self, room: Union[RoomKey, str]) -> set[Connection]:
        """Snapshot of a room's members (for diagnostics and tests)."""
        entry = self._rooms.get(self._key(room))
        return set(entry.members) if entry else set()

    # ─── Connections ─────────────────────────────────────

    def connect(self, transport: Transport) -> Connection:
        """Register a new, unauthenticated connection."""
        if not self._running:
            raise RuntimeError("RoomManager is not running. Call start() first.")
        conn = Connection(transport, self.queue_size, self.overflow_policy)
        self._connections[conn.id] = conn
        return conn

    async def authenticate(self, conn: Connection, credential: str) -> uuid.UUID:
        """Verify the handshake credential.

        On rejection the transport is closed (an unauthenticated peer must
        not keep a socket open) and the error is re-raised.
        """
        if conn.state != ConnectionState.CONNECTING:
            raise ValidationFailedError("Connection already authenticated or closed")

        try:
            account_id = await self._authenticate(credential)
        except TaskroomError as e:
            code = (
                CLOSE_TRY_AGAIN_LATER
                if e.code == ErrorCode.UPSTREAM_UNAVAILABLE
                else CLOSE_AUTH_FAILED
            )
            logger.info("rooms.auth_rejected", connection_id=conn.id, code=e.code.value)
            await self.disconnect(conn, code=code, reason=e.message)
            raise

        if conn.state == ConnectionState.CLOSED:
            raise ConnectionClosedError("Connection closed during authentication")

        conn.account_id = account_id
        conn.state = ConnectionState.AUTHENTICATED
        logger.info(
            "rooms.authenticated", connection_id=conn.id, account_id=str(account_id)
        )
        return account_id

    async def disconnect(
        self, conn: Connection, code: int = CLOSE_NORMAL, reason: str = ""
    ) -> None:
        """Remove the connection from every room at once, then close it."""
        if conn.state == ConnectionState.CLOSED:
            return
        # Mark first: an in-flight join() sees CLOSED once it gets its lock.
        conn.state = ConnectionState.CLOSED

        entries = [
            self._rooms[key] for key in sorted(conn.rooms) if key in self._rooms
        ]
        async with AsyncExitStack() as stack:
            for entry in entries:
                await stack.enter_async_context(entry.lock)
            for entry in entries:
                entry.members.discard(conn)
                self._retire_if_empty(entry)
            conn.rooms.clear()

        self._connections.pop(conn.id, None)
        conn._stop()
        try:
            await conn.transport.close(code, reason)
        except Exception as e:
            # The peer may already be gone; the connection is closed either way.
            logger.debug("rooms.transport_close_failed", connection_id=conn.id, error=str(e))
        logger.info(
            "rooms.disconnected",
            connection_id=conn.id,
            account_id=str(conn.account_id) if conn.account_id else None,
            code=code,
        )

    # ─── Rooms ───────────────────────────────────────────

    async def join(self, conn: Connection, room: Union[RoomKey, str]) -> Decision:
        """Join a room after the same access check the REST read path uses.

        A denial only rejects this join; the connection stays usable.
        """
        self._require_authenticated(conn)
        key = self._key(room)

        while True:
            revision = self._revision
            decision = await self._authorize(conn.account_id, key)
            if not decision:
                logger.info(
                    "rooms.join_denied",
                    connection_id=conn.id,
                    room=str(key),
                    reason=decision.reason.value if decision.reason else None,
                )
                return decision
            if await self._add_member(conn, key, revision):
                break
            logger.debug("rooms.join_rechecked", connection_id=conn.id, room=str(key))

        logger.info("rooms.joined", connection_id=conn.id, room=str(key))
        return decision

    async def _add_member(self, conn: Connection, key: RoomKey, revision: int) -> bool:
        """Add conn to the room unless access was revoked since `revision`."""
        while True:
            entry = self._rooms.get(key)
            if entry is None:
                entry = _Room(key)
                self._rooms[key] = entry
            async with entry.lock:
                if entry.retired:
                    continue
                if conn.state != ConnectionState.AUTHENTICATED:
                    self._retire_if_empty(entry)
                    raise ConnectionClosedError("Connection closed before join completed")
                if self._revision != revision:
                    self._retire_if_empty(entry)
                    return False
                entry.members.add(conn)
                conn.rooms.add(key)
                return True

    async def leave(self, conn: Connection, room: Union[RoomKey, str]) -> bool:
        """Leave a room. Leaving a room not joined is a no-op (False)."""
        key = self._key(room)
        entry = self._rooms.get(key)
        if entry is None:
            conn.rooms.discard(key)
            return False
        async with entry.lock:
            was_member = conn in entry.members
            entry.members.discard(conn)
            conn.rooms.discard(key)
            self._retire_if_empty(entry)
        if was_member:
            logger.info("rooms.left", connection_id=conn.id, room=str(key))
        return was_member

    async def publish(self, event: DomainEvent) -> int:
        """Fan an event out to the room's current members.

        Returns the number of connections the frame was queued for. Members
        who join later never see it — there is no backlog.
        """
        entry = self._rooms.get(event.room)
        if entry is None:
            return 0
        frame = event.to_frame()
        delivered = 0
        overflowed: list[Connection] = []
        async with entry.lock:
            for conn in entry.members:
                if conn.offer(frame):
                    delivered += 1
                elif conn.overflowed:
                    overflowed.append(conn)
        for conn in overflowed:
            self._evict(conn, event.room)
        return delivered

    async def revoke(
        self,
        rooms: Iterable[Union[RoomKey, str]],
        account_id: Optional[uuid.UUID] = None,
        reason: str = "NOT_FOUND",
    ) -> int:
        """Remove connections from rooms they can no longer read.

        With an account id only that account's connections are removed;
        without one every member goes and the rooms are retired. Each
        removed connection gets a `left` frame carrying `reason`, queued
        after any event already in its outbox. The socket stays open.

        Returns the number of (connection, room) pairs removed.
        """
        keys = sorted({self._key(room) for room in rooms})
        # Bump before touching any room: a join already past its access
        # check will re-check once it holds the room lock.
        self._revision += 1

        removed = 0
        for key in keys:
            entry = self._rooms.get(key)
            if entry is None:
                continue
            async with entry.lock:
                targets = [
                    conn
                    for conn in entry.members
                    if account_id is None or conn.account_id == account_id
                ]
                for conn in targets:
                    entry.members.discard(conn)
                    conn.rooms.discard(key)
                    conn.offer({"type": types.LEFT, "room": str(key), "reason": reason})
                removed += len(targets)
                self._retire_if_empty(entry)

        if removed:
            logger.info(
                "rooms.revoked",
                rooms=len(keys),
                account_id=str(account_id) if account_id else None,
                removed=removed,
                reason=reason,
            )
        return removed

    def _evict(self, conn: Connection, room: RoomKey) -> None:
        """Disconnect an overflowed connection in the background.

        disconnect() needs the room locks and a network close; the
        publisher must not wait for either.
        """
        if conn.id in self._evicting:
            return
        self._evicting.add(conn.id)
        logger.warning("rooms.outbox_overflow", connection_id=conn.id, room=str(room))

        async def _run():
            try:
                await self.disconnect(conn, code=CLOSE_OVERFLOW, reason="Outbound buffer overflow")
            finally:
                self._evicting.discard(conn.id)

        task = asyncio.create_task(_run())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ─── Helpers ─────────────────────────────────────────

    def _retire_if_empty(self, entry: _Room) -> None:
        # Caller holds entry.lock
        if entry.members:
            return
        entry.retired = True
        if self._rooms.get(entry.key) is entry:
            del self._rooms[entry.key]

    @staticmethod
    def _key(room: Union[RoomKey, str]) -> RoomKey:
        if isinstance(room, RoomKey):
            return room
        try:
            return RoomKey.parse(room)
        except InvalidRoomKeyError as e:
            raise ValidationFailedError(str(e))

    @staticmethod
    def _require_authenticated(conn: Connection) -> None:
        if conn.state == ConnectionState.CLOSED:
            raise ConnectionClosedError("Connection is closed")
        if conn.state != ConnectionState.AUTHENTICATED:
            raise AuthRequiredError("Authenticate before joining rooms")
