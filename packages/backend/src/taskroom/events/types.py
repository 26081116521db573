"""Event type constants.

Learn: Centralizing event types as constants prevents typos and
makes it easy to discover every frame a client can receive.
The names are the wire names — clients switch on them directly.
"""

# ─── Server → client: task lifecycle (project room) ──────

TASK_CREATED = "task:created"
TASK_UPDATED = "task:updated"
TASK_DELETED = "task:deleted"

# ─── Server → client: comments (task room) ───────────────

COMMENT_CREATED = "comment:created"
COMMENT_UPDATED = "comment:updated"
COMMENT_DELETED = "comment:deleted"

# ─── Server → client: project (project room) ─────────────

PROJECT_UPDATED = "project:updated"
MEMBER_ADDED = "member:added"
MEMBER_REMOVED = "member:removed"

# ─── Client → server: room membership ────────────────────

JOIN_PROJECT = "join:project"
LEAVE_PROJECT = "leave:project"
JOIN_TASK = "join:task"
LEAVE_TASK = "leave:task"
PING = "ping"

# ─── Server → client: control frames ─────────────────────

JOINED = "joined"
LEFT = "left"
PONG = "pong"
ERROR = "error"
