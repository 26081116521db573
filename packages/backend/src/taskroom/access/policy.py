"""Authorization policy — a pure function over a resource snapshot.

Learn: The rules are evaluated in order; the first one that applies
decides. There is no I/O here, so every rule can be unit-tested with
hand-built snapshots:

1. ADMIN may create projects and manage members of any project.
2. Updating/deleting a project and managing its members requires
   ownership (→ NOT_OWNER). ADMIN gets no bypass for update/delete.
3. Reading a project, and creating/reading/updating tasks and
   creating/listing comments, requires membership (→ NOT_MEMBER).
4. Editing/deleting a comment requires authorship (→ NOT_AUTHOR). No
   role and no project ownership overrides this.
5. Deleting a task requires ADMIN or being the task's creator
   (→ FORBIDDEN).

Missing or soft-deleted resources deny with NOT_FOUND before any rule runs.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from taskroom.db.models import Role


class ResourceKind(str, Enum):
    PROJECT = "project"
    TASK = "task"
    COMMENT = "comment"


class Action(str, Enum):
    PROJECT_CREATE = "project:create"
    PROJECT_READ = "project:read"
    PROJECT_UPDATE = "project:update"
    PROJECT_DELETE = "project:delete"
    MEMBER_MANAGE = "project:manage_members"
    TASK_CREATE = "task:create"
    TASK_READ = "task:read"
    TASK_UPDATE = "task:update"
    TASK_DELETE = "task:delete"
    COMMENT_CREATE = "comment:create"
    COMMENT_LIST = "comment:list"
    COMMENT_UPDATE = "comment:update"
    COMMENT_DELETE = "comment:delete"


# Which resource kind each action is evaluated against. PROJECT_CREATE
# has no target resource.
ACTION_TARGET: dict[Action, Optional[ResourceKind]] = {
    Action.PROJECT_CREATE: None,
    Action.PROJECT_READ: ResourceKind.PROJECT,
    Action.PROJECT_UPDATE: ResourceKind.PROJECT,
    Action.PROJECT_DELETE: ResourceKind.PROJECT,
    Action.MEMBER_MANAGE: ResourceKind.PROJECT,
    Action.TASK_CREATE: ResourceKind.PROJECT,
    Action.TASK_READ: ResourceKind.TASK,
    Action.TASK_UPDATE: ResourceKind.TASK,
    Action.TASK_DELETE: ResourceKind.TASK,
    Action.COMMENT_CREATE: ResourceKind.TASK,
    Action.COMMENT_LIST: ResourceKind.TASK,
    Action.COMMENT_UPDATE: ResourceKind.COMMENT,
    Action.COMMENT_DELETE: ResourceKind.COMMENT,
}

OWNER_ACTIONS = {Action.PROJECT_UPDATE, Action.PROJECT_DELETE, Action.MEMBER_MANAGE}
MEMBER_ACTIONS = {
    Action.PROJECT_READ,
    Action.TASK_CREATE,
    Action.TASK_READ,
    Action.TASK_UPDATE,
    Action.COMMENT_CREATE,
    Action.COMMENT_LIST,
}
AUTHOR_ACTIONS = {Action.COMMENT_UPDATE, Action.COMMENT_DELETE}
ADMIN_BYPASS = {Action.PROJECT_CREATE, Action.MEMBER_MANAGE}


class DenyReason(str, Enum):
    NOT_OWNER = "NOT_OWNER"
    NOT_MEMBER = "NOT_MEMBER"
    NOT_AUTHOR = "NOT_AUTHOR"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"


@dataclass(frozen=True)
class ResourceRef:
    kind: Optional[ResourceKind]
    id: Optional[int] = None

    @classmethod
    def none(cls) -> "ResourceRef":
        return cls(kind=None)

    @classmethod
    def project(cls, project_id: int) -> "ResourceRef":
        return cls(ResourceKind.PROJECT, project_id)

    @classmethod
    def task(cls, task_id: int) -> "ResourceRef":
        return cls(ResourceKind.TASK, task_id)

    @classmethod
    def comment(cls, comment_id: int) -> "ResourceRef":
        return cls(ResourceKind.COMMENT, comment_id)


@dataclass(frozen=True)
class Decision:
    """ALLOW, or DENY with a reason.

    `can_read` says whether the account could read the enclosing project.
    The REST boundary uses it to decide between 403 and 404.
    """

    allowed: bool
    reason: Optional[DenyReason] = None
    can_read: bool = False

    def __bool__(self) -> bool:
        return self.allowed

    @classmethod
    def allow(cls, can_read: bool = True) -> "Decision":
        return cls(allowed=True, can_read=can_read)

    @classmethod
    def deny(cls, reason: DenyReason, can_read: bool = False) -> "Decision":
        return cls(allowed=False, reason=reason, can_read=can_read)


@dataclass(frozen=True)
class ProjectFacts:
    id: int
    owner_id: uuid.UUID
    member_ids: frozenset[uuid.UUID] = field(default_factory=frozenset)

    def has_member(self, account_id: uuid.UUID) -> bool:
        return account_id == self.owner_id or account_id in self.member_ids


@dataclass(frozen=True)
class ResourceSnapshot:
    """Everything the policy needs, read in one go for one decision.

    `project` is the target project, or the project enclosing the target
    task/comment. None means the target (or an ancestor) doesn't exist.
    """

    role: Optional[str]
    project: Optional[ProjectFacts] = None
    task_created_by: Optional[uuid.UUID] = None
    comment_author: Optional[uuid.UUID] = None


def decide(
    account_id: uuid.UUID,
    action: Action,
    resource: ResourceRef,
    snapshot: ResourceSnapshot,
) -> Decision:
    """Apply the ordered policy. Pure — no I/O, no caching."""
    expected = ACTION_TARGET[action]
    if resource.kind != expected:
        raise ValueError(
            f"{action.value} applies to {expected.value if expected else 'no resource'}, "
            f"got {resource.kind.value if resource.kind else 'none'}"
        )

    if snapshot.role is None:
        # Unknown account — authenticated upstream but not resolvable now.
        return Decision.deny(DenyReason.FORBIDDEN)

    is_admin = snapshot.role == Role.ADMIN.value

    if action == Action.PROJECT_CREATE:
        if is_admin:
            return Decision.allow()
        # Nothing to conceal: there is no target resource.
        return Decision.deny(DenyReason.FORBIDDEN, can_read=True)

    project = snapshot.project
    if project is None:
        return Decision.deny(DenyReason.NOT_FOUND)
    if resource.kind == ResourceKind.TASK and snapshot.task_created_by is None:
        return Decision.deny(DenyReason.NOT_FOUND)
    if resource.kind == ResourceKind.COMMENT and snapshot.comment_author is None:
        return Decision.deny(DenyReason.NOT_FOUND)

    can_read = project.has_member(account_id)

    # Rule 1
    if is_admin and action in ADMIN_BYPASS:
        return Decision.allow(can_read=can_read)

    # Rule 2
    if action in OWNER_ACTIONS:
        if account_id == project.owner_id:
            return Decision.allow(can_read=can_read)
        return Decision.deny(DenyReason.NOT_OWNER, can_read=can_read)

    # Rule 3
    if action in MEMBER_ACTIONS:
        if can_read:
            return Decision.allow(can_read=True)
        return Decision.deny(DenyReason.NOT_MEMBER)

    # Rule 4
    if action in AUTHOR_ACTIONS:
        if account_id == snapshot.comment_author:
            return Decision.allow(can_read=can_read)
        return Decision.deny(DenyReason.NOT_AUTHOR, can_read=can_read)

    # Rule 5
    if action == Action.TASK_DELETE:
        if is_admin or account_id == snapshot.task_created_by:
            return Decision.allow(can_read=can_read)
        return Decision.deny(DenyReason.FORBIDDEN, can_read=can_read)

    raise ValueError(f"No rule covers {action.value}")
