"""Access policy tests — the pure decision function.

Learn: decide() takes a snapshot instead of a session, so every rule can
be checked exhaustively without a database. Pattern:
test_<action>_<who>_<outcome>
"""

import uuid

import pytest

from taskroom.access import (
    Action,
    Decision,
    DenyReason,
    ProjectFacts,
    ResourceRef,
    ResourceSnapshot,
    decide,
    public_reason,
)
from taskroom.db.models import Role

OWNER = uuid.uuid4()
MEMBER = uuid.uuid4()
STRANGER = uuid.uuid4()

PROJECT = ProjectFacts(id=1, owner_id=OWNER, member_ids=frozenset({OWNER, MEMBER}))
PROJECT_REF = ResourceRef.project(1)
TASK_REF = ResourceRef.task(10)
COMMENT_REF = ResourceRef.comment(100)


def project_snapshot(role: Role = Role.USER) -> ResourceSnapshot:
    return ResourceSnapshot(role=role.value, project=PROJECT)


def task_snapshot(role: Role = Role.USER, created_by=MEMBER) -> ResourceSnapshot:
    return ResourceSnapshot(role=role.value, project=PROJECT, task_created_by=created_by)


def comment_snapshot(role: Role = Role.USER, author=OWNER) -> ResourceSnapshot:
    return ResourceSnapshot(
        role=role.value, project=PROJECT, task_created_by=MEMBER, comment_author=author
    )


# ═══════════════════════════════════════════════════════════
# Project creation
# ═══════════════════════════════════════════════════════════


def test_project_create_admin_allowed():
    d = decide(STRANGER, Action.PROJECT_CREATE, ResourceRef.none(), ResourceSnapshot(role="ADMIN"))
    assert d.allowed


@pytest.mark.parametrize("role", [Role.USER, Role.MANAGER, Role.ACCOUNTANT])
def test_project_create_non_admin_forbidden(role):
    d = decide(
        STRANGER, Action.PROJECT_CREATE, ResourceRef.none(), ResourceSnapshot(role=role.value)
    )
    assert not d
    assert d.reason == DenyReason.FORBIDDEN
    # No target resource, so there's nothing to hide behind a 404.
    assert public_reason(d, conceal=True) == DenyReason.FORBIDDEN


def test_unknown_account_forbidden():
    d = decide(STRANGER, Action.PROJECT_READ, PROJECT_REF, ResourceSnapshot(role=None))
    assert d.reason == DenyReason.FORBIDDEN


# ═══════════════════════════════════════════════════════════
# Owner-only project actions
# ═══════════════════════════════════════════════════════════


@pytest.mark.parametrize("action", [Action.PROJECT_UPDATE, Action.PROJECT_DELETE])
def test_owner_actions_owner_allowed(action):
    assert decide(OWNER, action, PROJECT_REF, project_snapshot())


@pytest.mark.parametrize("action", [Action.PROJECT_UPDATE, Action.PROJECT_DELETE])
def test_owner_actions_member_denied_not_owner(action):
    d = decide(MEMBER, action, PROJECT_REF, project_snapshot())
    assert d.reason == DenyReason.NOT_OWNER
    assert d.can_read


@pytest.mark.parametrize("role", list(Role))
def test_project_delete_only_owner_for_every_role(role):
    """ADMIN gets no bypass for delete, even on a project it isn't part of."""
    d = decide(STRANGER, Action.PROJECT_DELETE, PROJECT_REF, project_snapshot(role))
    assert not d
    assert d.reason == DenyReason.NOT_OWNER
    assert decide(OWNER, Action.PROJECT_DELETE, PROJECT_REF, project_snapshot(role))


def test_member_manage_admin_bypass():
    assert decide(STRANGER, Action.MEMBER_MANAGE, PROJECT_REF, project_snapshot(Role.ADMIN))


def test_member_manage_non_admin_owner_allowed():
    assert decide(OWNER, Action.MEMBER_MANAGE, PROJECT_REF, project_snapshot())


def test_member_manage_member_denied():
    d = decide(MEMBER, Action.MEMBER_MANAGE, PROJECT_REF, project_snapshot(Role.MANAGER))
    assert d.reason == DenyReason.NOT_OWNER


# ═══════════════════════════════════════════════════════════
# Membership actions
# ═══════════════════════════════════════════════════════════


@pytest.mark.parametrize(
    "action,ref,snapshot",
    [
        (Action.PROJECT_READ, PROJECT_REF, project_snapshot()),
        (Action.TASK_CREATE, PROJECT_REF, project_snapshot()),
        (Action.TASK_READ, TASK_REF, task_snapshot()),
        (Action.TASK_UPDATE, TASK_REF, task_snapshot()),
        (Action.COMMENT_CREATE, TASK_REF, task_snapshot()),
        (Action.COMMENT_LIST, TASK_REF, task_snapshot()),
    ],
)
def test_member_actions(action, ref, snapshot):
    assert decide(MEMBER, action, ref, snapshot)
    assert decide(OWNER, action, ref, snapshot)
    denied = decide(STRANGER, action, ref, snapshot)
    assert denied.reason == DenyReason.NOT_MEMBER
    assert not denied.can_read


def test_admin_not_member_cannot_read_project():
    d = decide(STRANGER, Action.PROJECT_READ, PROJECT_REF, project_snapshot(Role.ADMIN))
    assert d.reason == DenyReason.NOT_MEMBER


# ═══════════════════════════════════════════════════════════
# Comment authorship
# ═══════════════════════════════════════════════════════════


def test_comment_update_author_allowed():
    assert decide(OWNER, Action.COMMENT_UPDATE, COMMENT_REF, comment_snapshot(author=OWNER))


@pytest.mark.parametrize("role", list(Role))
def test_comment_edit_by_other_member_denied_not_author(role):
    """Owner U1 wrote the comment; member U2 tries to edit → NOT_AUTHOR, any role."""
    d = decide(MEMBER, Action.COMMENT_UPDATE, COMMENT_REF, comment_snapshot(role, author=OWNER))
    assert d.reason == DenyReason.NOT_AUTHOR
    assert d.can_read


def test_comment_delete_project_owner_not_author_denied():
    d = decide(
        OWNER, Action.COMMENT_DELETE, COMMENT_REF, comment_snapshot(Role.ADMIN, author=MEMBER)
    )
    assert d.reason == DenyReason.NOT_AUTHOR


# ═══════════════════════════════════════════════════════════
# Task deletion
# ═══════════════════════════════════════════════════════════


def test_task_delete_creator_allowed():
    assert decide(MEMBER, Action.TASK_DELETE, TASK_REF, task_snapshot(created_by=MEMBER))


def test_task_delete_admin_allowed():
    assert decide(STRANGER, Action.TASK_DELETE, TASK_REF, task_snapshot(Role.ADMIN))


def test_task_delete_other_member_forbidden():
    d = decide(OWNER, Action.TASK_DELETE, TASK_REF, task_snapshot(created_by=MEMBER))
    assert d.reason == DenyReason.FORBIDDEN
    assert d.can_read


# ═══════════════════════════════════════════════════════════
# Missing resources and misuse
# ═══════════════════════════════════════════════════════════


def test_missing_project_not_found():
    d = decide(OWNER, Action.PROJECT_READ, PROJECT_REF, ResourceSnapshot(role="USER"))
    assert d.reason == DenyReason.NOT_FOUND


def test_missing_task_not_found():
    d = decide(MEMBER, Action.TASK_READ, TASK_REF, ResourceSnapshot(role="USER", project=PROJECT))
    assert d.reason == DenyReason.NOT_FOUND


def test_missing_comment_not_found():
    d = decide(OWNER, Action.COMMENT_UPDATE, COMMENT_REF, task_snapshot())
    assert d.reason == DenyReason.NOT_FOUND


def test_action_on_wrong_resource_kind_raises():
    with pytest.raises(ValueError):
        decide(OWNER, Action.TASK_READ, PROJECT_REF, project_snapshot())


# ═══════════════════════════════════════════════════════════
# Existence concealment
# ═══════════════════════════════════════════════════════════


def test_public_reason_conceals_for_non_readers():
    d = Decision.deny(DenyReason.NOT_MEMBER, can_read=False)
    assert public_reason(d, conceal=True) == DenyReason.NOT_FOUND
    assert public_reason(d, conceal=False) == DenyReason.NOT_MEMBER


def test_public_reason_precise_for_readers():
    d = Decision.deny(DenyReason.NOT_AUTHOR, can_read=True)
    assert public_reason(d, conceal=True) == DenyReason.NOT_AUTHOR


def test_public_reason_rejects_allow():
    with pytest.raises(ValueError):
        public_reason(Decision.allow())
