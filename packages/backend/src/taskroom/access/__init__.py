"""Access control — who may do what to which project, task, or comment.

policy.py holds the ordered rules as a pure function; guard.py loads the
facts those rules need, fresh, for every check.
"""

from taskroom.access.enforce import enforce, public_reason
from taskroom.access.guard import AccessGuard
from taskroom.access.policy import (
    Action,
    Decision,
    DenyReason,
    ProjectFacts,
    ResourceKind,
    ResourceRef,
    ResourceSnapshot,
    decide,
)

__all__ = [
    "AccessGuard",
    "Action",
    "Decision",
    "DenyReason",
    "ProjectFacts",
    "ResourceKind",
    "ResourceRef",
    "ResourceSnapshot",
    "decide",
    "enforce",
    "public_reason",
]
