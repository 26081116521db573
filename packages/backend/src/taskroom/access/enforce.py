"""Turning a Decision into a boundary response.

Learn: One policy for 403-vs-404, used by REST routes and room joins
alike: an account that can't read the enclosing project learns nothing
about it — every denial looks like NOT_FOUND. Accounts that can read the
project get the precise reason (NOT_OWNER, NOT_AUTHOR, ...), since
existence is no secret to them. TASKROOM_CONCEAL_UNREADABLE=false
switches to always reporting the precise reason.
"""

from typing import Optional

from taskroom.access.policy import Decision, DenyReason
from taskroom.config import settings
from taskroom.errors import ForbiddenError, NotFoundError

_MESSAGES = {
    DenyReason.NOT_OWNER: "Only the project owner can perform this action",
    DenyReason.NOT_MEMBER: "Not a project member",
    DenyReason.NOT_AUTHOR: "Only the comment author can perform this action",
    DenyReason.FORBIDDEN: "Not allowed",
}


def public_reason(decision: Decision, conceal: Optional[bool] = None) -> DenyReason:
    """The denial reason the caller is allowed to see."""
    if decision.allowed:
        raise ValueError("Decision is not a denial")
    if conceal is None:
        conceal = settings.conceal_unreadable
    if decision.reason == DenyReason.NOT_FOUND:
        return DenyReason.NOT_FOUND
    if conceal and not decision.can_read:
        return DenyReason.NOT_FOUND
    return decision.reason


def enforce(decision: Decision, resource: str = "Resource") -> None:
    """Raise NotFoundError / ForbiddenError unless the decision allows."""
    if decision.allowed:
        return
    reason = public_reason(decision)
    if reason == DenyReason.NOT_FOUND:
        raise NotFoundError(f"{resource} not found")
    raise ForbiddenError(_MESSAGES[reason], reason=reason.value)
