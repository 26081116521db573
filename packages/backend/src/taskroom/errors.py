"""Error taxonomy shared by the REST and real-time boundaries.

Learn: Services raise these typed errors instead of HTTPException so the
same failure can become an HTTP status (REST) or an error frame
(WebSocket). Each boundary maps the ErrorCode on its own.

UPSTREAM_UNAVAILABLE is kept distinct from FORBIDDEN / NOT_FOUND on
purpose: "provider down" is retryable, "denied" is not.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    AUTH_REQUIRED = "AUTH_REQUIRED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION = "VALIDATION"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"


HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.AUTH_REQUIRED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.VALIDATION: 422,
    ErrorCode.UPSTREAM_UNAVAILABLE: 503,
}


class TaskroomError(Exception):
    """Base class for every failure that crosses a boundary."""

    code: ErrorCode = ErrorCode.VALIDATION

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.code]

    def to_dict(self) -> dict:
        body = {"detail": self.message, "code": self.code.value}
        if self.reason:
            body["reason"] = self.reason
        return body


class AuthRequiredError(TaskroomError):
    code = ErrorCode.AUTH_REQUIRED


class ForbiddenError(TaskroomError):
    """Authenticated but not authorized. `reason` carries the subtype."""

    code = ErrorCode.FORBIDDEN


class NotFoundError(TaskroomError):
    code = ErrorCode.NOT_FOUND


class ValidationFailedError(TaskroomError):
    code = ErrorCode.VALIDATION


class UpstreamUnavailableError(TaskroomError):
    code = ErrorCode.UPSTREAM_UNAVAILABLE
