from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    TABLE_UNAVAILABLE = "TableUnavailable"
    INVALID_TRANSITION = "InvalidTransition"
    FORBIDDEN = "Forbidden"
    CONFLICT = "Conflict"
    RESOURCE_EXHAUSTED = "ResourceExhausted"
    VALIDATION_ERROR = "ValidationError"
    SESSION_NOT_ACTIVE = "SessionNotActive"
    ALREADY_JOINED = "AlreadyJoined"
    COMPENSATION_FAILED = "CompensationFailed"


# Transport mapping, used by the HTTP layer only.
HTTP_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.TABLE_UNAVAILABLE: 409,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.CONFLICT: 409,
    ErrorKind.ALREADY_JOINED: 409,
    ErrorKind.SESSION_NOT_ACTIVE: 409,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.VALIDATION_ERROR: 422,
    ErrorKind.RESOURCE_EXHAUSTED: 503,
    ErrorKind.COMPENSATION_FAILED: 500,
}


class TablesideError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]


class NotFound(TablesideError):
    kind = ErrorKind.NOT_FOUND


class TableUnavailable(TablesideError):
    kind = ErrorKind.TABLE_UNAVAILABLE


class InvalidTransition(TablesideError):
    kind = ErrorKind.INVALID_TRANSITION


class Forbidden(TablesideError):
    kind = ErrorKind.FORBIDDEN


class Conflict(TablesideError):
    kind = ErrorKind.CONFLICT


class ResourceExhausted(TablesideError):
    kind = ErrorKind.RESOURCE_EXHAUSTED


class ValidationError(TablesideError):
    kind = ErrorKind.VALIDATION_ERROR


class SessionNotActive(TablesideError):
    kind = ErrorKind.SESSION_NOT_ACTIVE


class AlreadyJoined(TablesideError):
    kind = ErrorKind.ALREADY_JOINED


class CompensationFailed(TablesideError):
    """An undo step could not be applied after a failed multi-step write."""

    kind = ErrorKind.COMPENSATION_FAILED

    def __init__(self, message: str, *, step: str, cause: BaseException) -> None:
        super().__init__(message)
        self.step = step
        self.cause = cause
