"""Failures raised by the core operations.

Every error carries an explicit kind and HTTP status so the boundary in
``main.py`` can render it without guessing. Expected "nothing there"
outcomes (no active period, student not present) are plain ``None`` returns
and never travel through here.
"""
from enum import Enum

from fastapi import status


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    MISSING_CREDENTIALS = "missing_credentials"
    UNKNOWN_TOKEN = "unknown_token"
    EXPIRED = "expired"
    INSUFFICIENT_LEVEL = "insufficient_level"
    UNAUTHORIZED = "unauthorized"
    PASSWORD_REQUIRED = "password_required"
    BAD_REQUEST = "bad_request"
    CONFLICT = "conflict"
    UPSTREAM_FAILURE = "upstream_failure"
    INTERNAL = "internal"


class ServiceError(Exception):
    kind = ErrorKind.INTERNAL
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, kind: ErrorKind | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}


class NotFound(ServiceError):
    kind = ErrorKind.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND


class BadRequest(ServiceError):
    kind = ErrorKind.BAD_REQUEST
    status_code = status.HTTP_400_BAD_REQUEST


class Unauthorized(ServiceError):
    """Missing, unknown or expired token, or a level that is too low."""
    kind = ErrorKind.UNAUTHORIZED
    status_code = status.HTTP_401_UNAUTHORIZED

    @classmethod
    def missing(cls):
        return cls("No token supplied.", ErrorKind.MISSING_CREDENTIALS)

    @classmethod
    def unknown(cls):
        return cls("Token is not valid.", ErrorKind.UNKNOWN_TOKEN)

    @classmethod
    def expired(cls):
        return cls("Token has expired. Please log in again.", ErrorKind.EXPIRED)

    @classmethod
    def insufficient(cls, required: int):
        return cls(
            f"Operation requires permission level {required}.",
            ErrorKind.INSUFFICIENT_LEVEL,
            status.HTTP_403_FORBIDDEN,
        )


class PasswordRequired(ServiceError):
    """Valid token, but the user has not set a password yet."""
    kind = ErrorKind.PASSWORD_REQUIRED
    status_code = status.HTTP_428_PRECONDITION_REQUIRED


class ScheduleConflict(ServiceError):
    """Two effective timetable entries cover the same minute."""
    kind = ErrorKind.CONFLICT
    status_code = status.HTTP_409_CONFLICT
