"""Error taxonomy shared by every request handler.

Each error knows the HTTP status it maps to and the machine-readable code
placed in the response envelope.
"""

from __future__ import annotations

from typing import Any, Optional


class EventServiceError(Exception):
    """Base error rendered as ``{message, code, error?}``."""

    status_code = 500
    code = "INTERNAL_SERVER_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.error = error

    def envelope(self) -> dict[str, Any]:
        body: dict[str, Any] = {"message": self.message, "code": self.code}
        if self.error:
            body["error"] = self.error
        return body


class ValidationError(EventServiceError):
    """Malformed or missing input."""

    status_code = 400
    code = "INVALID_INPUT"


class NotFoundError(EventServiceError):
    status_code = 404
    code = "EVENT_NOT_FOUND"


class ConflictError(EventServiceError):
    status_code = 409
    code = "ALREADY_BOOKED"


class RateLimited(EventServiceError):
    status_code = 429
    code = "RATE_LIMITED"


class UploadError(EventServiceError):
    """The media host refused or failed the upload."""

    code = "UPLOAD_FAILED"


class ConfigurationError(EventServiceError):
    """A required setting (e.g. the database URL) is missing."""

    code = "DATABASE_UNAVAILABLE"


class ConnectionError(EventServiceError):  # noqa: A001 - part of the public taxonomy
    """The database could not be reached."""

    code = "DATABASE_UNAVAILABLE"


class InternalError(EventServiceError):
    code = "INTERNAL_SERVER_ERROR"


__all__ = [
    "ConfigurationError",
    "ConflictError",
    "ConnectionError",
    "EventServiceError",
    "InternalError",
    "NotFoundError",
    "RateLimited",
    "UploadError",
    "ValidationError",
]
