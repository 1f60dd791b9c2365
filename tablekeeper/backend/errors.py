"""Error taxonomy shared by services and the HTTP layer.

Every error carries an HTTP status and a machine-readable ``reason`` so the
API can render it without knowing which service raised it.
"""

from __future__ import annotations

from typing import Any


class TablekeeperError(Exception):
    """Base class for all errors raised by backend services."""

    status_code = 500
    default_reason = "error"

    def __init__(self, message: str, *, reason: str | None = None, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.reason = reason or self.default_reason
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            return f"{self.message} [{detail_str}]"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(reason={self.reason!r}, message={self.message!r})"


class ValidationError(TablekeeperError):
    """Malformed or missing input fields."""

    status_code = 400
    default_reason = "invalid_request"


class AuthenticationError(TablekeeperError):
    """Missing or invalid session, or wrong password."""

    status_code = 401
    default_reason = "unauthenticated"


class AuthorizationError(TablekeeperError):
    """Actor is neither the resource owner nor the operator."""

    status_code = 403
    default_reason = "forbidden"


class NotFoundError(TablekeeperError):
    status_code = 404
    default_reason = "not_found"


class ConflictError(TablekeeperError):
    """Duplicate record or stale document version."""

    status_code = 409
    default_reason = "conflict"


class StorageError(TablekeeperError):
    """Storage backend unreachable or failed mid-operation."""

    status_code = 503
    default_reason = "storage_unavailable"
