"""
core/errors.py -- Error taxonomy shared by the auth core and the API layer.

Every exception carries the HTTP status and a stable machine-readable code, so
api/main.py can render any of them with one exception handler. Each class maps
to exactly one outward status family:

  ValidationError   400  malformed input (normally caught by Pydantic first)
  ConflictError     400  uniqueness violation (username / email)
  AuthError         401  missing, invalid or expired credential; bad password
  ForbiddenError    403  authenticated but disallowed (inactive, wrong role)
  NotFoundError     404  referenced entity absent
  InternalError     500  unexpected or backing-store failure, incl. timeouts
  NotAvailableError 501  feature boundary that is intentionally not built

Layer rule: core/ may not import from api/ or auth/.
"""

from __future__ import annotations

from typing import Any, Optional


class DevHubError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, *, detail: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_data(self) -> dict[str, Any]:
        """Machine-readable payload placed in the envelope's data field."""
        return {"code": self.code, **self.detail}


class ValidationError(DevHubError):
    status_code = 400
    code = "validation_error"


class ConflictError(DevHubError):
    """Uniqueness violation. ``field`` names the column that collided."""

    status_code = 400
    code = "conflict"

    def __init__(self, message: str, *, field: str) -> None:
        super().__init__(message, detail={"field": field})
        self.field = field


class AuthError(DevHubError):
    status_code = 401
    code = "unauthorized"


class IncorrectPasswordError(AuthError):
    """Current password did not verify during a password change.

    Still an authentication failure, but the caller's session is valid, so it
    is answered with 400 rather than 401 to keep clients from discarding it.
    """

    status_code = 400
    code = "incorrect_password"


class ForbiddenError(DevHubError):
    status_code = 403
    code = "forbidden"


class NotFoundError(DevHubError):
    status_code = 404
    code = "not_found"


class InternalError(DevHubError):
    """Backing-store failure or deadline overrun.

    retryable=True tells clients the same request may succeed later (e.g. a
    timeout). It must never be mistaken for bad credentials.
    """

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message, detail={"retryable": retryable})
        self.retryable = retryable


class NotAvailableError(DevHubError):
    status_code = 501
    code = "not_available"


__all__ = [
    "DevHubError",
    "ValidationError",
    "ConflictError",
    "AuthError",
    "IncorrectPasswordError",
    "ForbiddenError",
    "NotFoundError",
    "InternalError",
    "NotAvailableError",
]
