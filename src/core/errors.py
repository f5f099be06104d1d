"""Domain error taxonomy.

Services raise these synchronously; the FastAPI exception handler in
src.main translates them into JSON responses using ``status_code``.
Nothing here depends on FastAPI so the services stay usable from scripts
and background workers.
"""

from __future__ import annotations

from typing import Any


class PrivacyDashboardError(Exception):
    """Base class for every error the services raise on purpose."""

    status_code: int = 400
    code: str = "error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class ValidationError(PrivacyDashboardError):
    """Malformed input or a precondition on the data does not hold."""

    status_code = 422
    code = "validation_error"


class AuthorizationError(PrivacyDashboardError):
    """Role or association check failed."""

    status_code = 403
    code = "authorization_error"


class NotFoundError(PrivacyDashboardError):
    status_code = 404
    code = "not_found"


class ConflictError(PrivacyDashboardError):
    """Illegal state transition (e.g. responding to a handled request)."""

    status_code = 409
    code = "conflict"
