"""
Error taxonomy for the scheduling core.

Every error carries the HTTP status the API layer answers with and a stable
machine-readable code. Services raise these; api.main maps them to responses.
"""

from typing import Any


class SchedulingError(Exception):
    """Base class for all scheduling/billing domain errors."""

    status_code: int = 500
    error_code: str = "SCHEDULING_ERROR"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "code": self.error_code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(SchedulingError):
    """Malformed or out-of-range input."""

    status_code = 400
    error_code = "VALIDATION_ERROR"


class AuthError(SchedulingError):
    """Missing credentials (401) or insufficient permissions (403)."""

    status_code = 401
    error_code = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized", *, status_code: int = 401, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        if status_code == 403:
            self.error_code = "FORBIDDEN"


class NotFoundError(SchedulingError):
    status_code = 404
    error_code = "NOT_FOUND"


class ConflictError(SchedulingError):
    """Invalid state-machine transition or double booking."""

    status_code = 409
    error_code = "CONFLICT"


class SlotUnavailableError(ConflictError):
    """The requested interval overlaps an existing non-cancelled booking."""

    error_code = "SLOT_UNAVAILABLE"

    def __init__(
        self,
        message: str = "This time is no longer available, please choose another",
        **kwargs,
    ):
        super().__init__(message, **kwargs)


class InvalidStateError(SchedulingError):
    """Operation attempted on an invoice or booking in a terminal state."""

    status_code = 409
    error_code = "INVALID_STATE"


class ExternalServiceError(SchedulingError):
    """A collaborator (payment processor) is unreachable or rejected the call."""

    status_code = 503
    error_code = "EXTERNAL_SERVICE_ERROR"
