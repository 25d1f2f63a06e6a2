"""Error envelope helpers and the bill lifecycle error taxonomy."""
from __future__ import annotations

from typing import Any


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class LifecycleError(Exception):
    """Base class for errors surfaced synchronously by the lifecycle engine."""

    status_code = 400
    default_code = "LIFECYCLE_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        return error_response(self.code, self.message, self.details)


class ValidationError(LifecycleError):
    """Malformed input; the transition is never partially applied."""

    status_code = 422
    default_code = "VALIDATION_ERROR"


class GuardViolation(LifecycleError):
    """Transition not permitted from the current status or for this actor."""

    status_code = 409
    default_code = "INVALID_TRANSITION"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        forbidden: bool = False,
    ) -> None:
        super().__init__(message, code=code, details=details)
        if forbidden:
            self.status_code = 403


class ConcurrencyConflict(LifecycleError):
    """Compare-and-set lost against another writer; reload and retry."""

    status_code = 409
    default_code = "STALE_STATE"


class BillNotFound(LifecycleError):
    status_code = 404
    default_code = "BILL_NOT_FOUND"


class SideEffectFailure(Exception):
    """A notification, activity or deed side effect failed after commit.

    Recorded on the outbox row and retried out-of-band; never raised to the
    caller of a transition.
    """

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(f"{kind}: {message}")
        self.kind = kind


__all__ = [
    "error_response",
    "LifecycleError",
    "ValidationError",
    "GuardViolation",
    "ConcurrencyConflict",
    "BillNotFound",
    "SideEffectFailure",
]
