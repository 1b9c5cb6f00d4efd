# Overview: Domain error taxonomy shared by services and API routes.

from __future__ import annotations


class CoopError(Exception):
    """Base class for domain errors surfaced to API callers."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "details": self.details}


class ValidationError(CoopError):
    """Malformed input, rejected before any write."""

    status_code = 400


class NotFoundError(CoopError):
    """Unknown member, branch, department, item, price row, or order."""

    status_code = 404


class StateError(CoopError):
    """Illegal order lifecycle transition."""

    status_code = 409


class ScopeError(StateError):
    """Order is outside the caller's bound delivery branch."""

    status_code = 403


class LimitExceededError(CoopError):
    """Order total is above the member's eligible amount for the payment option."""

    status_code = 422


class ConflictError(CoopError):
    """Unique-key violation that survived the sequence repair retry."""

    status_code = 409


class UpstreamThrottledError(CoopError):
    """Aggregation call exhausted its retry budget."""

    status_code = 503
