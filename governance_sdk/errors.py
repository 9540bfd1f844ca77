"""
Governance SDK — Errors

Every failure the SDK surfaces is a GovernanceError. Terminal HTTP
classifications (401 / 404 / 422 / policy denial) map to their own
subclasses so callers can branch on type; transient ones (5xx,
unreachable host) are only raised once retries are exhausted.
"""

from __future__ import annotations

from typing import Any


class GovernanceError(Exception):
    """Base exception for all governance SDK errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
        }


class AuthenticationError(GovernanceError):
    """The server rejected the bearer token (401)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=401)


class NotFoundError(GovernanceError):
    """The requested resource does not exist (404)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=404)


class GovernanceValidationError(GovernanceError):
    """The server rejected the request body (422)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=422)


class PolicyDeniedError(GovernanceError):
    """
    Raised when a submission succeeds at the transport level but the
    returned action was denied by policy. Never retried.
    """


class ServerError(GovernanceError):
    """A 5xx response that persisted through every retry."""

    def __init__(self, message: str, status_code: int = 500) -> None:
        super().__init__(message, status_code=status_code)


class GovernanceTimeoutError(GovernanceError):
    """
    A request timed out, or a polling wait passed its deadline.

    ``last_status`` is the most recent action status observed before the
    deadline, so "outcome not known yet" can be told apart from a failure.
    """

    def __init__(self, message: str, last_status: str | None = None) -> None:
        super().__init__(message)
        self.last_status = last_status

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["last_status"] = self.last_status
        return data


class GovernanceConnectionError(GovernanceError):
    """The governance server could not be reached."""


class RequestFailedError(GovernanceError):
    """Catch-all once every attempt of a request has failed."""


class InvalidStateError(GovernanceError):
    """The action is not in a status that permits the requested operation."""


class ActionDeniedError(GovernanceError):
    """A ``denied`` status was observed while waiting on an action."""

    def __init__(self, message: str, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class BatchError(GovernanceError):
    """
    Raised by strict batch submission once the whole batch has run.

    ``successes`` holds the actions that were created, ``errors`` the
    per-item failures (``BatchItemError``) in request order.
    """

    def __init__(self, message: str, successes: list, errors: list) -> None:
        super().__init__(message)
        self.successes = successes
        self.errors = errors

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["successes"] = [a.id for a in self.successes]
        data["errors"] = [e.model_dump() for e in self.errors]
        return data


class CanonicalizeError(GovernanceError, ValueError):
    """The value cannot be represented in canonical JSON."""
