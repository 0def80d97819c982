"""Error taxonomy shared by the adapters, orchestrator and HTTP layer.

Each error maps onto one outcome at the API boundary:

``ValidationError`` (400)
    Required request input is missing or malformed.

``BackendUnavailable`` / ``BackendError``
    A single backend could not serve a call.  These never reach the caller;
    the orchestrator records them and moves on to the next backend.

``AllBackendsUnavailable`` (500)
    Every registered backend failed for one logical request.

``SessionNotFound`` (404)
    A session key was deleted before it was ever used.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass


@dataclass(frozen=True)
class ValidationError(Exception):
    """Exception representing a validation failure with HTTP context.

    Parameters
    ----------
    code:
        Machine readable identifier for the error condition.
    message:
        Human readable summary that is surfaced as the ``error`` field.
    status_code:
        HTTP status code that most closely aligns with the failure.
    details:
        Optional free-form diagnostic information.
    """

    code: str
    message: str
    status_code: int = 400
    details: str | None = None

    def __str__(self) -> str:  # pragma: no cover - trivial override
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message


class AdapterError(Exception):
    """Base class for failures raised by a single backend adapter."""

    def __init__(self, backend: str, reason: str) -> None:
        super().__init__(f"{backend}: {reason}")
        self.backend = backend
        self.reason = reason


class BackendUnavailable(AdapterError):
    """The backend cannot be called at all, e.g. its credential is missing."""


class BackendError(AdapterError):
    """Transport failure, timeout or an upstream-reported error."""

    def __init__(self, backend: str, reason: str, *, status_code: int | None = None) -> None:
        super().__init__(backend, reason)
        self.status_code = status_code


class AllBackendsUnavailable(Exception):
    """Raised once every backend in the attempt sequence has failed."""

    def __init__(self, errors: Mapping[str, str]) -> None:
        self.errors = dict(errors)
        if self.errors:
            summary = "; ".join(f"{name}: {reason}" for name, reason in self.errors.items())
        else:
            summary = "no backends are registered"
        super().__init__(
            "All AI services are currently unavailable. "
            f"Please check your API keys and service configurations. ({summary})"
        )


class SessionNotFound(KeyError):
    """Raised when deleting a session key that was never materialised."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Session not found: {self.session_id}"


__all__ = [
    "AdapterError",
    "AllBackendsUnavailable",
    "BackendError",
    "BackendUnavailable",
    "SessionNotFound",
    "ValidationError",
]
