"""
agora.errors — Error taxonomy and mutation results
===================================================

Services raise one of the :class:`AgoraError` subclasses below; they never
swallow failures.  Live feeds convert them into :class:`MutationResult`
values so callers can tell success from failure without try/except.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class AgoraError(Exception):
    """Base class for every domain error raised by the service layer."""

    status_code: int = 400
    code: str = "error"


class NotAuthenticatedError(AgoraError):
    status_code = 401
    code = "not_authenticated"


class PermissionDeniedError(AgoraError):
    """The viewer is not entitled to the row they tried to change."""

    status_code = 403
    code = "permission_denied"


class NotFoundError(AgoraError):
    status_code = 404
    code = "not_found"


class ConflictError(AgoraError):
    status_code = 409
    code = "conflict"


class InvalidInputError(AgoraError, ValueError):
    """Client-side validation failure, raised before any write happens."""

    status_code = 422
    code = "invalid_input"


@dataclass(frozen=True, slots=True)
class MutationResult:
    """Outcome of a feed mutation.

    ``accepted`` is the only thing callers need to branch on; ``value`` holds
    whatever the service returned and ``error``/``code`` describe a rejection.
    """

    accepted: bool
    value: Any = None
    error: str | None = None
    code: str | None = None

    @classmethod
    def ok(cls, value: Any = None) -> MutationResult:
        return cls(accepted=True, value=value)

    @classmethod
    def rejected(cls, error: str, code: str = "error") -> MutationResult:
        return cls(accepted=False, error=error, code=code)

    def __bool__(self) -> bool:
        return self.accepted
