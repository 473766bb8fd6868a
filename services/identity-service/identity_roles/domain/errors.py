"""Error types raised by identity workflows and translated at the HTTP edge."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


@dataclass(slots=True, frozen=True)
class FieldError:
    field: str
    message: str
    code: str = "INVALID_FORMAT"

    def as_dict(self) -> dict[str, str]:
        return asdict(self)


class IdentityError(Exception):
    """Base class for errors carrying a machine-readable code and HTTP status."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, details: list[FieldError] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = list(details or [])

    def to_payload(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": [detail.as_dict() for detail in self.details],
        }


class RateLimitExceeded(IdentityError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429


class ValidationFailed(IdentityError):
    code = "VALIDATION_ERROR"
    status_code = 400


class RolePreconditionMissing(IdentityError):
    status_code = 400

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class DuplicateRole(IdentityError):
    code = "USER_EXISTS"
    status_code = 409


class InvalidCredentials(IdentityError):
    code = "INVALID_CREDENTIALS"
    status_code = 401


class Unauthenticated(IdentityError):
    code = "UNAUTHENTICATED"
    status_code = 401


class Forbidden(IdentityError):
    code = "FORBIDDEN"
    status_code = 403


class SelfModification(IdentityError):
    code = "SELF_MODIFICATION_FORBIDDEN"
    status_code = 403


class UnknownTargets(IdentityError):
    code = "TARGET_NOT_FOUND"
    status_code = 404


class RoleRequired(IdentityError):
    code = "ROLE_REQUIRED"
    status_code = 400


class AccountNotFound(IdentityError):
    code = "NOT_FOUND"
    status_code = 404


class StoreFailure(IdentityError):
    """Opaque wrapper for persistence failures; internals are logged, never returned."""

    code = "INTERNAL_ERROR"
    status_code = 500


class EmailAlreadyRegistered(Exception):
    """Raised by the repository when the unique email constraint rejects an insert."""


class RoleAlreadyActive(Exception):
    """Raised by the repository when an account already holds an active attachment for a role."""
