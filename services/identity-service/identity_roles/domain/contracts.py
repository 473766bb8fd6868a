"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from role_schemas import RoleKind


@dataclass(slots=True)
class RegisterInput:
    """Raw registration request as received from a caller."""

    email: str
    password: str
    name: str
    role: RoleKind
    phone: str | None = None
    role_data: dict[str, object] | None = None


@dataclass(slots=True)
class NewAccount:
    """Validated, hashed account fields ready for persistence."""

    account_id: str
    email: str
    name: str
    password_hash: str
    phone: str | None = None


class BulkAction(str, Enum):
    activate = "activate"
    deactivate = "deactivate"
    verify = "verify"
    assign_role = "assign-role"
    revoke_role = "revoke-role"


@dataclass(slots=True)
class TargetOutcome:
    """Result of applying a bulk action to one target account."""

    account_id: str
    status: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True, frozen=True)
class AccountPredicate:
    """Filter used when counting accounts; ``None`` fields are not constrained."""

    is_active: bool | None = None
    is_verified: bool | None = None
    role: RoleKind | None = None

