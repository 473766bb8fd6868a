from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Union

from role_schemas import RoleKind


@dataclass(slots=True)
class Account:
    """Aggregate root for a person's identity, independent of any role."""

    account_id: str
    email: str
    name: str
    password_hash: str
    created_at: datetime
    updated_at: datetime
    phone: str | None = None
    bio: str | None = None
    date_of_birth: date | None = None
    nationality: str | None = None
    avatar: str | None = None
    languages: list[str] = field(default_factory=list)
    is_active: bool = True
    is_verified: bool = False
    profile_completion: int = 0


@dataclass(slots=True)
class RoleAttachment:
    """Grant of one role kind to an account; deactivated rather than deleted."""

    attachment_id: str
    account_id: str
    role: RoleKind
    is_active: bool
    assigned_at: datetime
    assigned_by: str | None = None


@dataclass(slots=True, frozen=True)
class Found:
    account: Account


@dataclass(slots=True, frozen=True)
class NotFound:
    email: str


AccountLookup = Union[Found, NotFound]
