"""Account-related DTOs shared across services."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from .roles import RoleKind


class RoleAttachmentView(BaseModel):
    role: RoleKind
    is_active: bool
    assigned_at: datetime
    assigned_by: str | None = None

    model_config = ConfigDict(use_enum_values=True)


class AccountView(BaseModel):
    account_id: str
    email: str
    name: str
    phone: str | None = None
    bio: str | None = None
    date_of_birth: date | None = None
    nationality: str | None = None
    avatar: str | None = None
    languages: list[str] = Field(default_factory=list)
    is_active: bool = True
    is_verified: bool = False
    profile_completion: int = 0
    roles: list[RoleAttachmentView] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
