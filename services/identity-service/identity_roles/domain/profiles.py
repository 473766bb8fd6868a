"""Role-specific profile variants, each 1:1 with an account."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Union

from role_schemas import MembershipTier, RoleKind


@dataclass(slots=True)
class CustomerProfile:
    kind: ClassVar[RoleKind] = RoleKind.customer

    account_id: str
    preferences: dict[str, Any] = field(default_factory=dict)
    loyalty_score: int = 0
    membership_tier: str = MembershipTier.basic.value
    emergency_contact: str | None = None

    def completed_fields(self) -> int:
        return sum(
            1 for value in (self.emergency_contact, self.preferences, self.membership_tier) if value
        )


@dataclass(slots=True)
class ServiceProviderProfile:
    kind: ClassVar[RoleKind] = RoleKind.service_provider

    account_id: str
    license_number: str
    license_expiry: datetime
    languages: list[str]
    is_approved: bool = False
    vehicle_info: dict[str, Any] | None = None
    emergency_contact: str | None = None
    working_hours: dict[str, Any] | None = None

    def completed_fields(self) -> int:
        return sum(
            1
            for value in (
                self.license_number,
                self.vehicle_info,
                self.emergency_contact,
                self.working_hours,
            )
            if value
        )


@dataclass(slots=True)
class ContentEditorProfile:
    kind: ClassVar[RoleKind] = RoleKind.content_editor

    account_id: str
    permissions: list[str] = field(default_factory=list)
    is_approved: bool = False
    bio: str | None = None
    specializations: list[str] = field(default_factory=list)

    def completed_fields(self) -> int:
        return sum(1 for value in (self.specializations, self.bio) if value)


RoleProfile = Union[CustomerProfile, ServiceProviderProfile, ContentEditorProfile]

# Denominator weight each provisioned profile adds to the completion score.
PROFILE_WEIGHTS: dict[RoleKind, int] = {
    RoleKind.customer: 3,
    RoleKind.service_provider: 4,
    RoleKind.content_editor: 2,
}
