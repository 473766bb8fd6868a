"""Creation and update of role-specific profiles."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import ValidationError

from role_schemas import (
    ContentEditorRoleData,
    CustomerRoleData,
    RoleData,
    RoleKind,
    ServiceProviderRoleData,
    parse_role_data,
)

from .errors import FieldError, Forbidden, RolePreconditionMissing, ValidationFailed
from .profiles import ContentEditorProfile, CustomerProfile, RoleProfile, ServiceProviderProfile

logger = logging.getLogger(__name__)

InvitationVerifier = Callable[[str], bool]


def accept_any_invitation(code: str) -> bool:
    """Default verifier: any non-blank invitation code is accepted."""
    return bool(code.strip())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _field_path(loc: tuple[Any, ...]) -> str:
    # the first element is the union tag
    parts = [str(part) for part in loc[1:]]
    return ".".join(["role_data", *parts])


class RoleProvisioner:
    """Builds and persists role profiles.

    Approval flags are always forced to ``False`` on creation and are never copied from caller
    input; only an external moderation action may flip them. Content-editor permissions are
    likewise never taken from the caller.
    """

    def __init__(
        self,
        repository: Any,
        *,
        clock: Callable[[], datetime] = _utcnow,
        invitation_verifier: InvitationVerifier = accept_any_invitation,
    ) -> None:
        self._repository = repository
        self._clock = clock
        self._verify_invitation = invitation_verifier

    def parse(self, role: RoleKind, payload: dict[str, Any] | None) -> RoleData | None:
        """Validate raw ``role_data`` for ``role`` and surface role preconditions distinctly."""
        if role is RoleKind.service_provider and not (payload and payload.get("license_number")):
            raise RolePreconditionMissing(
                "DRIVER_DATA_REQUIRED",
                "License information is required for service provider registration",
            )
        if role is RoleKind.content_editor and not (
            payload and str(payload.get("invitation_code") or "").strip()
        ):
            raise RolePreconditionMissing(
                "INVITATION_REQUIRED",
                "Content editor registration requires an invitation code",
            )
        try:
            return parse_role_data(role, payload)
        except ValidationError as exc:
            details = [
                FieldError(_field_path(error["loc"]), error["msg"])
                for error in exc.errors()
            ]
            raise ValidationFailed("Invalid role data", details=details) from exc

    def plan(
        self,
        account_id: str,
        role: RoleKind,
        payload: dict[str, Any] | None,
        existing: RoleProfile | None,
    ) -> RoleProfile | None:
        """Return the profile to create alongside a new attachment, or ``None`` when there is none.

        A profile retained from an earlier, since-revoked attachment is reused as-is.
        """
        if role is RoleKind.administrator or existing is not None:
            return None
        return self.build(account_id, role, self.parse(role, payload))

    def build(self, account_id: str, role: RoleKind, data: RoleData | None) -> RoleProfile:
        """Construct a fresh profile for ``role`` from validated role data."""
        if role is RoleKind.customer:
            customer = data if isinstance(data, CustomerRoleData) else CustomerRoleData()
            return CustomerProfile(
                account_id=account_id,
                preferences=dict(customer.preferences),
                emergency_contact=customer.emergency_contact,
            )
        if role is RoleKind.service_provider:
            if not isinstance(data, ServiceProviderRoleData):
                raise RolePreconditionMissing(
                    "DRIVER_DATA_REQUIRED",
                    "License information is required for service provider registration",
                )
            return ServiceProviderProfile(
                account_id=account_id,
                license_number=data.license_number.strip(),
                license_expiry=self._future_expiry(data.license_expiry),
                languages=self._languages(data.languages),
                is_approved=False,
                vehicle_info=data.vehicle_info,
                emergency_contact=data.emergency_contact,
                working_hours=data.working_hours,
            )
        if role is RoleKind.content_editor:
            editor = data if isinstance(data, ContentEditorRoleData) else None
            if editor is None or not editor.invitation_code.strip():
                raise RolePreconditionMissing(
                    "INVITATION_REQUIRED",
                    "Content editor registration requires an invitation code",
                )
            if not self._verify_invitation(editor.invitation_code):
                raise ValidationFailed(
                    "Invitation code rejected",
                    details=[
                        FieldError("role_data.invitation_code", "Invitation code is not valid", "INVALID_INVITATION")
                    ],
                )
            return ContentEditorProfile(
                account_id=account_id,
                permissions=[],
                is_approved=False,
                bio=editor.bio,
                specializations=list(editor.specializations),
            )
        raise ValueError(f"role {role.value} has no profile")

    def default_profile(self, account_id: str, role: RoleKind) -> RoleProfile | None:
        """Profile created when a role is granted without caller-supplied role data.

        Service providers cannot be defaulted: their profile waits for license data.
        """
        if role is RoleKind.customer:
            return CustomerProfile(account_id=account_id)
        if role is RoleKind.content_editor:
            return ContentEditorProfile(account_id=account_id)
        return None

    def provision(
        self, account_id: str, role: RoleKind, payload: dict[str, Any] | None
    ) -> RoleProfile:
        """Create the profile for an active role, or apply caller-editable fields to it.

        An existing customer profile with no new data is returned untouched.
        """
        if role is RoleKind.administrator:
            raise ValidationFailed(
                "Administrators have no role profile",
                details=[FieldError("role", "Role has no profile")],
            )
        active_roles = {
            attachment.role
            for attachment in self._repository.list_role_attachments(account_id)
            if attachment.is_active
        }
        if role not in active_roles:
            raise Forbidden(f"Role {role.value} is not active on this account")

        existing = self._repository.find_role_profile(account_id, role)
        if existing is None:
            profile = self.build(account_id, role, self.parse(role, payload))
            self._repository.save_role_profile(profile)
            logger.info("provisioned %s profile for account %s", role.value, account_id)
            return profile

        if not payload:
            return existing
        updated = self._apply_update(existing, self._parse_update(role, payload))
        if updated != existing:
            self._repository.save_role_profile(updated)
        return updated

    def _parse_update(self, role: RoleKind, payload: dict[str, Any]) -> RoleData | None:
        if role is RoleKind.service_provider:
            return self.parse(role, payload)
        if role is RoleKind.content_editor:
            # an invitation is only needed to become an editor, not to edit the profile
            payload = {**payload, "invitation_code": payload.get("invitation_code") or "-"}
        return self.parse(role, payload)

    def _apply_update(self, existing: RoleProfile, data: RoleData | None) -> RoleProfile:
        if isinstance(existing, CustomerProfile) and isinstance(data, CustomerRoleData):
            return replace(
                existing,
                preferences=dict(data.preferences),
                emergency_contact=data.emergency_contact,
            )
        if isinstance(existing, ServiceProviderProfile) and isinstance(data, ServiceProviderRoleData):
            return replace(
                existing,
                license_number=data.license_number.strip(),
                license_expiry=self._future_expiry(data.license_expiry),
                languages=self._languages(data.languages),
                vehicle_info=data.vehicle_info,
                emergency_contact=data.emergency_contact,
                working_hours=data.working_hours,
            )
        if isinstance(existing, ContentEditorProfile) and isinstance(data, ContentEditorRoleData):
            return replace(existing, bio=data.bio, specializations=list(data.specializations))
        return existing

    def _future_expiry(self, expiry: datetime) -> datetime:
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        if expiry <= self._clock():
            raise ValidationFailed(
                "License expiry must be in the future",
                details=[FieldError("role_data.license_expiry", "License expiry must be in the future", "EXPIRED")],
            )
        return expiry

    def _languages(self, languages: list[str]) -> list[str]:
        cleaned = [language.strip() for language in languages if language and language.strip()]
        if not cleaned:
            raise ValidationFailed(
                "At least one language is required",
                details=[FieldError("role_data.languages", "At least one language is required", "REQUIRED")],
            )
        return cleaned
