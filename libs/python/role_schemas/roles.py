"""Role kinds and the role-specific registration payloads shared across services."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class RoleKind(str, Enum):
    customer = "customer"
    service_provider = "service_provider"
    content_editor = "content_editor"
    administrator = "administrator"


class MembershipTier(str, Enum):
    basic = "basic"
    silver = "silver"
    gold = "gold"
    platinum = "platinum"


class _RoleData(BaseModel):
    # approval flags and permission sets are never accepted from callers
    model_config = ConfigDict(extra="ignore")


class CustomerRoleData(_RoleData):
    kind: Literal["customer"] = "customer"
    preferences: dict[str, Any] = Field(default_factory=dict)
    emergency_contact: str | None = None


class ServiceProviderRoleData(_RoleData):
    kind: Literal["service_provider"] = "service_provider"
    license_number: str = Field(..., min_length=1)
    license_expiry: datetime
    languages: list[str] = Field(..., min_length=1)
    vehicle_info: dict[str, Any] | None = None
    emergency_contact: str | None = None
    working_hours: dict[str, Any] | None = None


class ContentEditorRoleData(_RoleData):
    kind: Literal["content_editor"] = "content_editor"
    invitation_code: str = ""
    bio: str | None = None
    specializations: list[str] = Field(default_factory=list)


RoleData = Annotated[
    Union[CustomerRoleData, ServiceProviderRoleData, ContentEditorRoleData],
    Field(discriminator="kind"),
]

_ROLE_DATA_ADAPTER: TypeAdapter[Any] = TypeAdapter(RoleData)


def parse_role_data(role: RoleKind, payload: dict[str, Any] | None) -> RoleData | None:
    """Validate a raw ``role_data`` mapping against the variant selected by ``role``.

    Administrators carry no role data, so ``None`` is returned for them regardless of payload.
    Raises :class:`pydantic.ValidationError` when the payload does not fit the variant.
    """
    if role is RoleKind.administrator or payload is None:
        return None
    return _ROLE_DATA_ADAPTER.validate_python({**payload, "kind": role.value})
