"""Shared schema exports."""

from .account import AccountView, RoleAttachmentView
from .roles import (
    ContentEditorRoleData,
    CustomerRoleData,
    MembershipTier,
    RoleData,
    RoleKind,
    ServiceProviderRoleData,
    parse_role_data,
)

__all__ = [
    "AccountView",
    "ContentEditorRoleData",
    "CustomerRoleData",
    "MembershipTier",
    "RoleAttachmentView",
    "RoleData",
    "RoleKind",
    "ServiceProviderRoleData",
    "parse_role_data",
]
