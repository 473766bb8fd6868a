from __future__ import annotations

from datetime import datetime, timezone

from role_schemas import RoleAttachmentView, RoleKind


def test_attachment_view_stores_role_value():
    view = RoleAttachmentView(role=RoleKind.service_provider, is_active=True, assigned_at=datetime.now(timezone.utc))

    assert RoleAttachmentView.model_config["use_enum_values"] is True
    assert view.role == "service_provider"
    assert view.model_dump()["role"] == "service_provider"
