"""Administrative HTTP routes."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from role_schemas import RoleKind

from ..domain.admin import AdminRoleController
from ..domain.contracts import BulkAction
from ..domain.errors import Forbidden
from ..domain.service import AccountService
from .envelope import success
from .routes import current_account_id, get_service

router = APIRouter(prefix="/v1/admin", tags=["admin"])


class BulkActionRequest(BaseModel):
    action: BulkAction
    target_ids: list[str] = Field(default_factory=list, max_length=500)
    role: RoleKind | None = None


def get_admin_controller(request: Request) -> AdminRoleController:
    controller: AdminRoleController = request.app.state.admin_controller
    return controller


def require_administrator(
    caller_id: str = Depends(current_account_id),
    service: AccountService = Depends(get_service),
) -> str:
    """Reject callers without an active administrator role."""
    if not service.is_administrator(caller_id):
        raise Forbidden("Administrator role required")
    return caller_id


@router.post("/users/bulk-actions")
def bulk_actions(
    request: Request,
    payload: BulkActionRequest,
    caller_id: str = Depends(current_account_id),
    controller: AdminRoleController = Depends(get_admin_controller),
) -> JSONResponse:
    """Apply one action to many accounts and report a result per target.

    Authorisation happens inside the controller so that the self-inclusion and missing-role
    checks are reported ahead of it.
    """
    outcomes = controller.bulk_action(caller_id, payload.action, payload.target_ids, payload.role)
    succeeded = sum(1 for outcome in outcomes if outcome.ok)
    return success(
        request,
        {
            "action": payload.action.value,
            "results": [asdict(outcome) for outcome in outcomes],
            "succeeded": succeeded,
            "failed": len(outcomes) - succeeded,
        },
    )


@router.get("/accounts/summary")
def accounts_summary(
    request: Request,
    _: str = Depends(require_administrator),
    controller: AdminRoleController = Depends(get_admin_controller),
) -> JSONResponse:
    return success(request, controller.summary())


@router.get("/audit")
def audit_events(
    request: Request,
    account_id: str | None = Query(default=None),
    event_type: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    cursor: str | None = Query(default=None),
    _: str = Depends(require_administrator),
    service: AccountService = Depends(get_service),
) -> JSONResponse:
    """Return audit log entries newest first with cursor pagination."""
    records, next_cursor = service.list_audit_events(
        account_id=account_id, event_type=event_type, limit=limit, cursor=cursor
    )
    return success(
        request,
        {"items": [asdict(record) for record in records], "next_cursor": next_cursor},
    )
