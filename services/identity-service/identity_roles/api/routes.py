"""HTTP route definitions for the identity service."""

from __future__ import annotations

from dataclasses import asdict
from datetime import date
from typing import Any

import jwt
from fastapi import APIRouter, Body, Depends, Header, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field

from role_schemas import AccountView, RoleAttachmentView, RoleKind

from ..config import get_settings
from ..domain.account import Account, RoleAttachment
from ..domain.contracts import RegisterInput
from ..domain.errors import Forbidden, Unauthenticated
from ..domain.service import AccountService
from ..security.tokens import decode_access_token
from .envelope import success

router = APIRouter(prefix="/v1")


class RegisterRequest(BaseModel):
    """Payload accepted when registering an account or adding a role to one."""

    email: str
    password: str
    name: str
    phone: str | None = None
    role: RoleKind
    role_data: dict[str, Any] | None = None


class TokenRequest(BaseModel):
    """Credentials exchanged for an access token."""

    email: EmailStr
    password: str


class AccountUpdateRequest(BaseModel):
    """Base profile fields an account holder may change."""

    phone: str | None = None
    bio: str | None = Field(default=None, max_length=2000)
    date_of_birth: date | None = None
    nationality: str | None = None
    avatar: str | None = None
    languages: list[str] | None = None


def account_view(account: Account, attachments: list[RoleAttachment]) -> AccountView:
    """Build the public representation of an account; credentials never leave the service."""
    return AccountView(
        account_id=account.account_id,
        email=account.email,
        name=account.name,
        phone=account.phone,
        bio=account.bio,
        date_of_birth=account.date_of_birth,
        nationality=account.nationality,
        avatar=account.avatar,
        languages=account.languages,
        is_active=account.is_active,
        is_verified=account.is_verified,
        profile_completion=account.profile_completion,
        roles=[
            RoleAttachmentView(
                role=attachment.role,
                is_active=attachment.is_active,
                assigned_at=attachment.assigned_at,
                assigned_by=attachment.assigned_by,
            )
            for attachment in attachments
        ],
        created_at=account.created_at,
        updated_at=account.updated_at,
    )


def get_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def client_origin(request: Request) -> str:
    """Best-effort caller origin used as the rate limiting key.

    Forwarding headers are client controlled, so they are honoured only when the service
    runs behind a proxy that sets them (``TRUST_PROXY_HEADERS``).
    """
    if get_settings().trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def current_account_id(authorization: str | None = Header(default=None)) -> str:
    """Identify the caller from a bearer token."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise Unauthenticated("Bearer token required")
    try:
        claims = decode_access_token(authorization.split(" ", 1)[1].strip())
    except jwt.PyJWTError as exc:
        raise Unauthenticated("Invalid or expired token") from exc
    return claims.account_id


def _require_self(caller_id: str, account_id: str) -> None:
    if caller_id != account_id:
        raise Forbidden("Only the account holder may change this account")


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(
    request: Request,
    payload: RegisterRequest,
    service: AccountService = Depends(get_service),
) -> JSONResponse:
    """Register a new account, or attach the requested role to the account owning the email."""
    result = service.register(
        RegisterInput(
            email=payload.email,
            password=payload.password,
            name=payload.name,
            role=payload.role,
            phone=payload.phone,
            role_data=payload.role_data,
        ),
        origin=client_origin(request),
    )
    body = {
        "success": True,
        "message": result.message,
        "account": account_view(result.account, result.roles),
    }
    return success(request, body, status.HTTP_201_CREATED if result.created else status.HTTP_200_OK)


@router.post("/token")
def issue_token(
    request: Request,
    payload: TokenRequest,
    service: AccountService = Depends(get_service),
) -> JSONResponse:
    """Exchange email and password for a signed access token."""
    bundle = service.sign_in(payload.email, payload.password, origin=client_origin(request))
    return success(
        request,
        {
            "access_token": bundle.access_token,
            "token_type": "bearer",
            "expires_in": bundle.access_expires_in,
            "account_id": bundle.account_id,
            "roles": bundle.roles,
        },
    )


@router.get("/accounts/{account_id}")
def get_account(
    request: Request,
    account_id: str,
    caller_id: str = Depends(current_account_id),
    service: AccountService = Depends(get_service),
) -> JSONResponse:
    """Return an account; visible to its holder and to administrators."""
    if caller_id != account_id and not service.is_administrator(caller_id):
        raise Forbidden("Not allowed to view this account")
    account, attachments = service.get_account(account_id)
    return success(request, account_view(account, attachments))


@router.patch("/accounts/{account_id}")
def update_account(
    request: Request,
    account_id: str,
    payload: AccountUpdateRequest,
    caller_id: str = Depends(current_account_id),
    service: AccountService = Depends(get_service),
) -> JSONResponse:
    _require_self(caller_id, account_id)
    service.update_account(account_id, payload.model_dump(exclude_unset=True))
    account, attachments = service.get_account(account_id)
    return success(request, account_view(account, attachments))


@router.put("/accounts/{account_id}/profiles/{role}")
def put_role_profile(
    request: Request,
    account_id: str,
    role: RoleKind,
    payload: dict[str, Any] | None = Body(default=None),
    caller_id: str = Depends(current_account_id),
    service: AccountService = Depends(get_service),
) -> JSONResponse:
    """Create or update the caller's profile for one of their active roles."""
    _require_self(caller_id, account_id)
    profile = service.update_role_profile(account_id, role, payload or None)
    return success(request, {"kind": profile.kind.value, **asdict(profile)})


@router.post("/accounts/{account_id}/completion")
def recompute_completion(
    request: Request,
    account_id: str,
    caller_id: str = Depends(current_account_id),
    service: AccountService = Depends(get_service),
) -> JSONResponse:
    if caller_id != account_id and not service.is_administrator(caller_id):
        raise Forbidden("Not allowed to score this account")
    return success(request, {"account_id": account_id, "profile_completion": service.recompute_completion(account_id)})
