"""Signed access tokens identifying the caller of account and admin routes."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any

import jwt

from ..config import get_settings

ALGORITHM = "HS256"


@dataclass(slots=True, frozen=True)
class AccessClaims:
    """Verified contents of an access token.

    ``roles`` is a snapshot taken at sign-in; authorisation decisions re-read the
    account's attachments instead of trusting it.
    """

    account_id: str
    roles: tuple[str, ...]
    issued_at: int
    expires_at: int


def issue_access_token(*, subject: str, roles: list[str]) -> tuple[str, int]:
    """Sign a token for ``subject`` carrying its active role kinds.

    Returns
    -------
    tuple[str, int]
        The encoded JWT and its lifetime in seconds.
    """
    settings = get_settings()
    now = int(time.time())
    payload: dict[str, Any] = {
        "iss": settings.jwt_issuer,
        "sub": subject,
        "roles": sorted(roles),
        "iat": now,
        "exp": now + settings.jwt_ttl_seconds,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM), settings.jwt_ttl_seconds


def decode_access_token(token: str) -> AccessClaims:
    """Verify signature, issuer and expiry.

    Raises
    ------
    jwt.PyJWTError
        When the token is malformed, expired, lacks a required claim, or comes from another issuer.
    """
    settings = get_settings()
    payload = jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[ALGORITHM],
        issuer=settings.jwt_issuer,
        options={"require": ["exp", "iat", "iss", "sub"]},
    )
    return AccessClaims(
        account_id=str(payload["sub"]),
        roles=tuple(payload.get("roles") or ()),
        issued_at=int(payload["iat"]),
        expires_at=int(payload["exp"]),
    )
