from __future__ import annotations

import time

import jwt
import pytest

from identity_roles.config import get_settings
from identity_roles.security.tokens import decode_access_token, issue_access_token


def _forge(**claims) -> str:
    settings = get_settings()
    now = int(time.time())
    payload = {"iss": settings.jwt_issuer, "sub": "acc-1", "iat": now, "exp": now + 60}
    payload.update(claims)
    return jwt.encode({k: v for k, v in payload.items() if v is not None}, settings.jwt_secret, algorithm="HS256")


def test_issued_token_round_trips_subject_and_roles():
    token, ttl = issue_access_token(subject="acc-1", roles=["service_provider", "customer"])
    claims = decode_access_token(token)

    assert ttl == get_settings().jwt_ttl_seconds
    assert claims.account_id == "acc-1"
    assert claims.roles == ("customer", "service_provider")
    assert claims.expires_at - claims.issued_at == ttl


def test_expired_token_is_rejected():
    with pytest.raises(jwt.ExpiredSignatureError):
        decode_access_token(_forge(exp=int(time.time()) - 10))


def test_foreign_issuer_is_rejected():
    with pytest.raises(jwt.InvalidIssuerError):
        decode_access_token(_forge(iss="someone-else"))


def test_subject_is_required():
    with pytest.raises(jwt.MissingRequiredClaimError):
        decode_access_token(_forge(sub=None))
