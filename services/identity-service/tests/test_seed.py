from __future__ import annotations

import pytest

from role_schemas import RoleKind

from identity_roles.domain.errors import ValidationFailed
from identity_roles.security.passwords import verify_password
from identity_roles.seed import parse_args, seed_administrator


def _roles(repository, account_id):
    return {attachment.role for attachment in repository.list_role_attachments(account_id, active_only=True)}


def test_seed_creates_verified_administrator(repository):
    account, granted = seed_administrator(
        repository, email="admin@example.com", name="Site Admin", password="Adm1nPass"
    )

    assert granted
    assert account.is_verified and account.is_active
    assert _roles(repository, account.account_id) == {RoleKind.administrator}
    assert verify_password("Adm1nPass", account.password_hash)
    assert repository.find_role_profile(account.account_id, RoleKind.customer) is None


def test_seed_promotes_existing_account_and_is_rerunnable(repository):
    existing = repository.add_account("ops@example.com", RoleKind.customer, is_active=False)

    account, granted = seed_administrator(
        repository, email="OPS@example.com", name="Ops", password="Adm1nPass"
    )
    assert granted
    assert account.account_id == existing.account_id
    assert account.is_active
    assert _roles(repository, account.account_id) == {RoleKind.customer, RoleKind.administrator}
    # the existing credential is kept
    assert account.password_hash == existing.password_hash

    _, granted_again = seed_administrator(repository, email="ops@example.com", name="Ops", password="Adm1nPass")
    assert not granted_again
    assert len(repository.events("role.attached")) == 1


def test_seed_rejects_weak_password(repository):
    with pytest.raises(ValidationFailed):
        seed_administrator(repository, email="admin@example.com", name="Site Admin", password="admin123")
    assert repository.accounts == {}


def test_parse_args_reads_password_from_environment(monkeypatch):
    monkeypatch.setenv("ADMIN_PASSWORD", "FromEnv123")
    args = parse_args(["--email", "admin@example.com", "--name", "Site Admin"])
    assert args.password == "FromEnv123"
    assert args.phone is None
