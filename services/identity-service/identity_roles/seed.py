"""
Bootstrap an administrator account.

The administrator role cannot be requested through registration, so the first
administrator of a deployment is created here. Re-running is safe: an existing
account keeps its password and only gains the role if it lacks it.

Usage:
  python -m identity_roles.seed --email admin@example.com --name "Site Admin"
  ADMIN_PASSWORD=... python -m identity_roles.seed --email admin@example.com --name "Site Admin"
"""

from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys
import uuid
from typing import Any

from psycopg_pool import ConnectionPool

from role_schemas import RoleKind

from .config import get_settings
from .domain.account import Account, Found
from .domain.contracts import NewAccount
from .domain.errors import RoleAlreadyActive, ValidationFailed
from .domain.validation import validate_registration
from .repository import AccountRepository
from .security.passwords import hash_password

logger = logging.getLogger(__name__)

SEED_ACTOR = "seed"


def seed_administrator(
    repository: Any,
    *,
    email: str,
    name: str,
    password: str,
    phone: str | None = None,
) -> tuple[Account, bool]:
    """Ensure an active, verified account holding the administrator role exists.

    Returns the account and whether the administrator role was newly granted.
    """
    errors = validate_registration(email=email, name=name, phone=phone, password=password)
    if errors:
        raise ValidationFailed("Invalid administrator details", details=errors)

    lookup = repository.find_account_by_email(email.strip())
    if not isinstance(lookup, Found):
        account, _ = repository.create_account_with_role(
            NewAccount(
                account_id=str(uuid.uuid4()),
                email=email.strip(),
                name=name.strip(),
                password_hash=hash_password(password),
                phone=phone,
            ),
            RoleKind.administrator,
            None,
            verified=True,
        )
        granted = True
    else:
        account = lookup.account
        try:
            repository.attach_role(account.account_id, RoleKind.administrator, assigned_by=SEED_ACTOR, profile=None)
            granted = True
        except RoleAlreadyActive:
            granted = False
        account = repository.update_account(account.account_id, {"is_active": True, "is_verified": True}) or account

    if granted:
        repository.write_audit_event(
            account_id=account.account_id,
            event_type="role.attached",
            actor=SEED_ACTOR,
            metadata={"role": RoleKind.administrator.value, "via": "seed"},
        )
    return account, granted


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create or promote an administrator account")
    parser.add_argument("--email", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument("--phone", default=None)
    parser.add_argument(
        "--password",
        default=os.getenv("ADMIN_PASSWORD"),
        help="defaults to $ADMIN_PASSWORD, prompts when neither is set",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    password = args.password or getpass.getpass("Administrator password: ")

    with ConnectionPool(settings.database_url) as pool:
        try:
            account, granted = seed_administrator(
                AccountRepository(pool),
                email=args.email,
                name=args.name,
                password=password,
                phone=args.phone,
            )
        except ValidationFailed as exc:
            for detail in exc.details:
                print(f"  {detail.field}: {detail.message}", file=sys.stderr)
            return 1

    state = "granted" if granted else "already held"
    print(f"administrator role {state} by {account.email} ({account.account_id})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
