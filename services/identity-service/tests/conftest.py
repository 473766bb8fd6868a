from __future__ import annotations

import os

# bcrypt's minimum work factor keeps the suite fast; must be set before settings load
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("JWT_SECRET", "test-secret-with-at-least-32-bytes-of-key")
os.environ.setdefault("TRUST_PROXY_HEADERS", "true")

import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from role_schemas import RoleKind

from identity_roles.domain.account import Account, Found, NotFound, RoleAttachment
from identity_roles.domain.admin import AdminRoleController
from identity_roles.domain.contracts import AccountPredicate, NewAccount
from identity_roles.domain.errors import EmailAlreadyRegistered, RoleAlreadyActive
from identity_roles.domain.profiles import ContentEditorProfile, ServiceProviderProfile
from identity_roles.domain.provisioner import RoleProvisioner
from identity_roles.domain.scoring import ProfileCompletionScorer
from identity_roles.domain.service import AccountService
from identity_roles.main import create_app
from identity_roles.repository import UPDATABLE_ACCOUNT_FIELDS, hash_email
from identity_roles.security.passwords import hash_password
from identity_roles.security.rate_limiter import FixedWindowRateLimiter

STRONG_PASSWORD = "Aa12345!"


class FakeRepository:
    """In-memory repository mimicking Postgres-backed behaviors.

    Mirrors the unique email digest, the partial unique index on active attachments and the
    all-or-nothing writes of the real repository.
    """

    def __init__(self) -> None:
        self.accounts: dict[str, Account] = {}
        self._emails: dict[bytes, str] = {}
        self.attachments: list[RoleAttachment] = []
        self.profiles: dict[tuple[str, RoleKind], object] = {}
        self.audit_log: list[FakeAuditLogRecord] = []
        self._audit_seq = 0
        self._clock = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def _now(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    # accounts

    def find_account_by_email(self, email: str):
        account_id = self._emails.get(hash_email(email))
        if account_id is None:
            return NotFound(email=email)
        return Found(account=self.accounts[account_id])

    def get_account(self, account_id: str):
        return self.accounts.get(account_id)

    def existing_account_ids(self, account_ids):
        return {account_id for account_id in account_ids if account_id in self.accounts}

    def create_account_with_role(self, payload: NewAccount, role, profile, *, verified: bool = False):
        digest = hash_email(payload.email)
        if digest in self._emails:
            raise EmailAlreadyRegistered(payload.email)
        now = self._now()
        account = Account(
            account_id=payload.account_id,
            email=payload.email,
            name=payload.name,
            password_hash=payload.password_hash,
            created_at=now,
            updated_at=now,
            phone=payload.phone,
            is_verified=verified,
        )
        self.accounts[account.account_id] = account
        self._emails[digest] = account.account_id
        attachment = self._insert_attachment(account.account_id, role, account.account_id, now)
        if profile is not None:
            self.profiles.setdefault((account.account_id, role), profile)
        return account, attachment

    def update_account(self, account_id: str, fields: dict):
        unknown = set(fields) - UPDATABLE_ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"fields not updatable: {sorted(unknown)}")
        if "languages" in fields and fields["languages"] is None:
            raise ValueError("languages is NOT NULL")
        account = self.accounts.get(account_id)
        if account is None:
            return None
        if not fields:
            return account
        updated = replace(account, **fields, updated_at=self._now())
        self.accounts[account_id] = updated
        return updated

    def count_accounts(self, predicate: AccountPredicate) -> int:
        count = 0
        for account in self.accounts.values():
            if predicate.is_active is not None and account.is_active != predicate.is_active:
                continue
            if predicate.is_verified is not None and account.is_verified != predicate.is_verified:
                continue
            if predicate.role is not None and not any(
                attachment.role is predicate.role
                for attachment in self.list_role_attachments(account.account_id, active_only=True)
            ):
                continue
            count += 1
        return count

    # role attachments

    def list_role_attachments(self, account_id: str, *, active_only: bool = False):
        return [
            attachment
            for attachment in self.attachments
            if attachment.account_id == account_id and (attachment.is_active or not active_only)
        ]

    def attach_role(self, account_id: str, role, *, assigned_by: str, profile):
        attachment = self._insert_attachment(account_id, role, assigned_by, self._now())
        if profile is not None:
            self.profiles.setdefault((account_id, role), profile)
        return attachment

    def deactivate_role_attachment(self, account_id: str, role) -> bool:
        for index, attachment in enumerate(self.attachments):
            if attachment.account_id == account_id and attachment.role is role and attachment.is_active:
                self.attachments[index] = replace(attachment, is_active=False)
                return True
        return False

    def _insert_attachment(self, account_id, role, assigned_by, now) -> RoleAttachment:
        if any(
            attachment.account_id == account_id and attachment.role is role and attachment.is_active
            for attachment in self.attachments
        ):
            raise RoleAlreadyActive(role.value)
        attachment = RoleAttachment(
            attachment_id=str(uuid.uuid4()),
            account_id=account_id,
            role=role,
            is_active=True,
            assigned_at=now,
            assigned_by=assigned_by,
        )
        self.attachments.append(attachment)
        return attachment

    # role profiles

    def find_role_profile(self, account_id: str, role):
        return self.profiles.get((account_id, role))

    def save_role_profile(self, profile) -> None:
        key = (profile.account_id, profile.kind)
        existing = self.profiles.get(key)
        if isinstance(existing, ServiceProviderProfile):
            profile = replace(profile, is_approved=existing.is_approved)
        elif isinstance(existing, ContentEditorProfile):
            profile = replace(profile, is_approved=existing.is_approved, permissions=existing.permissions)
        self.profiles[key] = profile

    # audit trail

    def write_audit_event(self, *, account_id, event_type, actor, metadata=None) -> None:
        self._audit_seq += 1
        self.audit_log.append(
            FakeAuditLogRecord(
                audit_id=self._audit_seq,
                account_id=account_id,
                event_type=event_type,
                actor=actor,
                metadata=metadata or {},
                created_at=self._now(),
            )
        )

    def list_audit_events(self, *, account_id=None, event_type=None, limit=50, cursor=None):
        results = list(self.audit_log)
        if account_id:
            results = [record for record in results if record.account_id == account_id]
        if event_type:
            results = [record for record in results if record.event_type == event_type]
        results.sort(key=lambda r: (r.created_at, r.audit_id), reverse=True)
        if cursor:
            results = [record for record in results if (record.created_at, record.audit_id) < cursor]
        slice_ = results[:limit]
        next_cursor = None
        if len(results) > limit:
            last = slice_[-1]
            next_cursor = (last.created_at, last.audit_id)
        return slice_, next_cursor

    # test helpers

    def events(self, event_type: str) -> list[FakeAuditLogRecord]:
        return [record for record in self.audit_log if record.event_type == event_type]

    def add_account(self, email: str, *roles: RoleKind, password: str = STRONG_PASSWORD, **fields) -> Account:
        """Insert an account holding ``roles`` without going through registration."""
        first, *rest = roles or (RoleKind.customer,)
        account, _ = self.create_account_with_role(
            NewAccount(
                account_id=str(uuid.uuid4()),
                email=email,
                name=fields.pop("name", "Test Person"),
                password_hash=hash_password(password),
            ),
            first,
            None,
            verified=fields.pop("is_verified", False),
        )
        for role in rest:
            self.attach_role(account.account_id, role, assigned_by="fixture", profile=None)
        if fields:
            account = self.update_account(account.account_id, fields)
        return account


@dataclass
class FakeAuditLogRecord:
    audit_id: int
    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict
    created_at: datetime


class FrozenClock:
    """Manually advanced monotonic clock for window tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def rate_limiter(clock) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(max_requests=5, window_seconds=60, clock=clock)


@pytest.fixture
def provisioner(repository) -> RoleProvisioner:
    return RoleProvisioner(repository)


@pytest.fixture
def scorer(repository) -> ProfileCompletionScorer:
    return ProfileCompletionScorer(repository)


@pytest.fixture
def service(repository, rate_limiter, provisioner, scorer) -> AccountService:
    return AccountService(repository, rate_limiter, provisioner=provisioner, scorer=scorer)


@pytest.fixture
def controller(repository, provisioner, scorer) -> AdminRoleController:
    return AdminRoleController(repository, provisioner=provisioner, scorer=scorer)


@pytest.fixture
def api_client(service, controller):
    """Provide a FastAPI test client with isolated state."""
    app = create_app(lifespan=None)
    app.state.account_service = service
    app.state.admin_controller = controller

    with TestClient(app) as client:
        yield client, service
