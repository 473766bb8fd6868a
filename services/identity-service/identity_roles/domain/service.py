"""Account service orchestrating registration, role attachment, sign-in and auditing."""

from __future__ import annotations

import json
import logging
import uuid
from base64 import urlsafe_b64decode, urlsafe_b64encode
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Tuple

from prometheus_client import Counter

from role_schemas import RoleKind

from .account import Account, Found, RoleAttachment
from .contracts import NewAccount, RegisterInput
from .errors import (
    AccountNotFound,
    DuplicateRole,
    EmailAlreadyRegistered,
    FieldError,
    Forbidden,
    IdentityError,
    InvalidCredentials,
    RateLimitExceeded,
    RoleAlreadyActive,
    StoreFailure,
    ValidationFailed,
)
from .profiles import RoleProfile
from .provisioner import RoleProvisioner
from .scoring import ProfileCompletionScorer
from .validation import validate_phone, validate_registration
from ..config import get_settings
from ..repository import AuditLogRecord, translate_store_errors
from ..security.passwords import hash_password, verify_password
from ..security.tokens import issue_access_token

logger = logging.getLogger(__name__)

REGISTRATIONS = Counter(
    "identity_registrations_total",
    "Registration attempts by requested role and outcome.",
    ["role", "outcome"],
)

# A lost race on the unique email is retried once as a role attachment.
MAX_REGISTRATION_ATTEMPTS = 2


@dataclass(slots=True)
class RegistrationResult:
    """What a successful registration produced."""

    account: Account
    roles: list[RoleAttachment]
    created: bool
    message: str


@dataclass(slots=True)
class TokenBundle:
    """Access token returned to a signed-in caller."""

    access_token: str
    access_expires_in: int
    account_id: str
    roles: list[str]


class AccountService:
    """Identity workflows backed by the account repository."""

    def __init__(
        self,
        repository: Any,
        rate_limiter: Any,
        *,
        provisioner: RoleProvisioner | None = None,
        scorer: ProfileCompletionScorer | None = None,
    ) -> None:
        """Store dependencies used to orchestrate persistence and rate limiting."""
        self._repository = repository
        self._rate_limiter = rate_limiter
        self._provisioner = provisioner or RoleProvisioner(repository)
        self._scorer = scorer or ProfileCompletionScorer(repository)

    @property
    def provisioner(self) -> RoleProvisioner:
        return self._provisioner

    @property
    def scorer(self) -> ProfileCompletionScorer:
        return self._scorer

    def register(self, payload: RegisterInput, origin: str) -> RegistrationResult:
        """Create an account for a new email, or attach the requested role to an existing one.

        Checks run in a fixed order: rate limit, field validation, then the existing-identity
        branch. Nothing is written unless every check for the chosen branch passes.
        """
        role = payload.role
        try:
            if not self._rate_limiter.allow(f"register:{origin}"):
                logger.warning("registration rate limit hit for origin %s", origin)
                raise RateLimitExceeded("Too many registration attempts. Please try again later.")

            email = payload.email.strip()
            errors = validate_registration(
                email=email, name=payload.name, phone=payload.phone, password=payload.password
            )
            if role is RoleKind.administrator:
                errors.append(
                    FieldError("role", "The administrator role cannot be self-assigned", "ROLE_NOT_SELF_ASSIGNABLE")
                )
            if errors:
                raise ValidationFailed("Invalid input data", details=errors)

            with translate_store_errors("registration"):
                result = self._register_once_or_retry(email, payload)
        except IdentityError as exc:
            REGISTRATIONS.labels(role=role.value, outcome=exc.code).inc()
            raise
        REGISTRATIONS.labels(role=role.value, outcome="created" if result.created else "role_added").inc()
        return result

    def _register_once_or_retry(self, email: str, payload: RegisterInput) -> RegistrationResult:
        for attempt in range(1, MAX_REGISTRATION_ATTEMPTS + 1):
            lookup = self._repository.find_account_by_email(email)
            if isinstance(lookup, Found):
                return self._attach_to_existing(lookup.account, payload)
            try:
                return self._create_account(email, payload)
            except EmailAlreadyRegistered:
                logger.info(
                    "email claimed concurrently during registration (attempt %s); switching to role attachment",
                    attempt,
                )
        raise StoreFailure("An unexpected error occurred during registration")

    def _create_account(self, email: str, payload: RegisterInput) -> RegistrationResult:
        role = payload.role
        account_id = str(uuid.uuid4())
        profile = self._provisioner.plan(account_id, role, payload.role_data, existing=None)

        new_account = NewAccount(
            account_id=account_id,
            email=email,
            name=payload.name.strip(),
            password_hash=hash_password(payload.password),
            phone=payload.phone or None,
        )
        # customers need no moderation, every other role waits for approval
        account, attachment = self._repository.create_account_with_role(
            new_account, role, profile, verified=role is RoleKind.customer
        )
        self._audit(account.account_id, "account.created", {"role": role.value})
        account = self._rescore(account)
        logger.info("created account %s with role %s", account.account_id, role.value)

        if role is RoleKind.customer:
            message = "Account created successfully. You can now sign in."
        else:
            message = f"Registration submitted successfully. Your {_label(role)} account is pending approval."
        return RegistrationResult(account=account, roles=[attachment], created=True, message=message)

    def _attach_to_existing(self, account: Account, payload: RegisterInput) -> RegistrationResult:
        role = payload.role
        if get_settings().reauth_on_role_attach and not verify_password(payload.password, account.password_hash):
            raise InvalidCredentials("An account with this email exists and the password does not match")
        if not account.is_active:
            raise Forbidden("This account has been deactivated")

        active = self._repository.list_role_attachments(account.account_id, active_only=True)
        if any(attachment.role is role for attachment in active):
            raise DuplicateRole(f"User with this email already has the {_label(role)} role")

        existing = self._repository.find_role_profile(account.account_id, role)
        profile = self._provisioner.plan(account.account_id, role, payload.role_data, existing)
        self._attach(account.account_id, role, assigned_by=account.account_id, profile=profile)
        self._audit(account.account_id, "role.attached", {"role": role.value, "via": "registration"})
        account = self._rescore(account)
        roles = self._repository.list_role_attachments(account.account_id, active_only=True)
        return RegistrationResult(
            account=account,
            roles=roles,
            created=False,
            message=f"{_label(role).capitalize()} role added to existing account successfully",
        )

    def _attach(
        self, account_id: str, role: RoleKind, *, assigned_by: str, profile: RoleProfile | None
    ) -> RoleAttachment:
        try:
            return self._repository.attach_role(account_id, role, assigned_by=assigned_by, profile=profile)
        except RoleAlreadyActive as exc:
            raise DuplicateRole(f"User already has the {_label(role)} role") from exc

    def _audit(self, account_id: str, event_type: str, metadata: dict[str, Any]) -> None:
        """Record an event for a write that has already committed."""
        try:
            with translate_store_errors("audit"):
                self._repository.write_audit_event(
                    account_id=account_id, event_type=event_type, actor=account_id, metadata=metadata
                )
        except StoreFailure:
            logger.warning("audit entry %s for %s was not written", event_type, account_id)

    def _rescore(self, account: Account) -> Account:
        try:
            with translate_store_errors("completion scoring"):
                self._scorer.score(account.account_id)
                return self._repository.get_account(account.account_id) or account
        except StoreFailure:
            logger.warning("completion score for %s left stale", account.account_id)
            return account

    def sign_in(self, email: str, password: str, origin: str) -> TokenBundle:
        """Verify credentials and issue an access token carrying the active roles."""
        if not self._rate_limiter.allow(f"token:{origin}"):
            raise RateLimitExceeded("Too many sign-in attempts. Please try again later.")
        with translate_store_errors("sign-in"):
            lookup = self._repository.find_account_by_email(email.strip())
            if not isinstance(lookup, Found) or not verify_password(password, lookup.account.password_hash):
                raise InvalidCredentials("Invalid email or password")
            account = lookup.account
            if not account.is_active:
                raise Forbidden("This account has been deactivated")
            roles = [
                attachment.role.value
                for attachment in self._repository.list_role_attachments(account.account_id, active_only=True)
            ]
            access_token, expires_in = issue_access_token(subject=account.account_id, roles=roles)
            self._repository.write_audit_event(
                account_id=account.account_id,
                event_type="token.issued",
                actor=account.account_id,
                metadata={"roles": roles},
            )
        return TokenBundle(
            access_token=access_token,
            access_expires_in=expires_in,
            account_id=account.account_id,
            roles=roles,
        )

    def get_account(self, account_id: str) -> tuple[Account, list[RoleAttachment]]:
        """Return the account with its attachment history, or raise when it does not exist."""
        with translate_store_errors("account lookup"):
            account = self._repository.get_account(account_id)
            if account is None:
                raise AccountNotFound("account not found")
            return account, self._repository.list_role_attachments(account_id)

    def is_administrator(self, account_id: str) -> bool:
        with translate_store_errors("authorisation"):
            account = self._repository.get_account(account_id)
            if account is None or not account.is_active:
                return False
            return any(
                attachment.role is RoleKind.administrator
                for attachment in self._repository.list_role_attachments(account_id, active_only=True)
            )

    def update_account(self, account_id: str, fields: dict[str, Any]) -> Account:
        """Change base profile fields on an account and refresh its completion score."""
        if "phone" in fields:
            error = validate_phone(fields["phone"])
            if error is not None:
                raise ValidationFailed("Invalid input data", details=[error])
        if "languages" in fields and fields["languages"] is None:
            # the column holds an empty list, never NULL
            fields = {**fields, "languages": []}
        with translate_store_errors("account update"):
            account = self._repository.update_account(account_id, fields)
            if account is None:
                raise AccountNotFound("account not found")
        self._audit(account_id, "account.updated", {"fields": sorted(fields)})
        return self._rescore(account)

    def update_role_profile(
        self, account_id: str, role: RoleKind, payload: dict[str, Any] | None
    ) -> RoleProfile:
        """Provision or update the caller's profile for an active role."""
        with translate_store_errors("profile update"):
            account = self._repository.get_account(account_id)
            if account is None:
                raise AccountNotFound("account not found")
            profile = self._provisioner.provision(account_id, role, payload)
        self._audit(account_id, "profile.updated", {"role": role.value})
        self._rescore(account)
        return profile

    def recompute_completion(self, account_id: str) -> int:
        with translate_store_errors("completion scoring"):
            return self._scorer.score(account_id)

    def list_audit_events(
        self,
        *,
        account_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
        cursor: str | None = None,
    ) -> tuple[list[AuditLogRecord], str | None]:
        """Return audit log records with optional filters and cursor pagination."""
        decoded_cursor: Optional[Tuple[datetime, int]] = None
        if cursor:
            decoded_cursor = self._decode_cursor(cursor)
        with translate_store_errors("audit listing"):
            records, next_cursor_tuple = self._repository.list_audit_events(
                account_id=account_id,
                event_type=event_type,
                limit=limit,
                cursor=decoded_cursor,
            )
        return records, self._encode_cursor(next_cursor_tuple)

    def _encode_cursor(self, cursor: Tuple[datetime, int] | None) -> str | None:
        if cursor is None:
            return None
        created_at, audit_id = cursor
        payload = json.dumps({"created_at": created_at.isoformat(), "audit_id": audit_id})
        return urlsafe_b64encode(payload.encode("utf-8")).decode("utf-8")

    def _decode_cursor(self, cursor: str) -> Tuple[datetime, int]:
        try:
            data = json.loads(urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8"))
            return datetime.fromisoformat(data["created_at"]), int(data["audit_id"])
        except Exception as exc:
            raise ValidationFailed(
                "invalid cursor", details=[FieldError("cursor", "Cursor could not be decoded")]
            ) from exc


def _label(role: RoleKind) -> str:
    return role.value.replace("_", " ")
