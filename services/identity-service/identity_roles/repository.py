"""Database repository for accounts, role attachments and role profiles."""

from __future__ import annotations

import hashlib
import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Optional, Tuple

import psycopg
from psycopg import errors as pg_errors
from psycopg import sql
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from role_schemas import RoleKind

from .domain.account import Account, AccountLookup, Found, NotFound, RoleAttachment
from .domain.contracts import AccountPredicate, NewAccount
from .domain.errors import EmailAlreadyRegistered, RoleAlreadyActive, StoreFailure
from .domain.profiles import ContentEditorProfile, CustomerProfile, RoleProfile, ServiceProviderProfile

ACCOUNT_COLUMNS = (
    "account_id, email, name, password_hash, created_at, updated_at, phone, bio, date_of_birth, "
    "nationality, avatar, languages, is_active, is_verified, profile_completion"
)
ATTACHMENT_COLUMNS = "attachment_id, account_id, role, is_active, assigned_at, assigned_by"

EMAIL_CONSTRAINT = "accounts_email_hash_key"
ACTIVE_ROLE_CONSTRAINT = "role_attachments_active_role_key"

logger = logging.getLogger(__name__)

# Columns an account update may touch.
UPDATABLE_ACCOUNT_FIELDS = frozenset(
    {
        "phone",
        "bio",
        "date_of_birth",
        "nationality",
        "avatar",
        "languages",
        "is_active",
        "is_verified",
        "profile_completion",
    }
)


@dataclass(slots=True)
class AuditLogRecord:
    """Row projection for items in identity_audit_log."""

    audit_id: int
    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict[str, Any]
    created_at: datetime


def hash_email(email: str) -> bytes:
    """Normalise an email address and return its SHA-256 digest."""
    return hashlib.sha256(email.strip().lower().encode("utf-8")).digest()


@contextmanager
def translate_store_errors(operation: str) -> Iterator[None]:
    """Log driver errors in full and re-raise them as an opaque :class:`StoreFailure`."""
    try:
        yield
    except psycopg.Error as exc:
        logger.exception("store failure during %s", operation)
        raise StoreFailure(f"An unexpected error occurred during {operation}") from exc


class AccountRepository:
    """Postgres-backed identity persistence.

    Email uniqueness is enforced by a unique index on the normalised email digest, and
    at most one active attachment per role by a partial unique index.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    # accounts

    def find_account_by_email(self, email: str) -> AccountLookup:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE email_hash = %s",
                    (hash_email(email),),
                )
                row = cur.fetchone()
        if not row:
            return NotFound(email=email)
        return Found(account=self._map_account(row))

    def get_account(self, account_id: str) -> Account | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {ACCOUNT_COLUMNS} FROM accounts WHERE account_id = %s",
                    (account_id,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return self._map_account(row)

    def existing_account_ids(self, account_ids: Iterable[str]) -> set[str]:
        ids = list(account_ids)
        if not ids:
            return set()
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute("SELECT account_id FROM accounts WHERE account_id = ANY(%s)", (ids,))
                return {row[0] for row in cur.fetchall()}

    def create_account_with_role(
        self,
        payload: NewAccount,
        role: RoleKind,
        profile: RoleProfile | None,
        *,
        verified: bool = False,
    ) -> tuple[Account, RoleAttachment]:
        """Insert an account, its first role attachment and that role's profile in one transaction.

        Raises :class:`EmailAlreadyRegistered` when another account already owns the email.
        """
        account_id = payload.account_id
        now = datetime.now(timezone.utc)
        try:
            with self._pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor(row_factory=tuple_row) as cur:
                        cur.execute(
                            f"""
                            INSERT INTO accounts (account_id, email, email_hash, name, phone, password_hash,
                                                  is_active, is_verified, profile_completion, created_at, updated_at)
                            VALUES (%s, %s, %s, %s, %s, %s, TRUE, %s, 0, %s, %s)
                            RETURNING {ACCOUNT_COLUMNS}
                            """,
                            (
                                account_id,
                                payload.email,
                                hash_email(payload.email),
                                payload.name,
                                payload.phone,
                                payload.password_hash,
                                verified,
                                now,
                                now,
                            ),
                        )
                        account = self._map_account(cur.fetchone())
                        attachment = self._insert_attachment(cur, account_id, role, account_id, now)
                        if profile is not None:
                            self._insert_profile(cur, profile, now)
        except pg_errors.UniqueViolation as exc:
            if exc.diag.constraint_name == EMAIL_CONSTRAINT:
                raise EmailAlreadyRegistered(payload.email) from exc
            raise
        return account, attachment

    def update_account(self, account_id: str, fields: dict[str, Any]) -> Account | None:
        unknown = set(fields) - UPDATABLE_ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"fields not updatable: {sorted(unknown)}")
        if not fields:
            return self.get_account(account_id)

        assignments = [
            sql.SQL("{} = {}").format(sql.Identifier(name), sql.Placeholder(name)) for name in fields
        ]
        assignments.append(sql.SQL("updated_at = {}").format(sql.Placeholder("updated_at")))
        query = sql.SQL("UPDATE accounts SET {} WHERE account_id = {} RETURNING {}").format(
            sql.SQL(", ").join(assignments),
            sql.Placeholder("account_id"),
            sql.SQL(ACCOUNT_COLUMNS),
        )
        params = {**fields, "updated_at": datetime.now(timezone.utc), "account_id": account_id}
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
                conn.commit()
        if not row:
            return None
        return self._map_account(row)

    def count_accounts(self, predicate: AccountPredicate) -> int:
        clauses: list[str] = []
        params: list[Any] = []
        if predicate.is_active is not None:
            clauses.append("a.is_active = %s")
            params.append(predicate.is_active)
        if predicate.is_verified is not None:
            clauses.append("a.is_verified = %s")
            params.append(predicate.is_verified)
        if predicate.role is not None:
            clauses.append(
                "EXISTS (SELECT 1 FROM role_attachments r "
                "WHERE r.account_id = a.account_id AND r.role = %s AND r.is_active)"
            )
            params.append(predicate.role.value)
        where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(f"SELECT COUNT(*) FROM accounts a {where_sql}", params)
                return int(cur.fetchone()[0])

    # role attachments

    def list_role_attachments(self, account_id: str, *, active_only: bool = False) -> list[RoleAttachment]:
        query = f"SELECT {ATTACHMENT_COLUMNS} FROM role_attachments WHERE account_id = %s"
        if active_only:
            query += " AND is_active"
        query += " ORDER BY assigned_at, attachment_id"
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(query, (account_id,))
                return [self._map_attachment(row) for row in cur.fetchall()]

    def attach_role(
        self,
        account_id: str,
        role: RoleKind,
        *,
        assigned_by: str,
        profile: RoleProfile | None,
    ) -> RoleAttachment:
        """Create an active attachment and, when given, the role's profile atomically.

        Raises :class:`RoleAlreadyActive` when the account already holds ``role``.
        """
        now = datetime.now(timezone.utc)
        try:
            with self._pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor(row_factory=tuple_row) as cur:
                        attachment = self._insert_attachment(cur, account_id, role, assigned_by, now)
                        if profile is not None:
                            self._insert_profile(cur, profile, now)
        except pg_errors.UniqueViolation as exc:
            if exc.diag.constraint_name == ACTIVE_ROLE_CONSTRAINT:
                raise RoleAlreadyActive(role.value) from exc
            raise
        return attachment

    def deactivate_role_attachment(self, account_id: str, role: RoleKind) -> bool:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    UPDATE role_attachments
                    SET is_active = FALSE, deactivated_at = NOW()
                    WHERE account_id = %s AND role = %s AND is_active
                    RETURNING attachment_id
                    """,
                    (account_id, role.value),
                )
                row = cur.fetchone()
                conn.commit()
        return row is not None

    # role profiles

    def find_role_profile(self, account_id: str, role: RoleKind) -> RoleProfile | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                if role is RoleKind.customer:
                    cur.execute(
                        """
                        SELECT account_id, preferences, loyalty_score, membership_tier, emergency_contact
                        FROM customer_profiles WHERE account_id = %s
                        """,
                        (account_id,),
                    )
                    row = cur.fetchone()
                    return CustomerProfile(row[0], row[1] or {}, row[2], row[3], row[4]) if row else None
                if role is RoleKind.service_provider:
                    cur.execute(
                        """
                        SELECT account_id, license_number, license_expiry, languages, is_approved,
                               vehicle_info, emergency_contact, working_hours
                        FROM service_provider_profiles WHERE account_id = %s
                        """,
                        (account_id,),
                    )
                    row = cur.fetchone()
                    if not row:
                        return None
                    return ServiceProviderProfile(
                        account_id=row[0],
                        license_number=row[1],
                        license_expiry=row[2],
                        languages=list(row[3] or []),
                        is_approved=row[4],
                        vehicle_info=row[5],
                        emergency_contact=row[6],
                        working_hours=row[7],
                    )
                if role is RoleKind.content_editor:
                    cur.execute(
                        """
                        SELECT account_id, permissions, is_approved, bio, specializations
                        FROM content_editor_profiles WHERE account_id = %s
                        """,
                        (account_id,),
                    )
                    row = cur.fetchone()
                    if not row:
                        return None
                    return ContentEditorProfile(row[0], list(row[1] or []), row[2], row[3], list(row[4] or []))
        return None

    def save_role_profile(self, profile: RoleProfile) -> None:
        """Upsert a profile; approval flags and permissions of an existing row are preserved."""
        now = datetime.now(timezone.utc)
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                self._insert_profile(cur, profile, now, upsert=True)
                conn.commit()

    # audit trail

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an audit trail entry capturing identity workflow activity."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO identity_audit_log (account_id, event_type, actor, metadata)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (account_id, event_type, actor, Json(metadata or {})),
                )
                conn.commit()

    def list_audit_events(
        self,
        *,
        account_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
        cursor: Tuple[datetime, int] | None = None,
    ) -> tuple[list[AuditLogRecord], Optional[Tuple[datetime, int]]]:
        """Return audit entries newest first, with keyset pagination on ``(created_at, audit_id)``."""
        limit = max(1, min(limit, 100))
        clauses = ["TRUE"]
        params: list[Any] = []
        if account_id:
            clauses.append("account_id = %s")
            params.append(account_id)
        if event_type:
            clauses.append("event_type = %s")
            params.append(event_type)
        if cursor:
            clauses.append("(created_at, audit_id) < (%s, %s)")
            params.extend(cursor)
        params.append(limit)

        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT audit_id, account_id, event_type, actor, metadata, created_at
                    FROM identity_audit_log
                    WHERE {' AND '.join(clauses)}
                    ORDER BY created_at DESC, audit_id DESC
                    LIMIT %s
                    """,
                    params,
                )
                records = [
                    AuditLogRecord(row[0], row[1], row[2], row[3], row[4] or {}, row[5])
                    for row in cur.fetchall()
                ]

        next_cursor: Tuple[datetime, int] | None = None
        if len(records) == limit:
            next_cursor = (records[-1].created_at, records[-1].audit_id)
        return records, next_cursor

    # helpers

    def _insert_attachment(
        self, cur: Any, account_id: str, role: RoleKind, assigned_by: str, now: datetime
    ) -> RoleAttachment:
        cur.execute(
            f"""
            INSERT INTO role_attachments (attachment_id, account_id, role, is_active, assigned_at, assigned_by)
            VALUES (%s, %s, %s, TRUE, %s, %s)
            RETURNING {ATTACHMENT_COLUMNS}
            """,
            (str(uuid.uuid4()), account_id, role.value, now, assigned_by),
        )
        return self._map_attachment(cur.fetchone())

    def _insert_profile(self, cur: Any, profile: RoleProfile, now: datetime, *, upsert: bool = False) -> None:
        if isinstance(profile, CustomerProfile):
            conflict = (
                """DO UPDATE SET preferences = EXCLUDED.preferences,
                                 emergency_contact = EXCLUDED.emergency_contact,
                                 updated_at = EXCLUDED.updated_at"""
                if upsert
                else "DO NOTHING"
            )
            cur.execute(
                f"""
                INSERT INTO customer_profiles (account_id, preferences, loyalty_score, membership_tier,
                                               emergency_contact, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (account_id) {conflict}
                """,
                (
                    profile.account_id,
                    Json(profile.preferences),
                    profile.loyalty_score,
                    profile.membership_tier,
                    profile.emergency_contact,
                    now,
                    now,
                ),
            )
        elif isinstance(profile, ServiceProviderProfile):
            conflict = (
                """DO UPDATE SET license_number = EXCLUDED.license_number,
                                 license_expiry = EXCLUDED.license_expiry,
                                 languages = EXCLUDED.languages,
                                 vehicle_info = EXCLUDED.vehicle_info,
                                 emergency_contact = EXCLUDED.emergency_contact,
                                 working_hours = EXCLUDED.working_hours,
                                 updated_at = EXCLUDED.updated_at"""
                if upsert
                else "DO NOTHING"
            )
            cur.execute(
                f"""
                INSERT INTO service_provider_profiles (account_id, license_number, license_expiry, languages,
                                                       is_approved, vehicle_info, emergency_contact, working_hours,
                                                       created_at, updated_at)
                VALUES (%s, %s, %s, %s, FALSE, %s, %s, %s, %s, %s)
                ON CONFLICT (account_id) {conflict}
                """,
                (
                    profile.account_id,
                    profile.license_number,
                    profile.license_expiry,
                    profile.languages,
                    Json(profile.vehicle_info) if profile.vehicle_info is not None else None,
                    profile.emergency_contact,
                    Json(profile.working_hours) if profile.working_hours is not None else None,
                    now,
                    now,
                ),
            )
        elif isinstance(profile, ContentEditorProfile):
            conflict = (
                """DO UPDATE SET bio = EXCLUDED.bio,
                                 specializations = EXCLUDED.specializations,
                                 updated_at = EXCLUDED.updated_at"""
                if upsert
                else "DO NOTHING"
            )
            cur.execute(
                f"""
                INSERT INTO content_editor_profiles (account_id, permissions, is_approved, bio, specializations,
                                                     created_at, updated_at)
                VALUES (%s, '{{}}', FALSE, %s, %s, %s, %s)
                ON CONFLICT (account_id) {conflict}
                """,
                (profile.account_id, profile.bio, profile.specializations, now, now),
            )
        else:
            raise TypeError(f"unsupported profile type: {type(profile).__name__}")

    def _map_account(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=row[0],
            email=row[1],
            name=row[2],
            password_hash=row[3],
            created_at=row[4],
            updated_at=row[5],
            phone=row[6],
            bio=row[7],
            date_of_birth=row[8],
            nationality=row[9],
            avatar=row[10],
            languages=list(row[11] or []),
            is_active=row[12],
            is_verified=row[13],
            profile_completion=row[14],
        )

    def _map_attachment(self, row: tuple) -> RoleAttachment:
        return RoleAttachment(
            attachment_id=row[0],
            account_id=row[1],
            role=RoleKind(row[2]),
            is_active=row[3],
            assigned_at=row[4],
            assigned_by=row[5],
        )
