"""Database repository for accounts, roles, OTP challenges and the audit trail."""

from __future__ import annotations

import functools
import hashlib
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, TypeVar

import psycopg
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from .domain.account import Account, CredentialCheck, OtpPurpose, RoleDescriptor
from .domain.contracts import SignUpInput
from .domain.errors import InternalError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

_ACCOUNT_COLUMNS = """
    u.id, u.email, u.source_id, COALESCE(r.role, ''), COALESCE(r.type, ''),
    u.created_at, u.first_name, u.last_name, u.is_deleted, u.pending_update
"""


def _translate_errors(func: F) -> F:
    """Surface driver and pool failures as :class:`InternalError`."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except psycopg.Error as exc:
            logger.exception("storage call %s failed", func.__name__)
            raise InternalError("Storage failure") from exc

    return wrapper  # type: ignore[return-value]


def hash_code(code: str) -> str:
    """Return the SHA-256 hex digest stored in place of a raw OTP code."""
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


class AuthRepository:
    """Postgres-backed account, role catalog and OTP persistence.

    Passwords are hashed and compared inside Postgres with ``pgcrypto``
    (``crypt`` / ``gen_salt('bf')``); the hash never leaves the database.
    Emails are case-folded here, so callers pass the trimmed address as typed.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    @staticmethod
    def _key(email: str) -> str:
        return email.strip().lower()

    @_translate_errors
    def find_active_by_email(self, email: str) -> Account | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_ACCOUNT_COLUMNS}
                    FROM auth.account AS u
                    LEFT JOIN auth.generic_roles AS r ON r.id = u.fk_role_id
                    WHERE u.email = %s AND NOT u.is_deleted
                    """,
                    (self._key(email),),
                )
                row = cur.fetchone()
        return self._map_account(row) if row else None

    @_translate_errors
    def resolve_role(self, user_type: str) -> RoleDescriptor | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    SELECT id, role, type
                    FROM auth.generic_roles
                    WHERE type = %s AND NOT is_deleted
                    """,
                    (user_type,),
                )
                row = cur.fetchone()
        if not row:
            return None
        return RoleDescriptor(role_id=str(row[0]), role=row[1], user_type=row[2])

    @_translate_errors
    def upsert_account(self, payload: SignUpInput, role: RoleDescriptor) -> Account | None:
        """Insert a new account or reactivate a soft-deleted row with the same email.

        The conflict branch only fires for deleted rows, so a concurrent sign-up
        that already holds the email yields no row and this returns ``None``.
        """
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    INSERT INTO auth.account AS u (
                        id, email, password_hash, first_name, last_name,
                        source_id, fk_role_id, is_deleted, created_at, updated_at
                    )
                    VALUES (
                        %(id)s, %(email)s, crypt(%(password)s, gen_salt('bf')), %(first_name)s,
                        %(last_name)s, %(source_id)s, %(role_id)s, false, now(), now()
                    )
                    ON CONFLICT (email) DO UPDATE SET
                        password_hash = EXCLUDED.password_hash,
                        first_name = EXCLUDED.first_name,
                        last_name = EXCLUDED.last_name,
                        source_id = EXCLUDED.source_id,
                        fk_role_id = EXCLUDED.fk_role_id,
                        is_deleted = false,
                        deleted_at = NULL,
                        pending_update = NULL,
                        updated_at = now()
                    WHERE u.is_deleted
                    RETURNING u.id, u.email, u.source_id, u.created_at, u.first_name, u.last_name
                    """,
                    {
                        "id": str(uuid.uuid4()),
                        "email": self._key(payload.email),
                        "password": payload.password,
                        "first_name": payload.first_name,
                        "last_name": payload.last_name,
                        "source_id": payload.source_id,
                        "role_id": role.role_id,
                    },
                )
                row = cur.fetchone()
                conn.commit()
        if not row:
            return None
        return Account(
            account_id=str(row[0]),
            email=row[1],
            source_id=row[2],
            role=role.role,
            user_type=role.user_type,
            created_at=row[3],
            first_name=row[4],
            last_name=row[5],
        )

    @_translate_errors
    def verify_credential(self, email: str, password: str) -> CredentialCheck | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_ACCOUNT_COLUMNS},
                           (u.password_hash = crypt(%s, u.password_hash)) AS matched
                    FROM auth.account AS u
                    INNER JOIN auth.generic_roles AS r ON r.id = u.fk_role_id
                    WHERE u.email = %s AND NOT u.is_deleted AND NOT r.is_deleted
                    """,
                    (password, self._key(email)),
                )
                row = cur.fetchone()
        if not row:
            return None
        return CredentialCheck(matched=bool(row[10]), account=self._map_account(row))

    @_translate_errors
    def store_challenge(
        self, email: str, purpose: OtpPurpose, code: str, expires_at: datetime
    ) -> str | None:
        """Supersede live challenges for ``(email, purpose)`` and persist a new one.

        The account row is locked for the duration so concurrent requests for
        the same email serialise, leaving exactly one live challenge.
        """
        key = self._key(email)
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    "SELECT id FROM auth.account WHERE email = %s AND NOT is_deleted FOR UPDATE",
                    (key,),
                )
                account = cur.fetchone()
                if not account:
                    conn.rollback()
                    return None
                cur.execute(
                    """
                    UPDATE auth.otp_challenge
                    SET superseded_at = now()
                    WHERE email = %s AND purpose = %s
                      AND consumed_at IS NULL AND superseded_at IS NULL
                    """,
                    (key, purpose.value),
                )
                cur.execute(
                    """
                    INSERT INTO auth.otp_challenge (id, email, purpose, code_hash, expires_at)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (str(uuid.uuid4()), key, purpose.value, hash_code(code), expires_at),
                )
                cur.execute(
                    "UPDATE auth.account SET pending_update = %s, updated_at = now() WHERE id = %s",
                    (purpose.value, account[0]),
                )
                conn.commit()
        return code

    @_translate_errors
    def consume_challenge(
        self,
        email: str,
        purpose: OtpPurpose | None,
        code: str,
        new_password: str,
        now: datetime,
    ) -> bool:
        """Consume a live challenge and set the new password, or change nothing."""
        key = self._key(email)
        params: list[Any] = [key, hash_code(code), now]
        purpose_sql = ""
        if purpose is not None:
            purpose_sql = "AND purpose = %s"
            params.append(purpose.value)

        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT id
                    FROM auth.otp_challenge
                    WHERE email = %s AND code_hash = %s
                      AND consumed_at IS NULL AND superseded_at IS NULL
                      AND expires_at > %s {purpose_sql}
                    ORDER BY created_at DESC
                    LIMIT 1
                    FOR UPDATE
                    """,
                    params,
                )
                challenge = cur.fetchone()
                if not challenge:
                    conn.rollback()
                    return False
                cur.execute(
                    """
                    UPDATE auth.account
                    SET password_hash = crypt(%s, gen_salt('bf')),
                        pending_update = NULL,
                        updated_at = now()
                    WHERE email = %s AND NOT is_deleted
                    """,
                    (new_password, key),
                )
                if cur.rowcount != 1:
                    conn.rollback()
                    return False
                cur.execute(
                    "UPDATE auth.otp_challenge SET consumed_at = %s WHERE id = %s",
                    (now, challenge[0]),
                )
                conn.commit()
        return True

    @_translate_errors
    def write_audit_event(
        self,
        *,
        account_id: str | None,
        source_id: str | None,
        event_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an audit trail entry capturing auth workflow activity."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO auth.audit_log (account_id, source_id, event_type, metadata)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (account_id, source_id, event_type, Json(metadata or {})),
                )
                conn.commit()

    def _map_account(self, row: tuple) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=str(row[0]),
            email=row[1],
            source_id=row[2],
            role=row[3],
            user_type=row[4],
            created_at=row[5],
            first_name=row[6],
            last_name=row[7],
            is_deleted=row[8],
            pending_update=OtpPurpose(row[9]) if row[9] else None,
        )
