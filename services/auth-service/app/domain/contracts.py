"""Domain-level request contracts and the store interfaces the workflows consume."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from .account import Account, CredentialCheck, OtpPurpose, RoleDescriptor


@dataclass(slots=True)
class SignUpInput:
    """Validated inputs required to create or reactivate an account."""

    email: str
    password: str
    source_id: str
    user_type: str
    first_name: str | None = None
    last_name: str | None = None


@dataclass(slots=True)
class CredentialUpdateInput:
    """Validated inputs for consuming an OTP and setting a new password."""

    email: str
    code: str | int
    new_password: str
    purpose: OtpPurpose | None = None


class AccountStore(Protocol):
    """Account persistence; password hashing and comparison stay behind this boundary."""

    def find_active_by_email(self, email: str) -> Account | None:
        ...

    def upsert_account(self, payload: SignUpInput, role: RoleDescriptor) -> Account | None:
        """Insert or reactivate the row for ``payload.email``.

        Returns ``None`` when an active account already owns the email.
        """
        ...

    def verify_credential(self, email: str, password: str) -> CredentialCheck | None:
        ...


class RoleCatalog(Protocol):
    def resolve_role(self, user_type: str) -> RoleDescriptor | None:
        ...


class ChallengeStore(Protocol):
    """OTP challenge persistence with supersede and single-use consumption."""

    def store_challenge(
        self, email: str, purpose: OtpPurpose, code: str, expires_at: datetime
    ) -> str | None:
        """Persist a challenge and flag the account as pending.

        Returns the stored code, or ``None`` if no active account exists.
        """
        ...

    def consume_challenge(
        self,
        email: str,
        purpose: OtpPurpose | None,
        code: str,
        new_password: str,
        now: datetime,
    ) -> bool:
        """Atomically consume a live challenge and apply the new password."""
        ...


class AuditLog(Protocol):
    def write_audit_event(
        self,
        *,
        account_id: str | None,
        source_id: str | None,
        event_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        ...


class AuthRepositoryProtocol(AccountStore, RoleCatalog, ChallengeStore, AuditLog, Protocol):
    """Everything :class:`~app.domain.service.AuthService` needs from storage."""
