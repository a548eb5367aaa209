from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class OtpPurpose(str, Enum):
    """Closed set of actions an OTP challenge may authorize."""

    RESET_PASSWORD = "RESET_PASSWORD"
    UPDATE_PASSWORD = "UPDATE_PASSWORD"


@dataclass(slots=True, frozen=True)
class RoleDescriptor:
    """Role catalog entry resolved from a user-type token at sign-up."""

    role_id: str
    role: str
    user_type: str


@dataclass(slots=True)
class Account:
    """Aggregate root for an email/password identity."""

    account_id: str
    email: str
    source_id: str
    role: str
    user_type: str
    created_at: datetime
    first_name: str | None = None
    last_name: str | None = None
    is_deleted: bool = False
    pending_update: OtpPurpose | None = None

    @property
    def is_credential_update_pending(self) -> bool:
        return self.pending_update is not None

    @property
    def display_name(self) -> str | None:
        parts = [part for part in (self.first_name, self.last_name) if part]
        return " ".join(parts) if parts else None


@dataclass(slots=True)
class CredentialCheck:
    """Outcome of the store-side password comparison for an active account."""

    matched: bool
    account: Account
