from __future__ import annotations

import hashlib
import secrets
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api import routes
from app.domain.account import Account, CredentialCheck, OtpPurpose, RoleDescriptor
from app.domain.contracts import SignUpInput
from app.domain.otp import OtpManager
from app.domain.service import AuthService
from app.repository import hash_code
from app.security.tokens import TokenIssuer

SECRET = "test-signing-key"
ISSUER = "auth-service-test"


def _hash_password(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, 1_000)


@dataclass
class FakeAccountRow:
    account: Account
    salt: bytes
    password_hash: bytes


@dataclass
class FakeChallenge:
    email: str
    purpose: OtpPurpose
    code_hash: str
    expires_at: datetime
    consumed_at: datetime | None = None
    superseded_at: datetime | None = None

    @property
    def live(self) -> bool:
        return self.consumed_at is None and self.superseded_at is None


class FakeRepository:
    """In-memory repository mimicking Postgres-backed behaviors."""

    def __init__(self) -> None:
        self.roles: dict[str, RoleDescriptor] = {
            "PRIMARY": RoleDescriptor(role_id="role-1", role="member", user_type="PRIMARY"),
            "ADMIN": RoleDescriptor(role_id="role-2", role="administrator", user_type="ADMIN"),
        }
        self.rows: dict[str, FakeAccountRow] = {}
        self.challenges: list[FakeChallenge] = []
        self.audit_log: list[dict] = []
        self.fail_password_update = False
        self._lock = threading.Lock()

    @staticmethod
    def _key(email: str) -> str:
        return email.strip().lower()

    def soft_delete(self, email: str) -> None:
        self.rows[self._key(email)].account.is_deleted = True

    def find_active_by_email(self, email: str) -> Account | None:
        row = self.rows.get(self._key(email))
        if row is None or row.account.is_deleted:
            return None
        return replace(row.account)

    def resolve_role(self, user_type: str) -> RoleDescriptor | None:
        return self.roles.get(user_type)

    def upsert_account(self, payload: SignUpInput, role: RoleDescriptor) -> Account | None:
        key = self._key(payload.email)
        with self._lock:
            existing = self.rows.get(key)
            if existing is not None and not existing.account.is_deleted:
                return None
            account = Account(
                account_id=existing.account.account_id if existing else str(uuid.uuid4()),
                email=key,
                source_id=payload.source_id,
                role=role.role,
                user_type=role.user_type,
                created_at=existing.account.created_at if existing else datetime.now(timezone.utc),
                first_name=payload.first_name,
                last_name=payload.last_name,
            )
            salt = secrets.token_bytes(8)
            self.rows[key] = FakeAccountRow(
                account=account, salt=salt, password_hash=_hash_password(payload.password, salt)
            )
            return replace(account)

    def verify_credential(self, email: str, password: str) -> CredentialCheck | None:
        row = self.rows.get(self._key(email))
        if row is None or row.account.is_deleted:
            return None
        matched = secrets.compare_digest(_hash_password(password, row.salt), row.password_hash)
        return CredentialCheck(matched=matched, account=replace(row.account))

    def store_challenge(
        self, email: str, purpose: OtpPurpose, code: str, expires_at: datetime
    ) -> str | None:
        key = self._key(email)
        with self._lock:
            row = self.rows.get(key)
            if row is None or row.account.is_deleted:
                return None
            now = datetime.now(timezone.utc)
            for challenge in self.challenges:
                if challenge.email == key and challenge.purpose == purpose and challenge.live:
                    challenge.superseded_at = now
            self.challenges.append(
                FakeChallenge(email=key, purpose=purpose, code_hash=hash_code(code), expires_at=expires_at)
            )
            row.account.pending_update = purpose
            return code

    def consume_challenge(
        self,
        email: str,
        purpose: OtpPurpose | None,
        code: str,
        new_password: str,
        now: datetime,
    ) -> bool:
        key = self._key(email)
        with self._lock:
            candidates = [
                challenge
                for challenge in self.challenges
                if challenge.email == key
                and challenge.code_hash == hash_code(code)
                and challenge.live
                and challenge.expires_at > now
                and (purpose is None or challenge.purpose == purpose)
            ]
            row = self.rows.get(key)
            if not candidates or row is None or row.account.is_deleted:
                return False
            if self.fail_password_update:
                # the password write failed; the transaction rolls back untouched
                return False
            row.salt = secrets.token_bytes(8)
            row.password_hash = _hash_password(new_password, row.salt)
            row.account.pending_update = None
            candidates[-1].consumed_at = now
            return True

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        source_id: str | None,
        event_type: str,
        metadata: dict | None = None,
    ) -> None:
        self.audit_log.append(
            {
                "account_id": account_id,
                "source_id": source_id,
                "event_type": event_type,
                "metadata": metadata or {},
            }
        )


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingNotifier:
    """Notification channel that keeps every delivered code for assertions."""

    def __init__(self, accept: bool = True) -> None:
        self.accept = accept
        self.sent: list[tuple[OtpPurpose, str, str]] = []

    def send(self, purpose: OtpPurpose, recipient: str, code: str) -> bool:
        self.sent.append((purpose, recipient, code))
        return self.accept

    @property
    def last_code(self) -> str:
        return self.sent[-1][2]


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def token_issuer(clock) -> TokenIssuer:
    return TokenIssuer(secret=SECRET, issuer=ISSUER, clock=clock)


@pytest.fixture
def otp_manager(repository, clock) -> OtpManager:
    return OtpManager(repository, digits=6, ttl_seconds=600, clock=clock)


@pytest.fixture
def service(repository, token_issuer, otp_manager, notifier) -> AuthService:
    return AuthService(repository, tokens=token_issuer, otp=otp_manager, notifier=notifier)


@pytest.fixture
def api_client(service):
    """Provide a FastAPI test client with isolated state."""
    app = FastAPI()
    app.include_router(routes.router)
    routes.register_exception_handlers(app)
    app.state.auth_service = service

    with TestClient(app) as client:
        yield client, service
