"""Auth service orchestrating validation, persistence, OTP challenges and token issuance."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from ..metrics import record_outcome
from ..notifications import NotificationChannel, NotificationError
from ..security.tokens import TokenIssuer
from .account import Account, OtpPurpose
from .contracts import AuthRepositoryProtocol
from .errors import AuthError, InternalError, InvalidInput, ResourceConflict, ResourceNotFound, Unauthorized
from .otp import OtpManager
from .validation import (
    redact_email,
    validate_credential_update,
    validate_credential_update_request,
    validate_credentials,
    validate_sign_up,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TokenResult:
    """Bearer token handed back after a successful sign-up or sign-in."""

    token: str
    expires_in: int


@dataclass(slots=True)
class UpdateResult:
    is_success: bool


class AuthService:
    """Sign-up, sign-in and OTP-gated credential update workflows.

    The service holds no per-request state; every call reads what it needs
    from the repository and fails fast with an :class:`AuthError` subclass.
    """

    def __init__(
        self,
        repository: AuthRepositoryProtocol,
        *,
        tokens: TokenIssuer,
        otp: OtpManager,
        notifier: NotificationChannel,
    ) -> None:
        """Store dependencies used to orchestrate persistence and token issuance."""
        self._repository = repository
        self._tokens = tokens
        self._otp = otp
        self._notifier = notifier

    @contextmanager
    def _track(self, flow: str) -> Iterator[None]:
        try:
            yield
        except AuthError as exc:
            record_outcome(flow, exc.code)
            raise
        record_outcome(flow, "success")

    def _audit(
        self,
        *,
        account_id: str | None,
        source_id: str | None,
        event_type: str,
        metadata: dict | None = None,
    ) -> None:
        # runs after the mutation has committed; a failed write must not undo the reply
        try:
            self._repository.write_audit_event(
                account_id=account_id,
                source_id=source_id,
                event_type=event_type,
                metadata=metadata,
            )
        except InternalError:
            logger.exception("audit event %s could not be written", event_type)

    def sign_up(
        self,
        *,
        email: str | None,
        password: str | None,
        source_id: str | None,
        user_type: str | None,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> TokenResult:
        """Create an account, or reactivate a soft-deleted one, and issue a token."""
        with self._track("signup"):
            payload = validate_sign_up(
                email=email,
                password=password,
                source_id=source_id,
                user_type=user_type,
                first_name=first_name,
                last_name=last_name,
            )
            role = self._repository.resolve_role(payload.user_type)
            if role is None:
                raise InvalidInput("Unsupported user type", {"userType": payload.user_type})

            if self._repository.find_active_by_email(payload.email) is not None:
                raise ResourceConflict("User with same email already exists", {"email": payload.email})

            account = self._repository.upsert_account(payload, role)
            if account is None:
                # a concurrent sign-up won the conditional upsert
                if self._repository.find_active_by_email(payload.email) is not None:
                    raise ResourceConflict(
                        "User with same email already exists", {"email": payload.email}
                    )
                raise InternalError("Error while creating user")

            issued = self._tokens.issue(account)
            self._audit(
                account_id=account.account_id,
                source_id=account.source_id,
                event_type="account.created",
                metadata={"user_type": account.user_type},
            )
            logger.info("account %s signed up as %s", account.account_id, account.user_type)
            return TokenResult(token=issued.token, expires_in=issued.expires_in)

    def sign_in(self, *, email: str | None, password: str | None) -> TokenResult:
        """Authenticate an email/password pair and issue a token."""
        with self._track("signin"):
            clean_email, clean_password = validate_credentials(email, password)
            check = self._repository.verify_credential(clean_email, clean_password)
            if check is None:
                raise ResourceNotFound("User not found", {"email": clean_email})

            account = check.account
            if check.matched and not account.is_credential_update_pending:
                issued = self._tokens.issue(account)
                self._audit_sign_in(account, "auth.signin.succeeded")
                return TokenResult(token=issued.token, expires_in=issued.expires_in)

            reason = "update_pending" if account.is_credential_update_pending else "bad_password"
            self._audit_sign_in(account, "auth.signin.rejected", reason=reason)
            logger.info("sign-in rejected for %s: %s", redact_email(clean_email), reason)
            if account.is_credential_update_pending:
                raise Unauthorized("Password update initiated", {"email": clean_email})
            raise Unauthorized("Incorrect password", {"email": clean_email})

    def _audit_sign_in(self, account: Account, event_type: str, reason: str | None = None) -> None:
        self._audit(
            account_id=account.account_id,
            source_id=account.source_id,
            event_type=event_type,
            metadata={"reason": reason} if reason else {},
        )

    def initiate_credential_update(
        self, *, email: str | None, purpose: str | OtpPurpose | None
    ) -> UpdateResult:
        """Issue an OTP challenge and hand the code to the notification channel.

        The challenge stays issued when delivery fails so an operator may resend.
        """
        with self._track("otp_request"):
            clean_email, clean_purpose = validate_credential_update_request(email, purpose)
            code = self._otp.issue_challenge(clean_email, clean_purpose)
            self._audit(
                account_id=None,
                source_id=None,
                event_type="otp.issued",
                metadata={"purpose": clean_purpose.value, "email": redact_email(clean_email)},
            )
            try:
                delivered = self._notifier.send(clean_purpose, clean_email, code)
            except NotificationError as exc:
                raise InternalError("Error while sending OTP") from exc
            if not delivered:
                logger.warning(
                    "otp %s for %s was not accepted by the channel",
                    clean_purpose.value,
                    redact_email(clean_email),
                )
            return UpdateResult(is_success=delivered)

    def complete_credential_update(
        self,
        *,
        email: str | None,
        code: str | int | None,
        new_password: str | None,
        purpose: str | OtpPurpose | None = None,
    ) -> UpdateResult:
        """Consume an OTP and set the new password in one atomic step."""
        with self._track("otp_consume"):
            payload = validate_credential_update(
                email=email, code=code, new_password=new_password, purpose=purpose
            )
            consumed = self._otp.verify_and_consume(
                payload.email, payload.purpose, payload.code, payload.new_password
            )
            if not consumed:
                raise InvalidInput("Invalid or expired code")
            self._audit(
                account_id=None,
                source_id=None,
                event_type="credential.updated",
                metadata={"email": redact_email(payload.email)},
            )
            return UpdateResult(is_success=True)
