"""One-time passcode issuance and single-use consumption."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable

from .account import OtpPurpose
from .contracts import ChallengeStore
from .errors import InternalError
from .validation import redact_email

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OtpManager:
    """Generates codes and drives the challenge state machine held by the store.

    A challenge for ``(email, purpose)`` moves ``ISSUED -> CONSUMED`` on a
    successful verification, ``ISSUED -> SUPERSEDED`` when a newer challenge is
    issued, and is treated as ``EXPIRED`` once ``expires_at`` has passed. Expiry
    is evaluated when a code is verified; nothing sweeps old rows.
    """

    def __init__(
        self,
        store: ChallengeStore,
        *,
        digits: int = 6,
        ttl_seconds: int = 600,
        clock: Clock = utcnow,
    ) -> None:
        if digits < 4:
            raise ValueError("OTP must have at least 4 digits")
        self._store = store
        self._digits = digits
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    @property
    def digits(self) -> int:
        return self._digits

    def generate_code(self) -> str:
        """Return a uniformly random, zero-padded numeric code."""
        return f"{secrets.randbelow(10 ** self._digits):0{self._digits}d}"

    def issue_challenge(self, email: str, purpose: OtpPurpose) -> str:
        """Persist a fresh challenge, superseding any live one, and return its code.

        A missing account and a storage fault fail identically so the response
        does not reveal whether the email is registered.
        """
        code = self.generate_code()
        expires_at = self._clock() + self._ttl
        stored = self._store.store_challenge(email, purpose, code, expires_at)
        if not stored:
            logger.info(
                "otp challenge not stored for %s (%s)", redact_email(email), purpose.value
            )
            raise InternalError("Error while generating OTP")
        return stored

    def verify_and_consume(
        self,
        email: str,
        purpose: OtpPurpose | None,
        code: str | int,
        new_password: str,
    ) -> bool:
        """Consume the matching live challenge and apply ``new_password`` atomically.

        An integer code is zero-padded to the configured width, so ``12345``
        matches the issued ``"012345"``.
        """
        if isinstance(code, int):
            if code < 0:
                return False
            code = f"{code:0{self._digits}d}"
        if len(code) != self._digits or not code.isdigit():
            return False
        return self._store.consume_challenge(email, purpose, code, new_password, self._clock())
