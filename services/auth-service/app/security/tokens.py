"""Utilities for issuing and validating application JWTs."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

import jwt

from ..domain.account import Account
from ..domain.errors import InternalError

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
DEFAULT_TTL_SECONDS = 4 * 60 * 60


@dataclass(slots=True)
class IssuedToken:
    """Encoded bearer token together with the claims it carries."""

    token: str
    claims: dict[str, Any]
    expires_in: int


class TokenIssuer:
    """Signs HS256 bearer tokens for verified identities.

    Parameters
    ----------
    secret:
        Symmetric signing key. An empty key makes every issuance fail rather
        than produce an unsigned token.
    issuer:
        Stable identity string placed in the ``iss`` claim.
    ttl_seconds:
        Fixed expiry horizon added to the issue time.
    """

    def __init__(
        self,
        *,
        secret: str,
        issuer: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._secret = secret
        self._issuer = issuer
        self._ttl_seconds = ttl_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def issuer(self) -> str:
        return self._issuer

    def build_claims(self, account: Account) -> dict[str, Any]:
        now = int(self._clock().timestamp())
        claims: dict[str, Any] = {
            "sub": account.account_id,
            "email": account.email,
            "role": account.role,
            "user_type": account.user_type,
            "jti": secrets.token_urlsafe(16),
            "iat": now,
            "exp": now + self._ttl_seconds,
            "iss": self._issuer,
        }
        if account.source_id:
            claims["aud"] = account.source_id
        if account.display_name:
            claims["name"] = account.display_name
        return claims

    def issue(self, account: Account) -> IssuedToken:
        """Create a signed JWT representing an authenticated account."""
        if not self._secret:
            logger.error("token signing key is not configured")
            raise InternalError("Token signing unavailable")

        claims = self.build_claims(account)
        try:
            token = jwt.encode(claims, self._secret, algorithm=ALGORITHM)
        except jwt.PyJWTError as exc:
            logger.exception("token signing failed")
            raise InternalError("Token signing unavailable") from exc
        return IssuedToken(token=token, claims=claims, expires_in=self._ttl_seconds)


def decode_access_token(
    token: str,
    *,
    secret: str,
    issuer: str,
    audience: str | None = None,
) -> dict[str, Any]:
    """Decode and verify a JWT returning its payload.

    Parameters
    ----------
    token:
        Encoded JWT issued by this service.
    audience:
        Expected ``aud`` claim. When omitted the audience is not checked.

    Raises
    ------
    jwt.PyJWTError
        Propagated when the token is invalid, expired, or signed by another issuer.
    """

    options: dict[str, Any] = {"require": ["exp", "iat", "iss", "sub", "jti"]}
    if audience is None:
        options["verify_aud"] = False
    return jwt.decode(
        token,
        secret,
        algorithms=[ALGORITHM],
        audience=audience,
        issuer=issuer,
        options=options,
    )
