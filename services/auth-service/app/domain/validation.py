"""Shape checks and normalisation for incoming credential and OTP payloads."""

from __future__ import annotations

import re

from .account import OtpPurpose
from .contracts import CredentialUpdateInput, SignUpInput
from .errors import InvalidInput

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_email_valid(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


def redact_email(email: str | None) -> str:
    """Mask the local part of an address for log output, e.g. ``u***@x.com``."""
    if not email:
        return "<empty>"
    local, sep, domain = email.strip().partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"


def _clean(value: str | None) -> str:
    return (value or "").strip()


def _optional(value: str | None) -> str | None:
    cleaned = _clean(value)
    return cleaned or None


def validate_email(email: str | None) -> str:
    cleaned = _clean(email)
    if not cleaned:
        raise InvalidInput("Email missing")
    if not is_email_valid(cleaned):
        raise InvalidInput("Email address format is invalid", {"email": cleaned})
    return cleaned


def validate_credentials(email: str | None, password: str | None) -> tuple[str, str]:
    """Return the trimmed email and the untouched password.

    The password is only checked for blankness; its content is passed through
    as typed so the stored credential matches what the user entered.
    """
    if not _clean(email) or not _clean(password):
        raise InvalidInput("Email or password missing")
    return validate_email(email), password or ""


def validate_sign_up(
    *,
    email: str | None,
    password: str | None,
    source_id: str | None,
    user_type: str | None,
    first_name: str | None = None,
    last_name: str | None = None,
) -> SignUpInput:
    clean_email, clean_password = validate_credentials(email, password)
    if not _clean(source_id):
        raise InvalidInput("Source identifier missing")
    if not _clean(user_type):
        raise InvalidInput("User type missing")
    return SignUpInput(
        email=clean_email,
        password=clean_password,
        source_id=_clean(source_id),
        user_type=_clean(user_type),
        first_name=_optional(first_name),
        last_name=_optional(last_name),
    )


def validate_purpose(purpose: str | OtpPurpose | None) -> OtpPurpose:
    if isinstance(purpose, OtpPurpose):
        return purpose
    try:
        return OtpPurpose(_clean(purpose))
    except ValueError:
        raise InvalidInput(
            "Unsupported trigger action",
            {"supported": [member.value for member in OtpPurpose]},
        ) from None


def validate_credential_update_request(
    email: str | None, purpose: str | OtpPurpose | None
) -> tuple[str, OtpPurpose]:
    if not _clean(email) or not purpose:
        raise InvalidInput("Invalid input data")
    return validate_email(email), validate_purpose(purpose)


def validate_credential_update(
    *,
    email: str | None,
    code: str | int | None,
    new_password: str | None,
    purpose: str | OtpPurpose | None = None,
) -> CredentialUpdateInput:
    """Check the completion payload.

    A numeric ``code`` is kept as an integer; it is zero-padded to the
    configured digit count when verified.
    """
    if isinstance(code, int) and not isinstance(code, bool):
        clean_code: str | int = code
    else:
        clean_code = _clean(code if isinstance(code, str) else None)
    if not _clean(email) or clean_code == "" or not _clean(new_password):
        raise InvalidInput("Email, OTP or new password missing")
    return CredentialUpdateInput(
        email=validate_email(email),
        code=clean_code,
        new_password=new_password or "",
        purpose=validate_purpose(purpose) if purpose else None,
    )
