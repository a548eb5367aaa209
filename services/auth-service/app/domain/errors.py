"""Closed error taxonomy surfaced by the auth workflows."""

from __future__ import annotations

from typing import Any


class AuthError(Exception):
    """Base class for failures the transport layer maps to a response status."""

    status_code: int = 500
    code: str = "AuthError"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def public_details(self) -> dict[str, Any]:
        """Return the metadata that is safe to echo back to the caller."""
        return dict(self.details)


class InvalidInput(AuthError):
    status_code = 400
    code = "InvalidInput"


class Unauthorized(AuthError):
    status_code = 401
    code = "Unauthorized"


class ResourceNotFound(AuthError):
    status_code = 404
    code = "ResourceNotFound"


class ResourceConflict(AuthError):
    status_code = 409
    code = "ResourceConflict"


class InternalError(AuthError):
    """Store, signing or catalog failure not attributable to the caller."""

    status_code = 500
    code = "InternalError"

    def public_details(self) -> dict[str, Any]:
        return {}
