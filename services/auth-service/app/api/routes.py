"""HTTP route definitions for the auth service."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ..domain.errors import AuthError, InternalError, InvalidInput
from ..domain.service import AuthService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")


class _Payload(BaseModel):
    # fields default to empty so missing values reach the domain validator
    model_config = ConfigDict(populate_by_name=True)


class SignUpRequest(_Payload):
    """Payload accepted when registering an email/password account."""

    email: str = ""
    password: str = ""
    source_id: str = Field(default="", alias="sourceId")
    user_type: str = Field(default="", alias="userType")
    first_name: str | None = Field(default=None, alias="firstName")
    last_name: str | None = Field(default=None, alias="lastName")


class SignInRequest(_Payload):
    email: str = ""
    password: str = ""


class OtpRequest(_Payload):
    """Request body that starts an OTP-gated password change."""

    email: str = ""
    trigger_action: str = Field(default="", alias="triggerAction")


class PasswordUpdateRequest(_Payload):
    """Request body that consumes an OTP and sets the new password."""

    email: str = ""
    otp: str | int | None = None
    new_password: str = Field(default="", alias="newPassword")
    trigger_action: str | None = Field(default=None, alias="triggerAction")


class TokenResponse(BaseModel):
    token: str


class SuccessResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_success: bool = Field(alias="isSuccess")


def get_service(request: Request) -> AuthService:
    """Resolve the `AuthService` stored on the FastAPI application state."""
    service: AuthService = request.app.state.auth_service
    return service


@router.post("/signup", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def sign_up(payload: SignUpRequest, service: AuthService = Depends(get_service)) -> TokenResponse:
    """Register an account and return a bearer token."""
    try:
        result = service.sign_up(
            email=payload.email,
            password=payload.password,
            source_id=payload.source_id,
            user_type=payload.user_type,
            first_name=payload.first_name,
            last_name=payload.last_name,
        )
    except AuthError as exc:
        raise _http_error_from_auth_error(exc) from exc
    return TokenResponse(token=result.token)


@router.post("/signin", response_model=TokenResponse)
def sign_in(payload: SignInRequest, service: AuthService = Depends(get_service)) -> TokenResponse:
    """Authenticate an email/password pair and return a bearer token."""
    try:
        result = service.sign_in(email=payload.email, password=payload.password)
    except AuthError as exc:
        raise _http_error_from_auth_error(exc) from exc
    return TokenResponse(token=result.token)


@router.post("/otp", response_model=SuccessResponse, status_code=status.HTTP_201_CREATED)
def request_otp(payload: OtpRequest, service: AuthService = Depends(get_service)) -> SuccessResponse:
    """Issue an OTP for a password reset or update and deliver it by email."""
    try:
        result = service.initiate_credential_update(
            email=payload.email, purpose=payload.trigger_action
        )
    except AuthError as exc:
        raise _http_error_from_auth_error(exc) from exc
    return SuccessResponse(is_success=result.is_success)


@router.post("/password", response_model=SuccessResponse)
def update_password(
    payload: PasswordUpdateRequest, service: AuthService = Depends(get_service)
) -> SuccessResponse:
    """Consume an OTP and set the new password."""
    try:
        result = service.complete_credential_update(
            email=payload.email,
            code=payload.otp,
            new_password=payload.new_password,
            purpose=payload.trigger_action,
        )
    except AuthError as exc:
        raise _http_error_from_auth_error(exc) from exc
    return SuccessResponse(is_success=result.is_success)


def _http_error_from_auth_error(exc: AuthError) -> HTTPException:
    if isinstance(exc, InternalError):
        logger.error("request failed: %s", exc.message)
    return HTTPException(
        status_code=exc.status_code,
        detail={"error": exc.code, "message": exc.message, "details": exc.public_details()},
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report undecodable or mistyped bodies as ``InvalidInput`` instead of a bare 422."""
    fields = sorted(
        {".".join(str(part) for part in error.get("loc", ()) if part != "body") for error in exc.errors()}
        - {""}
    )
    error = InvalidInput("Invalid input data", {"fields": fields})
    return JSONResponse(
        status_code=error.status_code,
        content={
            "detail": {"error": error.code, "message": error.message, "details": error.public_details()}
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, request_validation_handler)
