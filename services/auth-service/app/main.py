"""FastAPI application wiring for the auth service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import register_exception_handlers, router as v1_router
from .config import Settings, get_settings
from .domain.contracts import AuthRepositoryProtocol
from .domain.otp import OtpManager
from .domain.service import AuthService
from .notifications import LoggingNotifier, NotificationChannel, SmtpNotifier
from .repository import AuthRepository
from .security.tokens import TokenIssuer

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_notifier(settings: Settings) -> NotificationChannel:
    """Instantiate the configured delivery channel for OTP codes."""
    if settings.notification_backend == "smtp":
        logger.info("otp delivery via smtp relay %s:%s", settings.smtp_host, settings.smtp_port)
        return SmtpNotifier(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.smtp_sender,
            username=settings.smtp_username,
            password=settings.smtp_password,
            starttls=settings.smtp_starttls,
            ttl_minutes=max(1, settings.otp_ttl_seconds // 60),
        )
    logger.info("otp delivery using log backend")
    return LoggingNotifier()


def build_service(settings: Settings, repository: AuthRepositoryProtocol) -> AuthService:
    """Compose the auth workflows from explicit configuration values."""
    return AuthService(
        repository,
        tokens=TokenIssuer(
            secret=settings.jwt_secret,
            issuer=settings.jwt_issuer,
            ttl_seconds=settings.jwt_ttl_seconds,
        ),
        otp=OtpManager(
            repository,
            digits=settings.otp_digits,
            ttl_seconds=settings.otp_ttl_seconds,
        ),
        notifier=build_notifier(settings),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, services) for the app lifecycle."""
    if not settings.jwt_secret:
        logger.warning("JWT_SECRET is not set; token issuance will fail")
    pool = ConnectionPool(settings.database_url, open=False)
    pool.open()
    app.state.pool = pool
    app.state.auth_service = build_service(settings, AuthRepository(pool))
    try:
        yield
    finally:
        pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    max_age=600,
)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


app.include_router(v1_router)
register_exception_handlers(app)


@app.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def run() -> None:
    """Serve the application with uvicorn using the configured host and port."""
    import uvicorn

    uvicorn.run(app, host=settings.http_host, port=settings.http_port, log_level=settings.log_level.lower())
