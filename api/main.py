"""
api/main.py -- FastAPI application factory for authgate.

Run with:  uvicorn asgi:app --reload

create_app(settings) builds a fresh application from explicit Settings. There
is no module-level app here: asgi.py calls create_app(get_settings()) and the
tests call it with their own Settings.

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SessionMiddleware     -- signed cookie holding the OAuth state value
  4. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  5. log_requests          -- method, path, status, latency, client host

Lifespan wires every component onto app.state on startup and disposes the
database engine on shutdown:
  settings, engine, user_store, refresh_store, role_store, authorizer,
  hasher, codec, mailer, auth_service, reset_service, oauth
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.oauth import router as oauth_router
from api.routes.v1.password_reset import router as password_reset_router
from api.routes.v1.roles import router as roles_router
from auth.errors import AuthError
from auth.oauth import build_oauth_registry
from auth.password_reset import PasswordResetService
from auth.rbac import Authorizer, RoleStore
from auth.refresh_tokens import RefreshTokenStore
from auth.seed import seed_roles_and_permissions
from auth.service import AuthService
from auth.store import UserStore, create_db_engine
from auth.tokens import PasswordHasher, TokenCodec
from core.config import Settings
from mail.service import MailService

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def _wire_components(app: FastAPI, settings: Settings) -> None:
    """Build every component from settings and attach it to app.state.

    Configuration flows one way: from Settings into constructors. Nothing
    below this function reads settings on its own.
    """
    state = app.state
    state.engine = create_db_engine(settings.database_url)
    state.user_store = UserStore(state.engine)
    state.refresh_store = RefreshTokenStore(state.engine)
    state.role_store = RoleStore(state.engine)
    state.authorizer = Authorizer(state.role_store)
    state.hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    state.codec = TokenCodec(
        access_secret=settings.jwt_access_secret,
        refresh_secret=settings.jwt_refresh_secret,
        access_ttl=settings.jwt_access_expiration,
        refresh_ttl=settings.jwt_refresh_expiration,
        algorithm=settings.jwt_algorithm,
    )
    state.mailer = MailService(
        smtp_host=settings.mail_host,
        smtp_port=settings.mail_port,
        smtp_user=settings.mail_user,
        smtp_password=settings.mail_password,
        use_tls=settings.mail_use_tls,
        from_email=settings.mail_from,
        base_url=settings.app_url,
    )
    state.auth_service = AuthService(
        users=state.user_store,
        refresh_tokens=state.refresh_store,
        codec=state.codec,
        hasher=state.hasher,
        roles=state.role_store,
        min_password_length=settings.password_min_length,
    )
    state.reset_service = PasswordResetService(
        engine=state.engine,
        user_store=state.user_store,
        hasher=state.hasher,
        mailer=state.mailer,
        expires_in_hours=settings.password_reset_expires_in_hours,
        min_password_length=settings.password_min_length,
    )
    state.oauth = build_oauth_registry(settings)


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the auth error taxonomy onto HTTP. The message is caller-safe by construction."""
    response = _error_response(exc.status_code, exc.code, exc.message)
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a Retry-After hint."""
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc.detail))
    response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
    return response


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 when a request body or query parameter fails schema validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the log only. The client gets a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_app(settings: Settings) -> FastAPI:
    """Build the authgate ASGI application from explicit settings."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("authgate API starting up")
        _wire_components(app, settings)
        seed_roles_and_permissions(app.state.role_store)
        logger.info("Database ready, default roles seeded")

        yield

        app.state.engine.dispose()
        logger.info("authgate API shutdown complete")

    app = FastAPI(
        title="authgate API",
        description="Registration, login, token rotation, password reset and role-based access control.",
        version=API_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings
    # SlowAPIMiddleware looks the limiter up on app.state by convention.
    app.state.limiter = limiter

    # add_middleware() wraps the current stack, so the last one added is the
    # outermost. Registered innermost-first.
    app.middleware("http")(log_requests)
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        same_site="lax",
        https_only=not settings.debug,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=3600,
    )
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # oauth_router last: GET /auth/{provider} would shadow /auth/me and /auth/providers.
    app.include_router(auth_router, tags=["Auth"])
    app.include_router(password_reset_router, tags=["Password reset"])
    app.include_router(roles_router, tags=["Roles"])
    app.include_router(oauth_router, tags=["OAuth"])

    @app.get("/health", tags=["Health"])
    async def health() -> HealthResponse:
        """Return API liveness and current version. Not rate limited."""
        return HealthResponse(version=API_VERSION)

    return app
