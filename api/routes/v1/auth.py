"""
api/routes/v1/auth.py -- Registration, login and session REST endpoints.

Routes:
  POST /auth/register    -- create account; 201 {user, accessToken, refreshToken}
  POST /auth/login       -- username or email + password; same shape
  POST /auth/refresh     -- rotate a refresh token; new token pair
  POST /auth/logout      -- revoke one refresh token (requires auth); always 200
  POST /auth/logout-all  -- revoke every refresh token of the caller (requires auth)
  GET  /auth/me          -- current user and role names (requires auth)
  GET  /auth/providers   -- configured external identity providers (public)

Security:
  [H2] register, login and refresh are rate-limited per client IP.
  [C1] AuthService.login() provides timing equalization -- never inline
       get_by_username_or_email() + verify().
  [M5] Cache-Control: no-store on every response that carries tokens.

Handlers are plain `def`: bcrypt and SQLite calls block, so FastAPI runs them
in its threadpool. Errors are auth.errors types raised by the services and
mapped onto the JSON envelope by api.main.
"""

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import AUTH_RATE_LIMIT, limiter
from api.models import (
    AuthResponse,
    LoginRequest,
    LogoutRequest,
    MeResponse,
    OAuthProviderInfo,
    OperationResponse,
    RefreshRequest,
    RegisterRequest,
    TokenPairResponse,
    UserResponse,
)
from auth.dependencies import get_current_user
from auth.models import AuthResult, User
from auth.oauth import get_enabled_providers
from auth.service import AuthService

# Auth policy:
# - POST /auth/register:    public
# - POST /auth/login:       public
# - POST /auth/refresh:     public -- the refresh token is the credential
# - POST /auth/logout:      requires auth (get_current_user)
# - POST /auth/logout-all:  requires auth (get_current_user)
# - GET  /auth/me:          requires auth (get_current_user)
# - GET  /auth/providers:   public -- login page renders provider buttons from it
router = APIRouter()


def _auth_response(result: AuthResult, response: Response) -> AuthResponse:
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return AuthResponse(
        user=UserResponse.from_user(result.user),
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


# @router goes outermost so FastAPI registers the rate-limited wrapper. No
# `from __future__ import annotations` in this module: FastAPI resolves string
# annotations against the wrapper's globals, which are slowapi's.
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
@limiter.limit(AUTH_RATE_LIMIT)  # [H2]
def register(request: Request, response: Response, body: RegisterRequest) -> AuthResponse:
    """Create an account and start a session. 409 if email or username is taken."""
    service: AuthService = request.app.state.auth_service
    result = service.register(body.email, body.username, body.password, body.display_name)
    return _auth_response(result, response)


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(AUTH_RATE_LIMIT)  # [H2]
def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    """Authenticate with username or email. 401 with one generic message on any mismatch."""
    service: AuthService = request.app.state.auth_service
    result = service.login(body.username_or_email, body.password)
    return _auth_response(result, response)


@router.post("/auth/refresh", response_model=TokenPairResponse)
@limiter.limit(AUTH_RATE_LIMIT)  # [H2]
def refresh(request: Request, response: Response, body: RefreshRequest) -> TokenPairResponse:
    """Exchange a refresh token for a new pair. The presented token is spent.

    Presenting an already-rotated token revokes every session of its owner.
    """
    service: AuthService = request.app.state.auth_service
    tokens = service.refresh(body.refresh_token)
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return TokenPairResponse(access_token=tokens.access_token, refresh_token=tokens.refresh_token)


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers(request: Request) -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers. Empty when no client ids are set."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers(request.app.state.settings)]


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=OperationResponse)
def logout(
    request: Request,
    body: LogoutRequest,
    current_user: User = Depends(get_current_user),
) -> OperationResponse:
    """Revoke one of the caller's refresh tokens. Succeeds even if the token is unknown."""
    service: AuthService = request.app.state.auth_service
    result = service.logout(body.refresh_token, current_user.id)
    return OperationResponse(success=result.success, message=result.message)


@router.post("/auth/logout-all", response_model=OperationResponse)
def logout_all(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> OperationResponse:
    """Revoke every refresh token of the caller ("sign out everywhere")."""
    service: AuthService = request.app.state.auth_service
    result = service.logout_all(current_user.id)
    return OperationResponse(success=result.success, message=result.message)


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return the authenticated user and the names of their roles."""
    roles = request.app.state.role_store.get_user_role_names(current_user.id)
    return MeResponse(user=UserResponse.from_user(current_user), roles=roles)
