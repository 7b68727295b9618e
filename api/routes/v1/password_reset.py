"""
api/routes/v1/password_reset.py -- Password reset REST endpoints (all public).

Routes:
  POST /auth/password-reset/request         -- {email} -> {message}, always 200
  POST /auth/password-reset/validate-token  -- {token} -> {valid}
  POST /auth/password-reset/reset           -- {token, newPassword} -> {message}

/request answers identically for known and unknown addresses and never returns
the token; the token only travels by email. /reset answers 400 for a short
password or an expired token and 404 for an unknown or already-used token.

The reset email goes out as a background task after the response is sent, so
the response time does not depend on whether the address matched an account.
"""

from fastapi import APIRouter, BackgroundTasks, Request

from api.limiter import AUTH_RATE_LIMIT, limiter
from api.models import (
    MessageResponse,
    PasswordResetRequest,
    ResetPasswordRequest,
    ValidateTokenRequest,
    ValidResponse,
)
from auth.password_reset import PasswordResetService

router = APIRouter()


@router.post("/auth/password-reset/request", response_model=MessageResponse)
@limiter.limit(AUTH_RATE_LIMIT)  # [H2]
def request_reset(request: Request, body: PasswordResetRequest, background_tasks: BackgroundTasks) -> MessageResponse:
    service: PasswordResetService = request.app.state.reset_service
    return MessageResponse(message=service.request_reset(body.email, dispatch=background_tasks.add_task))


@router.post("/auth/password-reset/validate-token", response_model=ValidResponse)
def validate_token(request: Request, body: ValidateTokenRequest) -> ValidResponse:
    service: PasswordResetService = request.app.state.reset_service
    return ValidResponse(valid=service.validate_reset_token(body.token))


@router.post("/auth/password-reset/reset", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    service: PasswordResetService = request.app.state.reset_service
    return MessageResponse(message=service.reset_password(body.token, body.new_password))
