"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Requests authenticate with an access token in the Authorization header:
    Authorization: Bearer <accessToken>

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises UnauthorizedError (401).
require_roles(*names) wraps get_current_user() and asks the Authorizer,
    which raises ForbiddenError (403) when none of the roles is held.

The errors raised here are auth.errors types; api.main maps them onto the
JSON error envelope.

Layer rule: no imports from api/ or mail/. This module may import from
fastapi because it is part of the dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request

from auth.errors import UnauthorizedError
from auth.models import User


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def try_get_current_user(request: Request) -> User | None:
    """Return the authenticated User, or None. Never raises."""
    token = _bearer_token(request)
    if token is None:
        return None
    try:
        payload = request.app.state.auth_service.authenticate_access_token(token)
    except UnauthorizedError:
        return None
    return request.app.state.user_store.get_by_id(payload.subject_id)


def get_current_user(request: Request) -> User:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise UnauthorizedError("Authentication required.")
    return user


def require_roles(*role_names: str) -> Callable[..., User]:
    """Build a dependency that admits users holding at least one of role_names.

    With no role names every authenticated user is admitted.

        @router.post("/roles")
        def route(user: User = Depends(require_roles("admin"))): ...
    """

    def dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        request.app.state.authorizer.authorize(user.id, role_names)
        return user

    return dependency


require_admin = require_roles("admin")
