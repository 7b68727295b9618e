"""
api/routes/v1/oauth.py -- Sign-in through external identity providers.

Routes:
  GET /auth/{provider}           -- redirect the browser to the provider
  GET /auth/{provider}/callback  -- finish the code exchange, start a session

On success the callback redirects to settings.oauth_success_redirect with the
token pair in the URL fragment (#accessToken=...&refreshToken=...&provider=...).
Fragments are not sent to servers, so the tokens stay out of access logs.
On any failure it redirects to settings.oauth_failure_redirect?error=oauth_failed.

This router must be included AFTER the auth router: GET /auth/me and
GET /auth/providers would otherwise be captured by GET /auth/{provider}.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

import httpx
from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool

from auth.errors import AuthError, NotFoundError
from auth.oauth import PROVIDERS, ExternalIdentityProvider
from auth.service import AuthService

logger = logging.getLogger("authgate.api.oauth")

router = APIRouter()


def _configured_provider(request: Request, provider: str) -> ExternalIdentityProvider:
    """Validate the path parameter against the configured providers.

    Unknown names never reach authlib, so a crafted URL cannot make the
    registry look up an arbitrary client.
    """
    identity_provider = PROVIDERS.get(provider)
    if identity_provider is None or not identity_provider.is_configured(request.app.state.settings):
        raise NotFoundError(f"OAuth provider {provider!r} is not configured.")
    return identity_provider


def _failure_redirect(request: Request) -> RedirectResponse:
    target = request.app.state.settings.oauth_failure_redirect
    return RedirectResponse(f"{target}?{urlencode({'error': 'oauth_failed'})}", status_code=302)


@router.get("/auth/{provider}")
async def oauth_redirect(request: Request, provider: str):
    """Redirect the browser to the provider's authorization page."""
    _configured_provider(request, provider)
    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/{provider}/callback", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Exchange the authorization code and sign the user in.

    Flow:
      1. Exchange code for token (authlib checks the session state value).
      2. Fetch and normalize the provider profile; verified email required [H1].
      3. AuthService.login_with_provider() links or creates the account and
         persists a refresh token.
      4. Redirect to the success URL with the token pair in the fragment.
    """
    identity_provider = _configured_provider(request, provider)
    client = request.app.state.oauth.create_client(provider)

    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("OAuth token exchange failed for provider %r", provider)
        return _failure_redirect(request)

    try:
        raw = await identity_provider.fetch_profile(client, token)
        profile = identity_provider.normalize_profile(raw)
    except httpx.HTTPError:
        logger.exception("OAuth profile fetch failed for provider %r", provider)
        return _failure_redirect(request)
    except ValueError as exc:
        logger.warning("OAuth sign-in rejected for provider %r: %s", provider, exc)
        return _failure_redirect(request)

    service: AuthService = request.app.state.auth_service
    try:
        result = await run_in_threadpool(service.login_with_provider, provider, profile)
    except AuthError:
        logger.warning("OAuth sign-in could not resolve an account for provider %r", provider)
        return _failure_redirect(request)

    fragment = urlencode(
        {
            "accessToken": result.tokens.access_token,
            "refreshToken": result.tokens.refresh_token,
            "provider": provider,
        }
    )
    response = RedirectResponse(f"{request.app.state.settings.oauth_success_redirect}#{fragment}", status_code=302)
    response.headers["Cache-Control"] = "no-store"
    return response
