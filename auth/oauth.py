"""
auth/oauth.py -- External identity providers (Google, GitHub) via Authlib.

Each provider is an ExternalIdentityProvider variant that knows two things:
  fetch_profile()     -- pull the raw provider profile after code exchange.
  normalize_profile() -- turn that raw profile into an ExternalProfile
                         (email, external_id, display_name, avatar_url).
Everything after normalization -- find by email, link, or create with a
random password and collision-renamed username -- is shared and lives in
AuthService.login_with_provider().

Security notes:
  [H1] Email verification is mandatory. normalize_profile() raises ValueError
       if the provider does not confirm the email is verified. An unverified
       email could be a victim's address added by an attacker.

  OAuth state (CSRF protection) is handled by authlib via Starlette
  SessionMiddleware, installed by api.main.create_app().

The registry is built from explicit Settings by build_oauth_registry(); there
is no module-level client configuration.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from authlib.integrations.starlette_client import OAuth

from auth.models import ExternalProfile

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("authgate.auth.oauth")


class ExternalIdentityProvider:
    """Base class for provider variants."""

    name: str = ""
    label: str = ""

    def is_configured(self, settings: Settings) -> bool:
        raise NotImplementedError

    def register(self, oauth: OAuth, settings: Settings) -> None:
        raise NotImplementedError

    async def fetch_profile(self, client, token: dict) -> dict:
        raise NotImplementedError

    def normalize_profile(self, raw: dict) -> ExternalProfile:
        raise NotImplementedError


class GoogleProvider(ExternalIdentityProvider):
    """Google via OIDC discovery. The profile is the id_token's userinfo claims."""

    name = "google"
    label = "Google"

    def is_configured(self, settings: Settings) -> bool:
        return settings.google_enabled

    def register(self, oauth: OAuth, settings: Settings) -> None:
        oauth.register(
            name=self.name,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )

    async def fetch_profile(self, client, token: dict) -> dict:
        userinfo = token.get("userinfo")
        if not userinfo:
            raise ValueError("google OAuth: no userinfo in token response")
        return dict(userinfo)

    def normalize_profile(self, raw: dict) -> ExternalProfile:
        if not raw.get("email_verified", False):
            raise ValueError("google OAuth: email is not verified")
        email = raw.get("email")
        subject = raw.get("sub")
        if not email or not subject:
            raise ValueError("google OAuth: missing email or sub claim")
        display_name = raw.get("name") or " ".join(
            part for part in (raw.get("given_name"), raw.get("family_name")) if part
        )
        return ExternalProfile(
            email=email,
            external_id=str(subject),
            display_name=display_name or None,
            avatar_url=raw.get("picture"),
        )


class GitHubProvider(ExternalIdentityProvider):
    """GitHub with static endpoints (no OIDC discovery document).

    GitHub does not put the email in the token, so fetch_profile() calls
    GET /user for the numeric id and GET /user/emails for the address.
    """

    name = "github"
    label = "GitHub"

    def is_configured(self, settings: Settings) -> bool:
        return settings.github_enabled

    def register(self, oauth: OAuth, settings: Settings) -> None:
        oauth.register(
            name=self.name,
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
            authorize_url="https://github.com/login/oauth/authorize",
            api_base_url="https://api.github.com/",
            client_kwargs={"scope": "read:user user:email"},
        )

    async def fetch_profile(self, client, token: dict) -> dict:
        resp = await client.get("user", token=token)
        resp.raise_for_status()
        emails_resp = await client.get("user/emails", token=token)
        emails_resp.raise_for_status()
        return {"profile": resp.json(), "emails": emails_resp.json()}

    def normalize_profile(self, raw: dict) -> ExternalProfile:
        profile = raw.get("profile") or {}
        if "id" not in profile:
            raise ValueError("github OAuth: profile has no id")
        # [H1] Only an address that is both primary and verified is accepted.
        email = next(
            (e["email"] for e in raw.get("emails") or [] if e.get("primary") and e.get("verified")),
            None,
        )
        if not email:
            raise ValueError("github OAuth: no primary verified email found")
        return ExternalProfile(
            email=email,
            external_id=str(profile["id"]),
            display_name=profile.get("name") or profile.get("login"),
            avatar_url=profile.get("avatar_url"),
        )


PROVIDERS: dict[str, ExternalIdentityProvider] = {
    p.name: p for p in (GoogleProvider(), GitHubProvider())
}


def build_oauth_registry(settings: Settings) -> OAuth:
    """Register every configured provider on a fresh Authlib registry."""
    oauth = OAuth()
    for provider in PROVIDERS.values():
        if provider.is_configured(settings):
            provider.register(oauth, settings)
            logger.info("%s OAuth provider registered", provider.label)
    return oauth


def get_enabled_providers(settings: Settings) -> list[dict]:
    """Return {"name", "label"} for every configured provider."""
    return [
        {"name": p.name, "label": p.label} for p in PROVIDERS.values() if p.is_configured(settings)
    ]
