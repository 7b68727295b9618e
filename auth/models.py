"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and services do the work.

Timestamps are ISO 8601 UTC strings, matching what the stores persist.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


@dataclass
class User:
    """An identity record owned by the user store.

    hashed_password is always set. OAuth-created users get a random password
    they never learn, so the password-reset flow still works for them.
    provider / provider_id are None until the user signs in through an
    external identity provider.
    """

    email: str
    username: str
    hashed_password: str
    id: int | None = None
    display_name: str | None = None
    provider: str | None = None  # "google", "github"
    provider_id: str | None = None  # provider's stable user ID
    bio: str | None = None
    profile_image: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class RefreshToken:
    """A persisted refresh token.

    State machine: Active -> Revoked (terminal, stored flag) and
    Active -> Expired (terminal, derived from expires_at, never stored).
    """

    user_id: int
    token: str
    expires_at: str
    id: int | None = None
    is_revoked: bool = False
    created_at: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return now > datetime.fromisoformat(self.expires_at)


@dataclass
class PasswordResetToken:
    """A one-time password reset token. At most one live token per user."""

    user_id: int
    token: str
    expires_at: str
    id: int | None = None
    created_at: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return now > datetime.fromisoformat(self.expires_at)


@dataclass
class Permission:
    name: str
    id: int | None = None
    description: str | None = None


@dataclass
class Role:
    name: str
    id: int | None = None
    description: str | None = None
    permissions: list[Permission] = field(default_factory=list)


class TokenClass(str, Enum):
    access = "access"
    refresh = "refresh"


@dataclass(frozen=True)
class TokenPayload:
    """The claims carried inside a signed token.

    A closed set of named fields -- there is no open claims map. token_id
    (the jti claim) makes two tokens issued in the same second distinct.
    """

    subject_id: int
    issued_at: int
    expires_at: int
    token_id: str
    username: str | None = None
    roles: tuple[str, ...] | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class AuthResult:
    """Result of register/login: the user (never serialized with its hash) and a token pair."""

    user: User
    tokens: TokenPair


@dataclass(frozen=True)
class ExternalProfile:
    """Provider-neutral profile produced by ExternalIdentityProvider.normalize_profile()."""

    email: str
    external_id: str
    display_name: str | None = None
    avatar_url: str | None = None
