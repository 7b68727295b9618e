"""
auth/service.py -- Identity/session orchestration.

AuthService composes the hasher, token codec, user store, refresh token store
and role store into register / login / refresh / logout / logout_all, plus
sign-in through an external identity provider.

Failure policy:
  register  -- ValidationError for a short password, ConflictError when
               email or username is taken.
  login     -- one generic UnauthorizedError for unknown user AND wrong
               password, with timing equalization [C1].
  refresh   -- every failure (bad signature, expired, malformed, unknown,
               revoked, subject mismatch, store error or timeout) collapses
               to one UnauthorizedError. The specific reason goes to the log
               only. Refresh fails closed.
  logout    -- never fails from the caller's point of view.

No automatic retries anywhere: rotating twice would double-issue tokens.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import (
    ConflictError,
    DuplicateKeyError,
    RefreshTokenError,
    TokenError,
    UnauthorizedError,
    ValidationError,
)
from auth.models import AuthResult, ExternalProfile, TokenClass, TokenPair, TokenPayload, User
from auth.rbac import RoleStore
from auth.refresh_tokens import RefreshTokenStore
from auth.store import UserStore
from auth.tokens import PasswordHasher, TokenCodec

logger = logging.getLogger("authgate.auth")

INVALID_CREDENTIALS = "Invalid credentials."
INVALID_REFRESH_TOKEN = "Invalid or expired refresh token."


@dataclass(frozen=True)
class OperationResult:
    success: bool
    message: str


class AuthService:
    def __init__(
        self,
        users: UserStore,
        refresh_tokens: RefreshTokenStore,
        codec: TokenCodec,
        hasher: PasswordHasher,
        roles: RoleStore | None = None,
        min_password_length: int = 8,
    ) -> None:
        self._users = users
        self._refresh_tokens = refresh_tokens
        self._codec = codec
        self._hasher = hasher
        self._roles = roles
        self._min_password_length = min_password_length

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(self, email: str, username: str, password: str, display_name: str | None = None) -> AuthResult:
        """Create a user and start a session. Raises ConflictError on a taken email/username."""
        if len(password) < self._min_password_length:
            raise ValidationError(f"Password must be at least {self._min_password_length} characters.")
        if self._users.get_by_username_or_email(email, username) is not None:
            raise ConflictError("Email or username is already in use.")

        user = User(
            email=email,
            username=username,
            hashed_password=self._hasher.hash(password),
            display_name=display_name,
        )
        try:
            user.id = self._users.create_user(user)
        except DuplicateKeyError as exc:
            raise ConflictError("Email or username is already in use.") from exc

        created = self._users.get_by_id(user.id) or user
        logger.info("Registered user_id=%s", created.id)
        return AuthResult(user=created, tokens=self._start_session(created))

    def login(self, username_or_email: str, password: str) -> AuthResult:
        """Authenticate with username or email. Raises UnauthorizedError on any mismatch.

        Always runs bcrypt, against a dummy hash when the user does not exist,
        so response time does not reveal whether an account exists [C1].
        """
        user = self._users.get_by_username_or_email(username_or_email)
        if user is None:
            self._hasher.verify(password, self._hasher.dummy_hash)
            logger.info("Login failed: unknown account")
            raise UnauthorizedError(INVALID_CREDENTIALS)
        if not self._hasher.verify(password, user.hashed_password):
            logger.info("Login failed: bad password for user_id=%s", user.id)
            raise UnauthorizedError(INVALID_CREDENTIALS)
        return AuthResult(user=user, tokens=self._start_session(user))

    def login_with_provider(self, provider: str, profile: ExternalProfile) -> AuthResult:
        """Sign in with a normalized external profile, linking or creating the account.

        An existing account with the same email is linked to the provider. A
        new account gets a random password (the user can set one through
        password reset) and a username taken from the email's local part; if
        that username is taken, one retry with a provider-specific suffix.
        """
        user = self._users.get_by_email(profile.email)
        if user is not None:
            self._users.link_provider(user.id, provider, profile.external_id)
            user = self._users.get_by_id(user.id) or user
        else:
            user = self._create_external_user(provider, profile)
        logger.info("External sign-in via %s for user_id=%s", provider, user.id)
        return AuthResult(user=user, tokens=self._start_session(user))

    def _create_external_user(self, provider: str, profile: ExternalProfile) -> User:
        username = profile.email.split("@", 1)[0]
        user = User(
            email=profile.email,
            username=username,
            hashed_password=self._hasher.hash(secrets.token_urlsafe(32)),
            display_name=profile.display_name,
            provider=provider,
            provider_id=profile.external_id,
            profile_image=profile.avatar_url,
        )
        try:
            user.id = self._users.create_user(user)
        except DuplicateKeyError as exc:
            if exc.field != "username":
                raise ConflictError("Email is already in use.") from exc
            user.username = f"{username}_{provider[0]}{profile.external_id[:5]}"
            try:
                user.id = self._users.create_user(user)
            except DuplicateKeyError as retry_exc:
                raise ConflictError("Could not allocate a username for this account.") from retry_exc
        return self._users.get_by_id(user.id) or user

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair, rotating it atomically."""
        try:
            payload = self._codec.verify(refresh_token, TokenClass.refresh)
            record = self._refresh_tokens.validate(refresh_token)
            if payload.subject_id != record.user_id:
                raise RefreshTokenError("token subject does not match stored owner")
            user = self._users.get_by_id(record.user_id)
            if user is None:
                raise RefreshTokenError("token owner no longer exists")
            tokens = self._issue_pair(user)
            self._refresh_tokens.rotate(
                refresh_token,
                record.user_id,
                tokens.refresh_token,
                self._codec.refresh_ttl_seconds,
            )
        except (TokenError, RefreshTokenError, SQLAlchemyError) as exc:
            logger.info("Refresh rejected: %s", type(exc).__name__)
            raise UnauthorizedError(INVALID_REFRESH_TOKEN) from exc
        return tokens

    def logout(self, refresh_token: str, user_id: int) -> OperationResult:
        """Revoke one of the user's refresh tokens. Always succeeds for the caller.

        A token owned by someone else is left alone; the answer is the same.
        """
        try:
            self._refresh_tokens.revoke(refresh_token, user_id=user_id)
        except SQLAlchemyError:
            logger.exception("Logout could not revoke refresh token")
        return OperationResult(success=True, message="Logged out.")

    def logout_all(self, user_id: int) -> OperationResult:
        """Revoke every refresh token the user owns."""
        revoked = self._refresh_tokens.revoke_all(user_id)
        logger.info("Logged out user_id=%s from %d session(s)", user_id, revoked)
        return OperationResult(success=True, message="Logged out from all devices.")

    def authenticate_access_token(self, access_token: str) -> TokenPayload:
        """Verify an access token. Raises UnauthorizedError without saying why."""
        try:
            return self._codec.verify(access_token, TokenClass.access)
        except TokenError as exc:
            raise UnauthorizedError("Invalid or expired access token.") from exc

    def _start_session(self, user: User) -> TokenPair:
        tokens = self._issue_pair(user)
        self._refresh_tokens.create(user.id, tokens.refresh_token, self._codec.refresh_ttl_seconds)
        return tokens

    def _issue_pair(self, user: User) -> TokenPair:
        role_names = self._roles.get_user_role_names(user.id) if self._roles is not None else None
        return self._codec.issue_pair(user.id, username=user.username, roles=role_names)
