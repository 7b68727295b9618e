"""
tests/test_auth_service.py -- Unit tests for AuthService.

Coverage:
  - register -> login round trip with a consistent subject id
  - conflicts, short passwords, generic login failures
  - refresh rotation; replaying a rotated token kills every session
  - logout never fails; logout_all invalidates every issued refresh token
  - sign-in through an external provider: link, create, username collision
"""

from __future__ import annotations

import pytest

from auth.errors import ConflictError, UnauthorizedError, ValidationError
from auth.models import ExternalProfile, TokenClass, User
from auth.refresh_tokens import RefreshTokenStore
from auth.service import INVALID_CREDENTIALS, INVALID_REFRESH_TOKEN, AuthService
from auth.store import UserStore
from auth.tokens import TokenCodec


class TestRegisterAndLogin:
    def test_register_then_login_same_subject(self, auth_service: AuthService, codec: TokenCodec) -> None:
        registered = auth_service.register("a@x.com", "alice", "Passw0rd!")
        logged_in = auth_service.login("alice", "Passw0rd!")

        assert registered.user.id == logged_in.user.id
        assert codec.verify(registered.tokens.access_token, TokenClass.access).subject_id == registered.user.id
        assert codec.verify(logged_in.tokens.access_token, TokenClass.access).subject_id == registered.user.id

    def test_login_by_email(self, auth_service: AuthService) -> None:
        registered = auth_service.register("a@x.com", "alice", "Passw0rd!")
        assert auth_service.login("a@x.com", "Passw0rd!").user.id == registered.user.id

    def test_register_persists_refresh_token(self, auth_service: AuthService, refresh_store: RefreshTokenStore) -> None:
        result = auth_service.register("a@x.com", "alice", "Passw0rd!")
        assert refresh_store.validate(result.tokens.refresh_token).user_id == result.user.id

    def test_password_is_hashed(self, auth_service: AuthService, user_store: UserStore) -> None:
        result = auth_service.register("a@x.com", "alice", "Passw0rd!")
        stored = user_store.get_by_id(result.user.id)
        assert stored.hashed_password != "Passw0rd!"
        assert stored.hashed_password.startswith("$2b$")

    @pytest.mark.parametrize(("email", "username"), [("a@x.com", "other"), ("other@x.com", "alice")])
    def test_duplicate_email_or_username_conflicts(self, auth_service: AuthService, email: str, username: str) -> None:
        auth_service.register("a@x.com", "alice", "Passw0rd!")
        with pytest.raises(ConflictError):
            auth_service.register(email, username, "Passw0rd!")

    def test_short_password_rejected(self, auth_service: AuthService) -> None:
        with pytest.raises(ValidationError):
            auth_service.register("a@x.com", "alice", "short")

    def test_access_token_carries_roles(self, auth_service: AuthService, role_store, codec: TokenCodec) -> None:
        user_id = auth_service.register("a@x.com", "alice", "Passw0rd!").user.id
        role_store.assign_role(user_id, role_store.get_role_by_name("moderator").id)
        payload = codec.verify(auth_service.login("alice", "Passw0rd!").tokens.access_token, TokenClass.access)
        assert payload.roles == ("moderator",)
        assert payload.username == "alice"

    def test_wrong_password_and_unknown_user_look_the_same(self, auth_service: AuthService) -> None:
        auth_service.register("a@x.com", "alice", "Passw0rd!")
        with pytest.raises(UnauthorizedError) as wrong_password:
            auth_service.login("alice", "nope-nope")
        with pytest.raises(UnauthorizedError) as unknown_user:
            auth_service.login("mallory", "nope-nope")
        assert wrong_password.value.message == unknown_user.value.message == INVALID_CREDENTIALS


class TestRefresh:
    def test_refresh_rotates(self, auth_service: AuthService, refresh_store: RefreshTokenStore) -> None:
        first = auth_service.register("a@x.com", "alice", "Passw0rd!").tokens
        second = auth_service.refresh(first.refresh_token)

        assert second.refresh_token != first.refresh_token
        assert refresh_store.get(first.refresh_token).is_revoked is True
        assert refresh_store.validate(second.refresh_token).is_revoked is False

    def test_replay_revokes_every_session(self, auth_service: AuthService) -> None:
        """Two sessions; rotate one, replay its old token, and the other session dies too."""
        auth_service.register("a@x.com", "alice", "Passw0rd!")
        session_a = auth_service.login("alice", "Passw0rd!").tokens
        session_b = auth_service.login("alice", "Passw0rd!").tokens

        rotated_a = auth_service.refresh(session_a.refresh_token)

        with pytest.raises(UnauthorizedError):
            auth_service.refresh(session_a.refresh_token)
        with pytest.raises(UnauthorizedError):
            auth_service.refresh(session_b.refresh_token)
        with pytest.raises(UnauthorizedError):
            auth_service.refresh(rotated_a.refresh_token)

    def test_losing_a_concurrent_rotation_revokes_every_session(
        self, auth_service: AuthService, refresh_store: RefreshTokenStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Another request rotates the token between validate and rotate; the loser kills all sessions."""
        result = auth_service.register("a@x.com", "alice", "Passw0rd!")
        token = result.tokens.refresh_token
        validate = refresh_store.validate

        def validate_then_lose_race(presented: str):
            record = validate(presented)
            refresh_store.rotate(presented, record.user_id, "winner-token", 3600)
            return record

        monkeypatch.setattr(refresh_store, "validate", validate_then_lose_race)

        with pytest.raises(UnauthorizedError):
            auth_service.refresh(token)
        assert refresh_store.get("winner-token").is_revoked is True

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
    def test_bad_tokens_are_generic_unauthorized(self, auth_service: AuthService, token: str) -> None:
        with pytest.raises(UnauthorizedError) as exc_info:
            auth_service.refresh(token)
        assert exc_info.value.message == INVALID_REFRESH_TOKEN

    def test_access_token_is_not_a_refresh_token(self, auth_service: AuthService) -> None:
        tokens = auth_service.register("a@x.com", "alice", "Passw0rd!").tokens
        with pytest.raises(UnauthorizedError):
            auth_service.refresh(tokens.access_token)

    def test_signed_but_unpersisted_token_rejected(self, auth_service: AuthService, codec: TokenCodec) -> None:
        user_id = auth_service.register("a@x.com", "alice", "Passw0rd!").user.id
        with pytest.raises(UnauthorizedError):
            auth_service.refresh(codec.issue_refresh(user_id))

    def test_expired_refresh_token_rejected(self, auth_service: AuthService, clock) -> None:
        tokens = auth_service.register("a@x.com", "alice", "Passw0rd!").tokens
        clock.advance(days=7, seconds=1)
        with pytest.raises(UnauthorizedError):
            auth_service.refresh(tokens.refresh_token)

    def test_subject_mismatch_rejected(
        self, auth_service: AuthService, codec: TokenCodec, refresh_store: RefreshTokenStore
    ) -> None:
        """A token signed for one user but stored under another is refused."""
        alice = auth_service.register("a@x.com", "alice", "Passw0rd!").user.id
        bob = auth_service.register("b@x.com", "bob", "Passw0rd!").user.id
        forged = codec.issue_refresh(alice)
        refresh_store.create(bob, forged, codec.refresh_ttl_seconds)
        with pytest.raises(UnauthorizedError):
            auth_service.refresh(forged)


class TestLogout:
    def test_logout_revokes_token(self, auth_service: AuthService) -> None:
        result = auth_service.register("a@x.com", "alice", "Passw0rd!")
        assert auth_service.logout(result.tokens.refresh_token, result.user.id).success is True
        with pytest.raises(UnauthorizedError):
            auth_service.refresh(result.tokens.refresh_token)

    def test_logout_unknown_token_succeeds(self, auth_service: AuthService) -> None:
        user = auth_service.register("a@x.com", "alice", "Passw0rd!").user
        assert auth_service.logout("never-issued", user.id).success is True

    def test_logout_leaves_other_users_token(self, auth_service: AuthService) -> None:
        alice = auth_service.register("a@x.com", "alice", "Passw0rd!")
        bob = auth_service.register("b@x.com", "bob", "Passw0rd!")

        assert auth_service.logout(alice.tokens.refresh_token, bob.user.id).success is True

        assert auth_service.refresh(alice.tokens.refresh_token).refresh_token

    def test_logout_all_scenario(self, auth_service: AuthService) -> None:
        """register -> login -> refresh -> logout_all -> every earlier refresh token fails."""
        registered = auth_service.register("a@x.com", "alice", "Passw0rd!")
        logged_in = auth_service.login("a@x.com", "Passw0rd!")
        refreshed = auth_service.refresh(logged_in.tokens.refresh_token)

        assert auth_service.logout_all(registered.user.id).success is True

        for token in (registered.tokens.refresh_token, logged_in.tokens.refresh_token, refreshed.refresh_token):
            with pytest.raises(UnauthorizedError):
                auth_service.refresh(token)

    def test_authenticate_access_token(self, auth_service: AuthService, clock) -> None:
        result = auth_service.register("a@x.com", "alice", "Passw0rd!")
        assert auth_service.authenticate_access_token(result.tokens.access_token).subject_id == result.user.id
        clock.advance(minutes=16)
        with pytest.raises(UnauthorizedError):
            auth_service.authenticate_access_token(result.tokens.access_token)


class TestExternalSignIn:
    def test_links_existing_account_by_email(self, auth_service: AuthService, user_store: UserStore) -> None:
        existing = auth_service.register("a@x.com", "alice", "Passw0rd!").user
        profile = ExternalProfile(email="a@x.com", external_id="g-123", display_name="Alice A")

        result = auth_service.login_with_provider("google", profile)

        assert result.user.id == existing.id
        linked = user_store.get_by_id(existing.id)
        assert (linked.provider, linked.provider_id) == ("google", "g-123")
        # The local password keeps working after linking.
        assert auth_service.login("alice", "Passw0rd!").user.id == existing.id

    def test_creates_account_from_email_local_part(self, auth_service: AuthService) -> None:
        profile = ExternalProfile(
            email="carol@x.com", external_id="987654", display_name="Carol", avatar_url="https://img/c.png"
        )
        user = auth_service.login_with_provider("github", profile).user
        assert user.username == "carol"
        assert user.provider == "github"
        assert user.profile_image == "https://img/c.png"

    def test_username_collision_gets_provider_suffix(self, auth_service: AuthService) -> None:
        auth_service.register("carol@other.com", "carol", "Passw0rd!")
        profile = ExternalProfile(email="carol@x.com", external_id="987654321")
        user = auth_service.login_with_provider("github", profile).user
        assert user.username == "carol_g98765"

    def test_external_session_can_refresh(self, auth_service: AuthService) -> None:
        profile = ExternalProfile(email="dave@x.com", external_id="42")
        tokens = auth_service.login_with_provider("google", profile).tokens
        assert auth_service.refresh(tokens.refresh_token).access_token

    def test_created_user_has_unusable_random_password(self, auth_service: AuthService, user_store: UserStore) -> None:
        user = auth_service.login_with_provider("google", ExternalProfile(email="erin@x.com", external_id="7")).user
        stored: User = user_store.get_by_id(user.id)
        assert stored.hashed_password.startswith("$2b$")
        with pytest.raises(UnauthorizedError):
            auth_service.login("erin", "")
