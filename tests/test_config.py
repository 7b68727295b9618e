"""
tests/test_config.py -- Settings secret policy and field bounds.

Settings are built directly with keyword arguments; _env_file=None keeps a
developer's local .env out of the picture.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings

ACCESS = "a" * 32
REFRESH = "r" * 32
SESSION = "s" * 32


def _settings(**overrides) -> Settings:
    values = {
        "jwt_access_secret": ACCESS,
        "jwt_refresh_secret": REFRESH,
        "session_secret": SESSION,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestSecretPolicy:
    def test_production_requires_secrets(self) -> None:
        with pytest.raises(ValidationError, match="JWT_ACCESS_SECRET is required"):
            _settings(debug=False, jwt_access_secret="")

    def test_debug_generates_missing_secrets(self) -> None:
        settings = _settings(debug=True, jwt_access_secret="", jwt_refresh_secret="", session_secret="")
        assert len(settings.jwt_access_secret) >= 32
        assert len(settings.session_secret) >= 32
        assert settings.jwt_access_secret != settings.jwt_refresh_secret

    def test_short_secret_rejected_even_in_debug(self) -> None:
        with pytest.raises(ValidationError, match="at least 32"):
            _settings(debug=True, jwt_refresh_secret="too-short")

    def test_access_and_refresh_secrets_must_differ(self) -> None:
        with pytest.raises(ValidationError, match="must differ"):
            _settings(jwt_refresh_secret=ACCESS)

    def test_explicit_secrets_kept(self) -> None:
        settings = _settings()
        assert settings.jwt_access_secret == ACCESS
        assert settings.jwt_refresh_secret == REFRESH


class TestBounds:
    @pytest.mark.parametrize("rounds", [3, 32])
    def test_bcrypt_rounds_out_of_range(self, rounds: int) -> None:
        with pytest.raises(ValidationError):
            _settings(bcrypt_rounds=rounds)

    def test_defaults(self) -> None:
        settings = _settings()
        assert settings.bcrypt_rounds == 10
        assert settings.jwt_access_expiration == "15m"
        assert settings.jwt_refresh_expiration == "7d"
        assert settings.password_reset_expires_in_hours == 1


class TestProviderFlags:
    def test_provider_needs_id_and_secret(self) -> None:
        assert not _settings(google_client_id="id").google_enabled
        assert _settings(google_client_id="id", google_client_secret="secret").google_enabled
        assert not _settings().github_enabled
