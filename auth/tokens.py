"""
auth/tokens.py -- Password hashing and signed-token codec.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). The cost factor comes
       from the constructor, not from module state, so tests can run with the
       minimum of 4 rounds while production uses Settings.bcrypt_rounds (10).
       PasswordHasher.dummy_hash enables timing equalization in
       AuthService.login() so response time does not reveal whether a
       username exists [C1].

  JWT: python-jose. Access and refresh tokens are signed with DIFFERENT
       secrets [M8] and carry a closed set of claims: sub, iat, exp, jti and
       optionally username / roles. verify() raises one of three TokenError
       subclasses; AuthService collapses all of them into a single generic
       401 so the client never learns which check failed.

  Expiry is checked against the injected clock rather than jose's wall clock,
       which keeps the codec and the refresh store on the same notion of "now".

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

import bcrypt
from jose import JWTError, jwt

from auth.errors import InvalidSignatureError, MalformedTokenError, TokenExpiredError
from auth.models import TokenClass, TokenPair, TokenPayload

logger = logging.getLogger("authgate.auth.tokens")

# bcrypt only looks at the first 72 bytes and bcrypt>=4.1 raises on longer
# input. Truncate explicitly on both hash and verify so they stay consistent.
_BCRYPT_MAX_BYTES = 72


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


class PasswordHasher:
    """Adaptive salted one-way hashing for passwords.

    Usage:
        hasher = PasswordHasher(rounds=10)
        hashed = hasher.hash("s3cret")
        hasher.verify("s3cret", hashed)   # True
    """

    def __init__(self, rounds: int = 10) -> None:
        self.rounds = rounds
        self._dummy_hash: str | None = None

    def hash(self, plain: str) -> str:
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(_password_bytes(plain), salt).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if plain matches hashed. Malformed hashes return False, never raise."""
        try:
            return bcrypt.checkpw(_password_bytes(plain), hashed.encode("utf-8"))
        except (ValueError, TypeError, AttributeError):
            return False

    @property
    def dummy_hash(self) -> str:
        """A throwaway hash with the same cost factor, for timing equalization [C1].

        Computed on first use and cached for the life of the hasher.
        """
        if self._dummy_hash is None:
            self._dummy_hash = self.hash("authgate_timing_dummy")
        return self._dummy_hash


def _password_bytes(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


# ---------------------------------------------------------------------------
# TTL parsing
# ---------------------------------------------------------------------------

_TTL_RE = re.compile(r"^(\d+)([smhdwy])$")

_TTL_UNITS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 604800,
    "y": 31536000,
}

DEFAULT_REFRESH_TTL_SECONDS = 7 * 86400


def parse_ttl(value: str | int) -> int:
    """Convert a TTL such as "15m" or "7d" into seconds.

    Fallback policy: anything that is not <digits><unit> with a unit from
    _TTL_UNITS yields the refresh-token default of 7 days. This is not an
    error -- a misconfigured TTL degrades to the documented default and is
    logged. Plain integers are taken as seconds.
    """
    if isinstance(value, int):
        return value
    match = _TTL_RE.match(value.strip())
    if match is None:
        logger.warning("Unrecognized TTL %r -- falling back to %d seconds", value, DEFAULT_REFRESH_TTL_SECONDS)
        return DEFAULT_REFRESH_TTL_SECONDS
    amount, unit = match.groups()
    return int(amount) * _TTL_UNITS[unit]


# ---------------------------------------------------------------------------
# Token codec
# ---------------------------------------------------------------------------


class TokenCodec:
    """Signs and verifies compact bearer tokens for the two token classes.

    Each class has its own secret and TTL. A token signed for one class
    never verifies as the other.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: str | int = "15m",
        refresh_ttl: str | int = "7d",
        algorithm: str = "HS256",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if access_secret == refresh_secret:
            raise ValueError("access and refresh tokens require distinct secrets")
        self._secrets = {TokenClass.access: access_secret, TokenClass.refresh: refresh_secret}
        self._ttls = {TokenClass.access: parse_ttl(access_ttl), TokenClass.refresh: parse_ttl(refresh_ttl)}
        self._algorithm = algorithm
        self._clock = clock or _utcnow

    @property
    def access_ttl_seconds(self) -> int:
        return self._ttls[TokenClass.access]

    @property
    def refresh_ttl_seconds(self) -> int:
        return self._ttls[TokenClass.refresh]

    def issue_access(
        self,
        subject_id: int,
        username: str | None = None,
        roles: Iterable[str] | None = None,
    ) -> str:
        return self._issue(TokenClass.access, subject_id, username=username, roles=roles)

    def issue_refresh(self, subject_id: int) -> str:
        return self._issue(TokenClass.refresh, subject_id)

    def issue_pair(
        self,
        subject_id: int,
        username: str | None = None,
        roles: Iterable[str] | None = None,
    ) -> TokenPair:
        return TokenPair(
            access_token=self.issue_access(subject_id, username=username, roles=roles),
            refresh_token=self.issue_refresh(subject_id),
        )

    def _issue(
        self,
        token_class: TokenClass,
        subject_id: int,
        username: str | None = None,
        roles: Iterable[str] | None = None,
    ) -> str:
        now = int(self._clock().timestamp())
        claims: dict = {
            "sub": str(subject_id),
            "iat": now,
            "exp": now + self._ttls[token_class],
            "jti": uuid.uuid4().hex,
        }
        if username is not None:
            claims["username"] = username
        if roles is not None:
            claims["roles"] = list(roles)
        return jwt.encode(claims, self._secrets[token_class], algorithm=self._algorithm)

    def verify(self, token: str, token_class: TokenClass) -> TokenPayload:
        """Verify signature and expiry and return the payload.

        Raises:
            MalformedTokenError: the token cannot be decoded or lacks required claims.
            InvalidSignatureError: tampered, or signed with another secret/algorithm.
            TokenExpiredError: exp is in the past.
        """
        try:
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise MalformedTokenError("token could not be decoded") from exc

        try:
            claims = jwt.decode(
                token,
                self._secrets[token_class],
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise InvalidSignatureError("token signature is invalid") from exc

        payload = _claims_to_payload(claims)
        if int(self._clock().timestamp()) > payload.expires_at:
            raise TokenExpiredError("token has expired")
        return payload


def _claims_to_payload(claims: dict) -> TokenPayload:
    try:
        roles = claims.get("roles")
        return TokenPayload(
            subject_id=int(claims["sub"]),
            issued_at=int(claims["iat"]),
            expires_at=int(claims["exp"]),
            token_id=str(claims["jti"]),
            username=claims.get("username"),
            roles=tuple(roles) if roles is not None else None,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedTokenError("token is missing required claims") from exc
