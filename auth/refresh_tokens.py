"""
auth/refresh_tokens.py -- Persistence and state machine for refresh tokens.

Each record is Active until it is revoked (stored flag, terminal) or expires
(derived from expires_at, terminal). A token string is consumed exactly once:
rotate() flips it to revoked with a conditional UPDATE and inserts its
successor in the same transaction.

Breach containment:
  Presenting a revoked token is treated as evidence that it was stolen --
  either the legitimate client or the attacker already rotated it away. The
  store revokes every session of that user BEFORE reporting the failure, so a
  racing second attempt with the same stolen token cannot succeed afterwards.
  This fires on every reuse, not only the first one.

Concurrency:
  No in-process locks. The conditional UPDATE (WHERE is_revoked = false) is
  the compare-and-swap: of two concurrent rotations of one token exactly one
  sees rowcount == 1. The loser is handled as a reuse.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy.engine import Connection, Engine

from auth.errors import (
    RefreshTokenExpiredError,
    RefreshTokenNotFoundError,
    RefreshTokenRevokedError,
)
from auth.models import RefreshToken
from auth.store import refresh_tokens

logger = logging.getLogger("authgate.auth.refresh")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshTokenStore:
    def __init__(self, engine: Engine, clock: Callable[[], datetime] | None = None) -> None:
        self.engine = engine
        self._clock = clock or _utcnow

    def create(self, user_id: int, token: str, ttl_seconds: int) -> RefreshToken:
        """Insert an Active record that expires ttl_seconds from now."""
        with self.engine.begin() as conn:
            return self._insert(conn, user_id, token, ttl_seconds)

    def get(self, token: str) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(refresh_tokens.select().where(refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def validate(self, token: str) -> RefreshToken:
        """Return the record if it is Active.

        Raises:
            RefreshTokenNotFoundError: no record for this token string.
            RefreshTokenRevokedError: the record is revoked. Every other session
                of the owner has been revoked by the time this is raised.
            RefreshTokenExpiredError: now is past expires_at.
        """
        record = self.get(token)
        if record is None:
            raise RefreshTokenNotFoundError("refresh token not found")
        if record.is_revoked:
            revoked = self.revoke_all(record.user_id)
            logger.warning(
                "Refresh token reuse detected for user_id=%s -- revoked %d active session(s)",
                record.user_id,
                revoked,
            )
            raise RefreshTokenRevokedError("refresh token has been revoked")
        if record.is_expired(self._clock()):
            raise RefreshTokenExpiredError("refresh token has expired")
        return record

    def revoke(self, token: str, user_id: int | None = None) -> bool:
        """Mark a token revoked. Unknown or already-revoked tokens are not an error.

        With user_id, only a token owned by that user is touched. Returns True
        if an Active record was revoked by this call.
        """
        condition = (refresh_tokens.c.token == token) & (refresh_tokens.c.is_revoked.is_(False))
        if user_id is not None:
            condition = condition & (refresh_tokens.c.user_id == user_id)
        with self.engine.begin() as conn:
            result = conn.execute(refresh_tokens.update().where(condition).values(is_revoked=True))
        return result.rowcount > 0

    def revoke_all(self, user_id: int) -> int:
        """Revoke every non-revoked token owned by user_id. Returns how many changed."""
        with self.engine.begin() as conn:
            result = conn.execute(
                refresh_tokens.update()
                .where((refresh_tokens.c.user_id == user_id) & (refresh_tokens.c.is_revoked.is_(False)))
                .values(is_revoked=True)
            )
        return result.rowcount

    def rotate(self, old_token: str, user_id: int, new_token: str, ttl_seconds: int) -> RefreshToken:
        """Atomically revoke old_token and insert new_token as Active.

        Both writes commit together or not at all. If the insert fails (for
        example a duplicate token string) the old token stays Active.

        Raises RefreshTokenRevokedError when old_token is no longer Active
        owned by user_id -- typically because a concurrent rotation consumed
        it first. That case is handled as a reuse: all of the user's
        sessions are revoked before the error is raised.
        """
        consumed = False
        with self.engine.begin() as conn:
            result = conn.execute(
                refresh_tokens.update()
                .where(
                    (refresh_tokens.c.token == old_token)
                    & (refresh_tokens.c.user_id == user_id)
                    & (refresh_tokens.c.is_revoked.is_(False))
                )
                .values(is_revoked=True)
            )
            if result.rowcount == 1:
                consumed = True
                successor = self._insert(conn, user_id, new_token, ttl_seconds)
        if not consumed:
            revoked = self.revoke_all(user_id)
            logger.warning(
                "Refresh token rotated concurrently for user_id=%s -- revoked %d active session(s)",
                user_id,
                revoked,
            )
            raise RefreshTokenRevokedError("refresh token was already consumed")
        return successor

    def _insert(self, conn: Connection, user_id: int, token: str, ttl_seconds: int) -> RefreshToken:
        now = self._clock()
        record = RefreshToken(
            user_id=user_id,
            token=token,
            expires_at=(now + timedelta(seconds=ttl_seconds)).isoformat(),
            created_at=now.isoformat(),
        )
        result = conn.execute(
            refresh_tokens.insert().values(
                user_id=record.user_id,
                token=record.token,
                expires_at=record.expires_at,
                is_revoked=False,
                created_at=record.created_at,
            )
        )
        record.id = result.inserted_primary_key[0]
        return record


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=row.expires_at,
        is_revoked=bool(row.is_revoked),
        created_at=row.created_at,
    )
