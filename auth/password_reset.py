"""
auth/password_reset.py -- One-time password reset tokens.

Flow:
  1. request_reset(email) always answers with RESET_REQUESTED_MESSAGE, whether
     or not the address belongs to a user [no account enumeration]. For a real
     user it replaces any existing reset token with a fresh 256-bit hex token
     and hands it to the mail sink, inline or through a dispatch callable. The
     token never appears in the response.
  2. validate_reset_token(token) tells a UI whether to show the form.
  3. reset_password(token, new_password) updates the password hash and deletes
     the token in ONE transaction -- the token cannot outlive the password it
     reset, and a failed update cannot burn the token.

Expired tokens are deleted lazily whenever they are looked up.

Layer rule: no imports from api/. The mail sink is duck-typed (anything with
send_password_reset_email) so auth/ does not import mail/.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from sqlalchemy.engine import Engine

from auth.errors import NotFoundError, ResetTokenExpiredError, ValidationError
from auth.models import PasswordResetToken
from auth.store import password_reset_tokens

if TYPE_CHECKING:
    from auth.store import UserStore
    from auth.tokens import PasswordHasher
    from mail.service import MailService

logger = logging.getLogger("authgate.auth.reset")

RESET_REQUESTED_MESSAGE = "If an account exists for that address, password reset instructions have been sent."
RESET_COMPLETED_MESSAGE = "Password has been reset."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PasswordResetService:
    def __init__(
        self,
        engine: Engine,
        user_store: UserStore,
        hasher: PasswordHasher,
        mailer: MailService,
        expires_in_hours: int = 1,
        min_password_length: int = 8,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.engine = engine
        self._users = user_store
        self._hasher = hasher
        self._mailer = mailer
        self._expires_in = timedelta(hours=expires_in_hours)
        self._min_password_length = min_password_length
        self._clock = clock or _utcnow

    def request_reset(self, email: str, dispatch: Callable[..., None] | None = None) -> str:
        """Issue a reset token for email if it belongs to a user. Returns the fixed message.

        dispatch(fn, *args) schedules the email instead of sending it inline,
        e.g. BackgroundTasks.add_task. Without it the email is sent before
        returning.
        """
        user = self._users.get_by_email(email)
        if user is None:
            return RESET_REQUESTED_MESSAGE

        token = secrets.token_hex(32)
        now = self._clock()
        with self.engine.begin() as conn:
            conn.execute(password_reset_tokens.delete().where(password_reset_tokens.c.user_id == user.id))
            conn.execute(
                password_reset_tokens.insert().values(
                    user_id=user.id,
                    token=token,
                    expires_at=(now + self._expires_in).isoformat(),
                    created_at=now.isoformat(),
                )
            )

        if dispatch is not None:
            dispatch(self._deliver, user.id, user.email, token, user.username)
        else:
            self._deliver(user.id, user.email, token, user.username)
        return RESET_REQUESTED_MESSAGE

    def _deliver(self, user_id: int, email: str, token: str, username: str) -> None:
        try:
            self._mailer.send_password_reset_email(email, token, username)
        except Exception:
            # Delivery failures are visible in the logs only.
            logger.exception("Password reset email delivery failed for user_id=%s", user_id)

    def get_token(self, token: str) -> PasswordResetToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                password_reset_tokens.select().where(password_reset_tokens.c.token == token)
            ).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def validate_reset_token(self, token: str) -> bool:
        """True iff the token exists and has not expired."""
        record = self.get_token(token)
        if record is None:
            return False
        if record.is_expired(self._clock()):
            self._delete(record.id)
            return False
        return True

    def reset_password(self, token: str, new_password: str) -> str:
        """Set a new password using a reset token. Returns the completion message.

        Raises:
            ValidationError: new_password is shorter than the minimum length.
            NotFoundError: no such token (never issued, already used, or deleted).
            ResetTokenExpiredError: the token has expired; it is deleted.
        """
        if len(new_password) < self._min_password_length:
            raise ValidationError(f"Password must be at least {self._min_password_length} characters.")

        record = self.get_token(token)
        if record is None:
            raise NotFoundError("Invalid or expired reset token.")
        if record.is_expired(self._clock()):
            self._delete(record.id)
            raise ResetTokenExpiredError("Reset token has expired.")

        hashed = self._hasher.hash(new_password)
        consumed = False
        with self.engine.begin() as conn:
            deleted = conn.execute(password_reset_tokens.delete().where(password_reset_tokens.c.id == record.id))
            # rowcount 0: a concurrent reset consumed the token first.
            if deleted.rowcount == 1:
                self._users.update_password(record.user_id, hashed, conn=conn)
                consumed = True
        if not consumed:
            raise NotFoundError("Invalid or expired reset token.")

        logger.info("Password reset completed for user_id=%s", record.user_id)
        return RESET_COMPLETED_MESSAGE

    def _delete(self, token_id: int) -> None:
        with self.engine.begin() as conn:
            conn.execute(password_reset_tokens.delete().where(password_reset_tokens.c.id == token_id))


def _row_to_reset_token(row) -> PasswordResetToken:
    return PasswordResetToken(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )
