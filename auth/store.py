"""
auth/store.py -- SQLAlchemy Core schema, engine factory, and the user repository.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Service and route code never touches SQL directly.

One Engine is shared by every store (UserStore, RefreshTokenStore,
PasswordResetService, RoleStore). Sharing it is what lets multi-table writes,
such as "update password + delete reset token", run in one transaction.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Unique violations surface as DuplicateKeyError(field). The store decides
  which field collided by re-querying, never by reading the driver's error
  text.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateKeyError
from auth.models import User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("display_name", String(255)),
    Column("provider", String(30)),  # "google", "github"
    Column("provider_id", Text),  # provider's stable user ID
    Column("bio", Text),
    Column("profile_image", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", Text, nullable=False, unique=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
    Column("is_revoked", Boolean, nullable=False, default=False),
    Column("created_at", String(32), nullable=False),
)

password_reset_tokens = Table(
    "password_reset_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(64), nullable=False, unique=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)

roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("description", Text),
)

permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("description", Text),
)

user_roles = Table(
    "user_roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False),
    UniqueConstraint("user_id", "role_id"),
)

role_permissions = Table(
    "role_permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False),
    Column("permission_id", Integer, ForeignKey("permissions.id"), nullable=False),
    UniqueConstraint("role_id", "permission_id"),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(db_url: str) -> Engine:
    """Create the shared Engine and make sure every table exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine


def now_iso(now: datetime | None = None) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records. Users are created and updated, never deleted.

    Usage:
        store = UserStore(create_db_engine("sqlite:///:memory:"))
        user_id = store.create_user(User(email="a@x.com", username="alice", hashed_password=h))
        user = store.get_by_username_or_email("alice")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises DuplicateKeyError("email") or DuplicateKeyError("username")
        when either unique field is already taken. A concurrent insert that
        wins the race is reported the same way.
        """
        stamp = now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    users.insert().values(
                        email=user.email,
                        username=user.username,
                        hashed_password=user.hashed_password,
                        display_name=user.display_name,
                        provider=user.provider,
                        provider_id=user.provider_id,
                        bio=user.bio,
                        profile_image=user.profile_image,
                        created_at=stamp,
                        updated_at=stamp,
                    )
                )
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise DuplicateKeyError(self._conflicting_field(user)) from exc

    def _conflicting_field(self, user: User) -> str:
        if self.get_by_email(user.email) is not None:
            return "email"
        return "username"

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username_or_email(self, username_or_email: str, username: str | None = None) -> User | None:
        """Return the first user whose email matches the first argument or whose username matches.

        With one argument the same value is tried against both columns (login).
        With two, the first is an email and the second a username (registration
        conflict check).
        """
        username = username if username is not None else username_or_email
        with self.engine.connect() as conn:
            row = conn.execute(
                users.select()
                .where((users.c.email == username_or_email) | (users.c.username == username))
                .order_by(users.c.id)
                .limit(1)
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_password(self, user_id: int, hashed_password: str, conn: Connection | None = None) -> bool:
        """Store a new password hash. Returns False if user_id was not found.

        Pass conn to run inside a caller's transaction (password reset).
        """
        stmt = users.update().where(users.c.id == user_id).values(hashed_password=hashed_password, updated_at=now_iso())
        if conn is not None:
            return conn.execute(stmt).rowcount > 0
        with self.engine.begin() as own_conn:
            return own_conn.execute(stmt).rowcount > 0

    def update_profile(self, user_id: int, **fields) -> bool:
        """Update profile fields. Accepted: display_name, bio, profile_image.

        Unknown keys raise ValueError rather than being silently ignored.
        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - {"display_name", "bio", "profile_image"}
        if unknown:
            raise ValueError(f"Unknown profile fields: {unknown!r}")
        with self.engine.begin() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(updated_at=now_iso(), **fields))
        return result.rowcount > 0

    def link_provider(self, user_id: int, provider: str, provider_id: str) -> None:
        """Associate an external identity with an existing user record."""
        with self.engine.begin() as conn:
            conn.execute(
                users.update()
                .where(users.c.id == user_id)
                .values(provider=provider, provider_id=provider_id, updated_at=now_iso())
            )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        hashed_password=row.hashed_password,
        display_name=row.display_name,
        provider=row.provider,
        provider_id=row.provider_id,
        bio=row.bio,
        profile_image=row.profile_image,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
