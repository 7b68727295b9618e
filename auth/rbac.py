"""
auth/rbac.py -- Roles, permissions, and allow/deny decisions.

RoleStore is the repository for roles, permissions, and the two join tables
(user_roles, role_permissions). Multi-row changes (create/update/delete role)
run in one transaction so a role is never left half-linked.

Authorizer answers two questions:
  authorize(user_id, required_roles) -- allowed iff required_roles is empty
      or the user holds at least one of them. No user -> UnauthorizedError,
      user without a matching role -> ForbiddenError.
  has_permission(user_id, name) -- true iff any of the user's roles is linked
      to the named permission.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import ConflictError, ForbiddenError, NotFoundError, UnauthorizedError
from auth.models import Permission, Role
from auth.store import permissions, role_permissions, roles, user_roles, users


class RoleStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def list_roles(self, include_permissions: bool = False) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(roles.select().order_by(roles.c.id)).fetchall()
            result = [_row_to_role(r) for r in rows]
            if include_permissions:
                for role in result:
                    role.permissions = _permissions_for_role(conn, role.id)
        return result

    def get_role(self, role_id: int) -> Role:
        """Return the role with its permissions. Raises NotFoundError."""
        with self.engine.connect() as conn:
            row = conn.execute(roles.select().where(roles.c.id == role_id)).fetchone()
            if row is None:
                raise NotFoundError(f"Role {role_id} does not exist.")
            role = _row_to_role(row)
            role.permissions = _permissions_for_role(conn, role.id)
        return role

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(roles.select().where(roles.c.name == name)).fetchone()
            if row is None:
                return None
            role = _row_to_role(row)
            role.permissions = _permissions_for_role(conn, role.id)
        return role

    def create_role(
        self,
        name: str,
        description: str | None = None,
        permission_names: Iterable[str] | None = None,
    ) -> Role:
        """Create a role linked to the named permissions.

        Raises ConflictError if the name is taken and NotFoundError if any
        permission name is unknown (nothing is written in either case).
        """
        if self.get_role_by_name(name) is not None:
            raise ConflictError(f'Role "{name}" already exists.')
        permission_ids = self._resolve_permission_ids(permission_names or [])
        try:
            with self.engine.begin() as conn:
                role_id = conn.execute(roles.insert().values(name=name, description=description)).inserted_primary_key[0]
                _link_permissions(conn, role_id, permission_ids)
        except IntegrityError as exc:
            raise ConflictError(f'Role "{name}" already exists.') from exc
        return self.get_role(role_id)

    def update_role(
        self,
        role_id: int,
        name: str | None = None,
        description: str | None = None,
        permission_names: Iterable[str] | None = None,
    ) -> Role:
        """Rename/redescribe a role. A non-None permission_names replaces the whole set."""
        current = self.get_role(role_id)
        if name is not None and name != current.name and self.get_role_by_name(name) is not None:
            raise ConflictError(f'Role "{name}" already exists.')
        permission_ids = None
        if permission_names is not None:
            permission_ids = self._resolve_permission_ids(permission_names)

        values: dict = {}
        if name is not None:
            values["name"] = name
        if description is not None:
            values["description"] = description
        try:
            with self.engine.begin() as conn:
                if values:
                    conn.execute(roles.update().where(roles.c.id == role_id).values(**values))
                if permission_ids is not None:
                    conn.execute(role_permissions.delete().where(role_permissions.c.role_id == role_id))
                    _link_permissions(conn, role_id, permission_ids)
        except IntegrityError as exc:
            raise ConflictError(f'Role "{name}" already exists.') from exc
        return self.get_role(role_id)

    def delete_role(self, role_id: int) -> None:
        """Delete a role and all of its user and permission links."""
        self.get_role(role_id)
        with self.engine.begin() as conn:
            conn.execute(role_permissions.delete().where(role_permissions.c.role_id == role_id))
            conn.execute(user_roles.delete().where(user_roles.c.role_id == role_id))
            conn.execute(roles.delete().where(roles.c.id == role_id))

    def add_permissions(self, role_id: int, permission_names: Iterable[str]) -> Role:
        """Link extra permissions to a role, skipping ones it already has."""
        role = self.get_role(role_id)
        held = {p.id for p in role.permissions}
        missing = [pid for pid in self._resolve_permission_ids(permission_names) if pid not in held]
        with self.engine.begin() as conn:
            _link_permissions(conn, role_id, missing)
        return self.get_role(role_id)

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def list_permissions(self) -> list[Permission]:
        with self.engine.connect() as conn:
            rows = conn.execute(permissions.select().order_by(permissions.c.id)).fetchall()
        return [_row_to_permission(r) for r in rows]

    def get_permission_by_name(self, name: str) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(permissions.select().where(permissions.c.name == name)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def create_permission(self, name: str, description: str | None = None) -> Permission:
        try:
            with self.engine.begin() as conn:
                pid = conn.execute(
                    permissions.insert().values(name=name, description=description)
                ).inserted_primary_key[0]
        except IntegrityError as exc:
            raise ConflictError(f'Permission "{name}" already exists.') from exc
        return Permission(id=pid, name=name, description=description)

    def _resolve_permission_ids(self, names: Iterable[str]) -> list[int]:
        wanted = list(dict.fromkeys(names))
        if not wanted:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(select(permissions.c.id, permissions.c.name).where(permissions.c.name.in_(wanted))).fetchall()
        found = {r.name: r.id for r in rows}
        missing = [n for n in wanted if n not in found]
        if missing:
            raise NotFoundError(f"Unknown permissions: {', '.join(missing)}")
        return [found[n] for n in wanted]

    # ------------------------------------------------------------------
    # User <-> role
    # ------------------------------------------------------------------

    def assign_role(self, user_id: int, role_id: int) -> None:
        """Give a user a role. NotFoundError for unknown user/role, ConflictError if already held."""
        self._require_user(user_id)
        self.get_role(role_id)
        try:
            with self.engine.begin() as conn:
                conn.execute(user_roles.insert().values(user_id=user_id, role_id=role_id))
        except IntegrityError as exc:
            raise ConflictError(f"User {user_id} already has role {role_id}.") from exc

    def remove_role(self, user_id: int, role_id: int) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                user_roles.delete().where((user_roles.c.user_id == user_id) & (user_roles.c.role_id == role_id))
            )
        if result.rowcount == 0:
            raise NotFoundError(f"User {user_id} does not have role {role_id}.")

    def get_user_roles(self, user_id: int) -> list[Role]:
        """Return the user's roles with permissions. NotFoundError for an unknown user."""
        self._require_user(user_id)
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(roles)
                .join(user_roles, user_roles.c.role_id == roles.c.id)
                .where(user_roles.c.user_id == user_id)
                .order_by(roles.c.id)
            ).fetchall()
            result = [_row_to_role(r) for r in rows]
            for role in result:
                role.permissions = _permissions_for_role(conn, role.id)
        return result

    def get_user_role_names(self, user_id: int) -> list[str]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(roles.c.name)
                .join(user_roles, user_roles.c.role_id == roles.c.id)
                .where(user_roles.c.user_id == user_id)
                .order_by(roles.c.name)
            ).fetchall()
        return [r.name for r in rows]

    def user_has_role(self, user_id: int, role_name: str) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(
                select(func.count())
                .select_from(user_roles.join(roles, user_roles.c.role_id == roles.c.id))
                .where((user_roles.c.user_id == user_id) & (roles.c.name == role_name))
            ).scalar()
        return (count or 0) > 0

    def user_has_permission(self, user_id: int, permission_name: str) -> bool:
        with self.engine.connect() as conn:
            count = conn.execute(
                select(func.count())
                .select_from(
                    user_roles.join(role_permissions, role_permissions.c.role_id == user_roles.c.role_id).join(
                        permissions, permissions.c.id == role_permissions.c.permission_id
                    )
                )
                .where((user_roles.c.user_id == user_id) & (permissions.c.name == permission_name))
            ).scalar()
        return (count or 0) > 0

    def _require_user(self, user_id: int) -> None:
        with self.engine.connect() as conn:
            row = conn.execute(select(users.c.id).where(users.c.id == user_id)).fetchone()
        if row is None:
            raise NotFoundError(f"User {user_id} does not exist.")


class Authorizer:
    """Allow/deny decisions on top of RoleStore."""

    def __init__(self, role_store: RoleStore) -> None:
        self._roles = role_store

    def authorize(self, user_id: int | None, required_roles: Iterable[str]) -> None:
        """Raise unless the user may proceed. An empty required set allows everyone."""
        required = set(required_roles)
        if not required:
            return
        if user_id is None:
            raise UnauthorizedError("Authentication required.")
        held = set(self._roles.get_user_role_names(user_id))
        if not required & held:
            raise ForbiddenError("You do not have permission to perform this action.")

    def is_allowed(self, user_id: int | None, required_roles: Iterable[str]) -> bool:
        try:
            self.authorize(user_id, required_roles)
        except (UnauthorizedError, ForbiddenError):
            return False
        return True

    def has_permission(self, user_id: int, permission_name: str) -> bool:
        return self._roles.user_has_permission(user_id, permission_name)

    def require_permission(self, user_id: int | None, permission_name: str) -> None:
        if user_id is None:
            raise UnauthorizedError("Authentication required.")
        if not self.has_permission(user_id, permission_name):
            raise ForbiddenError("You do not have permission to perform this action.")


# ---------------------------------------------------------------------------
# Helpers and row mappers
# ---------------------------------------------------------------------------


def _link_permissions(conn: Connection, role_id: int, permission_ids: list[int]) -> None:
    if permission_ids:
        conn.execute(
            role_permissions.insert(),
            [{"role_id": role_id, "permission_id": pid} for pid in permission_ids],
        )


def _permissions_for_role(conn: Connection, role_id: int) -> list[Permission]:
    rows = conn.execute(
        select(permissions)
        .join(role_permissions, role_permissions.c.permission_id == permissions.c.id)
        .where(role_permissions.c.role_id == role_id)
        .order_by(permissions.c.id)
    ).fetchall()
    return [_row_to_permission(r) for r in rows]


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name, description=row.description)


def _row_to_permission(row) -> Permission:
    return Permission(id=row.id, name=row.name, description=row.description)
