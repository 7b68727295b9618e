"""
auth/seed.py -- Default roles and permissions.

seed_roles_and_permissions() is idempotent: it creates whatever is missing and
leaves existing rows (and any permissions an admin added by hand) alone.
"""

from __future__ import annotations

import logging

from auth.rbac import RoleStore

logger = logging.getLogger("authgate.auth.seed")

DEFAULT_ROLES: dict[str, str] = {
    "admin": "Administrator. Full access to user and role management.",
    "moderator": "Moderator. Read access to users and roles.",
    "user": "Regular user. Basic features only.",
}

DEFAULT_PERMISSIONS: dict[str, str] = {
    "read:users": "View user accounts",
    "create:users": "Create user accounts",
    "update:users": "Update user accounts",
    "delete:users": "Delete user accounts",
    "read:roles": "View roles",
    "assign:roles": "Assign roles to users",
    "create:roles": "Create roles",
    "update:roles": "Update roles",
    "delete:roles": "Delete roles",
}

ROLE_PERMISSIONS: dict[str, list[str]] = {
    "admin": list(DEFAULT_PERMISSIONS),
    "moderator": ["read:users", "read:roles"],
    "user": [],
}


def seed_roles_and_permissions(role_store: RoleStore) -> None:
    for name, description in DEFAULT_PERMISSIONS.items():
        if role_store.get_permission_by_name(name) is None:
            role_store.create_permission(name, description)

    for name, description in DEFAULT_ROLES.items():
        role = role_store.get_role_by_name(name)
        if role is None:
            role_store.create_role(name, description, ROLE_PERMISSIONS[name])
            logger.info("Seeded role %s", name)
        else:
            role_store.add_permissions(role.id, ROLE_PERMISSIONS[name])
