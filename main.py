#!/usr/bin/env python3
"""
authgate -- admin command line.

Usage:
  python main.py seed
  python main.py create-admin --email admin@example.com --username admin --password 'S3cure-pass'

Commands:
  seed          Create the default roles (admin, moderator, user) and their
                permissions. Safe to run repeatedly.
  create-admin  Seed, create the user if it does not exist yet, and give it
                the admin role.

Configuration comes from the environment / .env file (see core/config.py),
the same as the API server. DATABASE_URL selects the database.
"""

import argparse
from typing import Optional

from auth.errors import ConflictError, DuplicateKeyError
from auth.models import User
from auth.rbac import RoleStore
from auth.seed import seed_roles_and_permissions
from auth.store import UserStore, create_db_engine
from auth.tokens import PasswordHasher
from core.config import Settings, get_settings


def seed(settings: Settings) -> None:
    engine = create_db_engine(settings.database_url)
    try:
        seed_roles_and_permissions(RoleStore(engine))
    finally:
        engine.dispose()
    print("  Default roles and permissions are in place.")


def create_admin(settings: Settings, email: str, username: str, password: str) -> int:
    """Ensure an admin account exists. Returns the process exit code."""
    if len(password) < settings.password_min_length:
        print(f"  [!] Password must be at least {settings.password_min_length} characters.")
        return 1

    engine = create_db_engine(settings.database_url)
    try:
        role_store = RoleStore(engine)
        user_store = UserStore(engine)
        seed_roles_and_permissions(role_store)

        user = user_store.get_by_email(email)
        if user is None:
            hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
            try:
                user_id = user_store.create_user(
                    User(email=email, username=username, hashed_password=hasher.hash(password))
                )
            except DuplicateKeyError as exc:
                print(f"  [!] A different user already has that {exc.field}.")
                return 1
            print(f"  Created user {username} (id {user_id}).")
        else:
            user_id = user.id
            print(f"  User {user.username} already exists (id {user_id}); password left unchanged.")

        admin_role = role_store.get_role_by_name("admin")
        try:
            role_store.assign_role(user_id, admin_role.id)
        except ConflictError:
            print("  User already has the admin role.")
        else:
            print("  Admin role assigned.")
    finally:
        engine.dispose()
    return 0


def main(argv: Optional[list[str]] = None, settings: Optional[Settings] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="Administrative tasks for the authgate identity service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed
  python main.py create-admin --email admin@example.com --username admin --password 'S3cure-pass'
  DATABASE_URL=sqlite:////var/lib/authgate/authgate.db python main.py seed
        """,
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    subparsers.add_parser("seed", help="Create default roles and permissions")

    admin_parser = subparsers.add_parser("create-admin", help="Create a user and grant the admin role")
    admin_parser.add_argument("--email", required=True, help="Email address of the admin account")
    admin_parser.add_argument("--username", required=True, help="Username of the admin account")
    admin_parser.add_argument("--password", required=True, help="Password for a newly created account")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    settings = settings or get_settings()
    if args.command == "seed":
        seed(settings)
        return 0
    return create_admin(settings, args.email, args.username, args.password)


if __name__ == "__main__":
    raise SystemExit(main())
