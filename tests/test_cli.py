"""
tests/test_cli.py -- The admin command line (main.py).

Each test points DATABASE_URL at a throwaway SQLite file so the CLI opens and
disposes its own engine the way it does in production.
"""

from __future__ import annotations

import pytest

import main
from auth.rbac import RoleStore
from auth.store import UserStore, create_db_engine


@pytest.fixture
def cli_settings(settings_factory, tmp_path):
    return settings_factory(database_url=f"sqlite:///{tmp_path / 'cli.db'}")


def _stores(settings):
    engine = create_db_engine(settings.database_url)
    return engine, UserStore(engine), RoleStore(engine)


class TestSeedCommand:
    def test_seed_twice(self, cli_settings) -> None:
        assert main.main(["seed"], settings=cli_settings) == 0
        assert main.main(["seed"], settings=cli_settings) == 0
        engine, _, roles = _stores(cli_settings)
        try:
            assert {r.name for r in roles.list_roles()} == {"admin", "moderator", "user"}
        finally:
            engine.dispose()

    def test_no_command_prints_help(self, cli_settings, capsys) -> None:
        assert main.main([], settings=cli_settings) == 1
        assert "create-admin" in capsys.readouterr().out


class TestCreateAdmin:
    ARGS = ["create-admin", "--email", "root@example.com", "--username", "root", "--password", "RootPassw0rd"]

    def test_creates_user_with_admin_role(self, cli_settings, capsys) -> None:
        assert main.main(self.ARGS, settings=cli_settings) == 0
        assert "Admin role assigned." in capsys.readouterr().out

        engine, users, roles = _stores(cli_settings)
        try:
            user = users.get_by_email("root@example.com")
            assert user is not None
            assert roles.user_has_role(user.id, "admin")
        finally:
            engine.dispose()

    def test_rerun_is_harmless(self, cli_settings, capsys) -> None:
        main.main(self.ARGS, settings=cli_settings)
        capsys.readouterr()
        assert main.main(self.ARGS, settings=cli_settings) == 0
        out = capsys.readouterr().out
        assert "already exists" in out
        assert "already has the admin role" in out

    def test_short_password_rejected(self, cli_settings, capsys) -> None:
        args = ["create-admin", "--email", "root@example.com", "--username", "root", "--password", "short"]
        assert main.main(args, settings=cli_settings) == 1
        assert "at least 8" in capsys.readouterr().out

    def test_username_taken_by_other_account(self, cli_settings, capsys) -> None:
        main.main(self.ARGS, settings=cli_settings)
        args = ["create-admin", "--email", "other@example.com", "--username", "root", "--password", "RootPassw0rd"]
        assert main.main(args, settings=cli_settings) == 1
        assert "already has that username" in capsys.readouterr().out
