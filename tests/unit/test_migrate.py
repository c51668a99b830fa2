#  Agent Watch - Migration Runner Tests
#
#  Fresh databases get the full Alembic history; databases created from the
#  inline schema are stamped at 001 instead of re-created.
#
#  Depends on: agentwatch/db/migrate.py, agentwatch/db/connection.py
#  Used by:    pytest

import logging
import sqlite3

import pytest

from agentwatch.db.connection import Database
from agentwatch.db.migrate import run_migrations


def _version(db_path) -> str | None:
    conn = sqlite3.connect(str(db_path))
    try:
        row = conn.execute("SELECT version_num FROM alembic_version").fetchone()
        return row[0] if row else None
    finally:
        conn.close()


def _tables(db_path) -> set[str]:
    conn = sqlite3.connect(str(db_path))
    try:
        return {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    finally:
        conn.close()


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """alembic.ini applies its own logging config; undo it after each test."""
    root = logging.getLogger()
    level, handlers = root.level, list(root.handlers)
    yield
    root.setLevel(level)
    root.handlers[:] = handlers


class TestRunMigrations:
    def test_fresh_database(self, tmp_path):
        db_path = tmp_path / "fresh.db"
        run_migrations(db_path)
        assert _version(db_path) == "001"
        assert {"agent_activities", "code_changes", "notification_rules", "generated_reports"} <= _tables(db_path)

    async def test_inline_schema_database_is_stamped(self, tmp_path):
        db_path = tmp_path / "inline.db"
        db = Database()
        await db.init(db_path)
        await db.execute_write(
            "INSERT INTO agent_activities (id, agent_id, activity, timestamp) VALUES ('a1', 'x', 'kept', 1.0)"
        )
        await db.close()

        run_migrations(db_path)

        assert _version(db_path) == "001"
        conn = sqlite3.connect(str(db_path))
        try:
            assert conn.execute("SELECT activity FROM agent_activities WHERE id = 'a1'").fetchone() == ("kept",)
        finally:
            conn.close()

    def test_rerun_is_noop(self, tmp_path):
        db_path = tmp_path / "twice.db"
        run_migrations(db_path)
        run_migrations(db_path)
        assert _version(db_path) == "001"
