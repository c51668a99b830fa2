#  Agent Watch - Database Connection
#
#  Async SQLite manager with WAL mode and transaction support.
#  Production uses Alembic migrations; tests use inline schema for speed.
#  sqlite3 errors are surfaced as StoreError so callers never see driver types.
#
#  Depends on: db/migrate.py (optional, for production migrations), exceptions.py
#  Used by:    container.py (via DI), services/*, tests

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from agentwatch.exceptions import StoreError

logger = logging.getLogger("agentwatch.db")


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS agent_activities (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL,
    activity TEXT NOT NULL,
    metadata_json TEXT DEFAULT '{}',
    timestamp REAL NOT NULL,
    duration REAL,
    project_path TEXT,
    tags_json TEXT DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS agent_metrics (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL,
    activity_id TEXT REFERENCES agent_activities(id) ON DELETE CASCADE,
    metric_type TEXT NOT NULL,
    value REAL NOT NULL,
    timestamp REAL NOT NULL,
    context_json TEXT DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS task_plans (
    id TEXT PRIMARY KEY,
    description TEXT NOT NULL,
    priority TEXT NOT NULL DEFAULT 'medium',
    status TEXT NOT NULL DEFAULT 'pending',
    assigned_agent TEXT,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    estimated_duration REAL,
    actual_duration REAL,
    progress INTEGER NOT NULL DEFAULT 0,
    dependencies_json TEXT DEFAULT '[]',
    milestones_json TEXT DEFAULT '[]',
    completed_milestones_json TEXT DEFAULT '[]',
    notes TEXT
);

CREATE TABLE IF NOT EXISTS code_changes (
    id TEXT PRIMARY KEY,
    project_path TEXT NOT NULL,
    file_path TEXT NOT NULL,
    change_type TEXT NOT NULL,
    impact_level TEXT NOT NULL,
    risk_score REAL NOT NULL DEFAULT 0.0,
    agent_id TEXT,
    timestamp REAL NOT NULL,
    file_hash TEXT,
    lines_added INTEGER NOT NULL DEFAULT 0,
    lines_deleted INTEGER NOT NULL DEFAULT 0,
    size_before INTEGER NOT NULL DEFAULT 0,
    size_after INTEGER NOT NULL DEFAULT 0,
    git_commit TEXT,
    change_reason TEXT,
    source TEXT NOT NULL DEFAULT 'agent',
    metadata_json TEXT DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS file_dependencies (
    id TEXT PRIMARY KEY,
    change_id TEXT REFERENCES code_changes(id) ON DELETE CASCADE,
    source_file TEXT NOT NULL,
    target_file TEXT NOT NULL,
    dependency_type TEXT NOT NULL,
    project_path TEXT NOT NULL,
    timestamp REAL NOT NULL,
    superseded_at REAL
);

CREATE TABLE IF NOT EXISTS impact_analysis (
    id TEXT PRIMARY KEY,
    change_id TEXT NOT NULL REFERENCES code_changes(id) ON DELETE CASCADE,
    analysis_type TEXT NOT NULL DEFAULT 'automated',
    risk_score REAL NOT NULL,
    affected_components_json TEXT DEFAULT '[]',
    recommendations_json TEXT DEFAULT '[]',
    timestamp REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS monitoring_sessions (
    id TEXT PRIMARY KEY,
    project_path TEXT NOT NULL,
    watch_patterns_json TEXT NOT NULL,
    notifications_json TEXT DEFAULT '{}',
    thresholds_json TEXT DEFAULT '{}',
    status TEXT NOT NULL DEFAULT 'active',
    created_at REAL NOT NULL,
    last_activity REAL,
    events_processed INTEGER NOT NULL DEFAULT 0,
    events_dropped INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS notification_channels (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    configuration_json TEXT NOT NULL DEFAULT '{}',
    enabled INTEGER NOT NULL DEFAULT 1,
    created_at REAL NOT NULL,
    last_used REAL
);

CREATE TABLE IF NOT EXISTS notification_rules (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT DEFAULT '',
    conditions_json TEXT NOT NULL DEFAULT '{}',
    actions_json TEXT NOT NULL DEFAULT '[]',
    priority TEXT NOT NULL DEFAULT 'medium',
    enabled INTEGER NOT NULL DEFAULT 1,
    created_at REAL NOT NULL,
    last_triggered REAL,
    trigger_count INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS sent_notifications (
    id TEXT PRIMARY KEY,
    rule_id TEXT NOT NULL,
    channel_id TEXT NOT NULL,
    event_data_json TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'sent',
    sent_at REAL NOT NULL,
    error_message TEXT
);

CREATE TABLE IF NOT EXISTS alert_templates (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    subject_template TEXT NOT NULL,
    body_template TEXT NOT NULL,
    format TEXT NOT NULL DEFAULT 'text',
    variables_json TEXT DEFAULT '[]',
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS generated_reports (
    id TEXT PRIMARY KEY,
    report_type TEXT NOT NULL,
    project_path TEXT,
    format TEXT NOT NULL,
    window_start REAL NOT NULL,
    window_end REAL NOT NULL,
    storage_location TEXT,
    summary_text TEXT,
    metadata_json TEXT DEFAULT '{}',
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS report_templates (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT DEFAULT '',
    template_content TEXT NOT NULL,
    format TEXT NOT NULL DEFAULT 'markdown',
    variables_json TEXT DEFAULT '[]',
    created_at REAL NOT NULL
);

-- Indexes
CREATE INDEX IF NOT EXISTS idx_activities_agent ON agent_activities(agent_id);
CREATE INDEX IF NOT EXISTS idx_activities_timestamp ON agent_activities(timestamp);
CREATE INDEX IF NOT EXISTS idx_activities_project ON agent_activities(project_path);
CREATE INDEX IF NOT EXISTS idx_metrics_agent_type ON agent_metrics(agent_id, metric_type);
CREATE INDEX IF NOT EXISTS idx_metrics_timestamp ON agent_metrics(timestamp);
CREATE INDEX IF NOT EXISTS idx_tasks_status ON task_plans(status);
CREATE INDEX IF NOT EXISTS idx_changes_project_file ON code_changes(project_path, file_path);
CREATE INDEX IF NOT EXISTS idx_changes_timestamp ON code_changes(timestamp);
CREATE INDEX IF NOT EXISTS idx_deps_target ON file_dependencies(project_path, target_file);
CREATE INDEX IF NOT EXISTS idx_deps_source ON file_dependencies(project_path, source_file);
CREATE INDEX IF NOT EXISTS idx_impact_change ON impact_analysis(change_id);
CREATE INDEX IF NOT EXISTS idx_sessions_status ON monitoring_sessions(status);
CREATE INDEX IF NOT EXISTS idx_sent_channel ON sent_notifications(channel_id);
CREATE INDEX IF NOT EXISTS idx_sent_rule ON sent_notifications(rule_id);
CREATE INDEX IF NOT EXISTS idx_reports_created ON generated_reports(created_at);
"""


# ---------------------------------------------------------------------------
# Database class
# ---------------------------------------------------------------------------

class Database:
    """Async SQLite database with WAL mode.

    Uses aiosqlite which runs SQLite on a dedicated background thread,
    so no threading.Lock is needed on our side.
    """

    def __init__(self):
        self._conn: aiosqlite.Connection | None = None
        self._path: Path | None = None
        self._in_transaction: bool = False
        self._tx_lock: asyncio.Lock = asyncio.Lock()
        self._tx_owner: asyncio.Task | None = None

    async def init(self, db_path: str | Path, *, run_migrations: bool = False):
        """Open or create the database and apply schema.

        Args:
            db_path: Path to the SQLite database file.
            run_migrations: If True, use Alembic migrations (production).
                            If False, use inline schema (tests, faster).
        """
        self._path = Path(db_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

        if run_migrations:
            from agentwatch.db.migrate import run_migrations as _migrate
            await asyncio.to_thread(_migrate, self._path)

        try:
            self._conn = await aiosqlite.connect(str(self._path))
            self._conn.row_factory = sqlite3.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA foreign_keys=ON")

            if not run_migrations:
                await self._conn.executescript(_SCHEMA)
                await self._conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open database at {self._path}: {e}") from e

        logger.info("Database initialized at %s", self._path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call await db.init() first.")
        return self._conn

    @asynccontextmanager
    async def transaction(self):
        """Atomic read+write transaction. Rolls back on exception.

        Uses BEGIN IMMEDIATE to acquire a write lock upfront, preventing
        other writers from interleaving. An asyncio.Lock serializes
        concurrent coroutines sharing the same connection, so a second
        coroutine waits until the first transaction commits/rolls back.

        Safe to nest within the same task: if the current asyncio task
        already owns a transaction, inner calls are no-ops. Different
        tasks wait on the lock.
        """
        current = asyncio.current_task()
        if self._owns_transaction():
            yield self.conn
            return

        async with self._tx_lock:
            self._in_transaction = True
            self._tx_owner = current
            try:
                await self.conn.execute("BEGIN IMMEDIATE")
                try:
                    yield self.conn
                    await self.conn.commit()
                except Exception:
                    await self.conn.rollback()
                    raise
            except sqlite3.Error as e:
                raise StoreError(f"Transaction failed: {e}") from e
            finally:
                self._in_transaction = False
                self._tx_owner = None

    def _owns_transaction(self) -> bool:
        return self._in_transaction and self._tx_owner is asyncio.current_task()

    async def execute_write(self, sql: str, params: tuple | list = ()) -> aiosqlite.Cursor:
        """Execute a write query and commit.

        Inside a transaction() block of the current task, participates in the
        outer transaction (no auto-commit). Otherwise waits for any open
        transaction to finish, then auto-commits.
        """
        try:
            if self._owns_transaction():
                return await self.conn.execute(sql, params)
            async with self._tx_lock:
                cursor = await self.conn.execute(sql, params)
                await self.conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Write failed: {e}") from e
        return cursor

    async def fetchone(self, sql: str, params: tuple | list = ()) -> sqlite3.Row | None:
        try:
            cursor = await self.conn.execute(sql, params)
            return await cursor.fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Query failed: {e}") from e

    async def fetchall(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        try:
            cursor = await self.conn.execute(sql, params)
            return await cursor.fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Query failed: {e}") from e

    async def close(self):
        """Close the database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None
