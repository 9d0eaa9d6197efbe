"""SQLite storage: connection, schema migration, events and worker heartbeat."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, Sequence

from tq.models import EVENT_COLUMNS, Event, dump_json
from tq.timeutil import parse_timestamp

log = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    work_dir TEXT NOT NULL DEFAULT '',
    metadata TEXT NOT NULL DEFAULT '{}',
    dispatch_enabled INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL REFERENCES projects(id),
    title TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    status TEXT NOT NULL DEFAULT 'open',
    work_dir TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT
);
CREATE TABLE IF NOT EXISTS actions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL DEFAULT '',
    task_id INTEGER REFERENCES tasks(id),
    metadata TEXT NOT NULL DEFAULT '{}',
    status TEXT NOT NULL DEFAULT 'pending',
    result TEXT,
    session_id TEXT,
    tmux_pane TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    started_at TEXT,
    completed_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_actions_dispatch ON actions(status, id ASC);
CREATE TABLE IF NOT EXISTS schedules (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id INTEGER NOT NULL REFERENCES tasks(id),
    instruction TEXT NOT NULL DEFAULT '',
    title TEXT NOT NULL DEFAULT '',
    cron_expr TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    enabled INTEGER NOT NULL DEFAULT 1,
    last_run_at TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_type TEXT NOT NULL,
    entity_id INTEGER NOT NULL,
    event_type TEXT NOT NULL,
    payload TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE TABLE IF NOT EXISTS worker_heartbeats (
    id INTEGER PRIMARY KEY,
    last_heartbeat TEXT NOT NULL
);
"""


class NotFoundError(LookupError):
    """Raised when a queried row does not exist."""


def order_limit(query: str, params: list[Any], limit: int) -> tuple[str, list[Any]]:
    """Append newest-first ordering and an optional positive limit."""
    query += " ORDER BY id DESC"
    if limit > 0:
        query += " LIMIT ?"
        params = [*params, limit]
    return query, params


class Database:
    """A SQLite connection holding the task queue."""

    def __init__(self, dsn: str = ":memory:") -> None:
        self._conn = sqlite3.connect(dsn, isolation_level=None, check_same_thread=False)
        try:
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
        except sqlite3.Error:
            self._conn.close()
            raise

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def execute(self, query: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        """Run one statement and return its cursor."""
        return self._conn.execute(query, tuple(params))

    def query_one(self, query: str, params: Sequence[Any] = ()) -> tuple:
        """Return the first row of a query; raise NotFoundError if there is none."""
        row = self.execute(query, params).fetchone()
        if row is None:
            raise NotFoundError("no rows in result set")
        return row

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        self._conn.execute("COMMIT")

    def _has_column(self, table: str, column: str) -> bool:
        return any(row[1] == column for row in self.execute(f"PRAGMA table_info({table})"))

    def migrate(self) -> None:
        """Create the schema and bring older databases up to date."""
        self._conn.executescript(SCHEMA)

        if self._has_column("actions", "priority"):
            self.execute("DROP INDEX IF EXISTS idx_actions_dispatch")
            self.execute("ALTER TABLE actions DROP COLUMN priority")
            self.execute("CREATE INDEX IF NOT EXISTS idx_actions_dispatch ON actions(status, id ASC)")

        if self._has_column("actions", "template_id"):
            self.execute("ALTER TABLE actions RENAME COLUMN template_id TO prompt_id")

        if self._has_column("actions", "prompt_id"):
            self.execute("UPDATE actions SET prompt_id = 'classify-gh-notification' WHERE prompt_id = 'classify'")

        if self._has_column("actions", "source"):
            self.execute("ALTER TABLE actions DROP COLUMN source")

        if not self._has_column("projects", "dispatch_enabled"):
            self.execute("ALTER TABLE projects ADD COLUMN dispatch_enabled INTEGER NOT NULL DEFAULT 1")

        if not self._has_column("tasks", "work_dir"):
            self.execute("ALTER TABLE tasks ADD COLUMN work_dir TEXT NOT NULL DEFAULT ''")
            self.execute(
                "UPDATE tasks SET work_dir = (SELECT work_dir FROM projects WHERE projects.id = tasks.project_id)"
                " WHERE work_dir = ''"
            )

        if not self._has_column("actions", "title"):
            self.execute("ALTER TABLE actions ADD COLUMN title TEXT NOT NULL DEFAULT ''")
            self.execute("UPDATE actions SET title = prompt_id WHERE title = ''")

        self.execute("DELETE FROM actions WHERE task_id IS NULL")

        if self._has_column("actions", "prompt_id"):
            self.execute("ALTER TABLE actions DROP COLUMN prompt_id")

        if self._has_column("schedules", "prompt_id"):
            if not self._has_column("schedules", "instruction"):
                self.execute("ALTER TABLE schedules ADD COLUMN instruction TEXT NOT NULL DEFAULT ''")
            self.execute("UPDATE schedules SET instruction = prompt_id WHERE instruction = ''")
            self.execute("ALTER TABLE schedules DROP COLUMN prompt_id")

        if self._has_column("tasks", "url"):
            self._migrate_task_urls()

    def _migrate_task_urls(self) -> None:
        rows = self.execute(
            "SELECT id, url, metadata FROM tasks WHERE url IS NOT NULL AND url != ''"
        ).fetchall()
        for task_id, url, metadata in rows:
            meta: dict[str, Any] = {}
            if metadata and metadata != "{}":
                try:
                    meta = json.loads(metadata)
                except json.JSONDecodeError as exc:
                    raise ValueError(f"migrate url: parse metadata for task {task_id}: {exc}") from exc
            if "url" in meta:
                continue
            meta["url"] = url
            self.execute("UPDATE tasks SET metadata = ? WHERE id = ?", (dump_json(meta), task_id))
        self.execute("ALTER TABLE tasks DROP COLUMN url")

    def close(self) -> None:
        self._conn.close()

    def _emit_event(self, entity_type: str, entity_id: int, event_type: str, payload: dict[str, Any]) -> None:
        try:
            data = dump_json(payload)
        except (TypeError, ValueError) as exc:
            log.warning("event: marshal payload: %s (event_type=%s)", exc, event_type)
            return
        try:
            self.execute(
                "INSERT INTO events (entity_type, entity_id, event_type, payload) VALUES (?, ?, ?, ?)",
                (entity_type, entity_id, event_type, data),
            )
        except sqlite3.Error as exc:
            log.warning("event: insert: %s (event_type=%s)", exc, event_type)

    def list_events(self, entity_type: str, entity_id: int) -> list[Event]:
        rows = self.execute(
            f"SELECT {EVENT_COLUMNS} FROM events WHERE entity_type = ? AND entity_id = ? ORDER BY id",
            (entity_type, entity_id),
        )
        return [Event.from_row(r) for r in rows]

    def list_recent_events(self, limit: int) -> list[Event]:
        rows = self.execute(f"SELECT {EVENT_COLUMNS} FROM events ORDER BY id DESC LIMIT ?", (limit,))
        return [Event.from_row(r) for r in rows]

    def update_worker_heartbeat(self) -> None:
        self.execute("REPLACE INTO worker_heartbeats(id, last_heartbeat) VALUES(1, datetime('now'))")

    def is_worker_running(self, stale_threshold: timedelta | float) -> bool:
        """Whether a heartbeat was recorded within ``stale_threshold`` (timedelta or seconds)."""
        if not isinstance(stale_threshold, timedelta):
            stale_threshold = timedelta(seconds=stale_threshold)
        try:
            (heartbeat,) = self.query_one("SELECT last_heartbeat FROM worker_heartbeats WHERE id = 1")
        except NotFoundError:
            return False
        try:
            beat = parse_timestamp(heartbeat)
        except ValueError as exc:
            raise ValueError(f"parse worker heartbeat: {exc}") from exc
        return datetime.now(timezone.utc) - beat < stale_threshold