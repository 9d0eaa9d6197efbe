"""Task storage operations."""

from __future__ import annotations

import json
from typing import Any, Mapping

from tq.database import NotFoundError, order_limit
from tq.models import TASK_COLUMNS, Task, TaskStatus, dump_json


class TasksMixin:
    """Task queries and commands for a Database."""

    def insert_task(self, project_id: int, title: str, metadata: str, work_dir: str = "") -> int:
        """Create an open task and return its id."""
        cursor = self.execute(
            "INSERT INTO tasks (project_id, title, metadata, work_dir) VALUES (?, ?, ?, ?)",
            (project_id, title, metadata, work_dir),
        )
        task_id = cursor.lastrowid
        self._emit_event("task", task_id, "task.created", {"project_id": project_id, "title": title})
        return task_id

    def _task_field(self, task_id: int, column: str) -> Any:
        try:
            (value,) = self.query_one(f"SELECT {column} FROM tasks WHERE id = ?", (task_id,))
        except NotFoundError as exc:
            raise NotFoundError(f"get current {column}: task {task_id} not found") from exc
        return value

    def update_task(self, task_id: int, status: str, reason: str = "") -> None:
        """Set a task's status, recording the reason in its event."""
        previous = self._task_field(task_id, "status")
        self.execute(
            "UPDATE tasks SET status = ?, updated_at = datetime('now') WHERE id = ?", (str(status), task_id)
        )
        self._emit_event(
            "task", task_id, "task.status_changed", {"from": previous, "to": str(status), "reason": reason}
        )

    def update_task_project(self, task_id: int, project_id: int) -> None:
        """Move a task to another project."""
        previous = self._task_field(task_id, "project_id")
        self.execute(
            "UPDATE tasks SET project_id = ?, updated_at = datetime('now') WHERE id = ?", (project_id, task_id)
        )
        self._emit_event("task", task_id, "task.project_changed", {"from": previous, "to": project_id})

    def update_task_work_dir(self, task_id: int, work_dir: str) -> None:
        """Change a task's working directory."""
        previous = self._task_field(task_id, "work_dir")
        self.execute(
            "UPDATE tasks SET work_dir = ?, updated_at = datetime('now') WHERE id = ?", (work_dir, task_id)
        )
        self._emit_event("task", task_id, "task.workdir_changed", {"from": previous, "to": work_dir})

    def merge_task_metadata(self, task_id: int, updates: Mapping[str, Any]) -> None:
        """Merge ``updates`` into a task's JSON metadata, overwriting existing keys."""
        (existing,) = self.query_one("SELECT metadata FROM tasks WHERE id = ?", (task_id,))
        merged: dict[str, Any] = {}
        if existing and existing != "{}":
            try:
                merged = json.loads(existing)
            except json.JSONDecodeError as exc:
                raise ValueError(f"parse existing metadata: {exc}") from exc
        merged.update(updates)
        self.execute(
            "UPDATE tasks SET metadata = ?, updated_at = datetime('now') WHERE id = ?",
            (dump_json(merged), task_id),
        )
        self._emit_event("task", task_id, "task.metadata_merged", {"keys_updated": list(updates)})

    def get_task(self, task_id: int) -> Task:
        """Return the task with ``task_id``; raise NotFoundError if absent."""
        return Task.from_row(self.query_one(f"SELECT {TASK_COLUMNS} FROM tasks WHERE id = ?", (task_id,)))

    def list_tasks(self, project_id: int = 0, status: str = "", limit: int = 0) -> list[Task]:
        """List tasks newest first, optionally filtered by project and status."""
        query = f"SELECT {TASK_COLUMNS} FROM tasks WHERE 1=1"
        params: list[Any] = []
        if project_id:
            query += " AND project_id = ?"
            params.append(project_id)
        if status:
            query += " AND status = ?"
            params.append(str(status))
        query, params = order_limit(query, params, limit)
        return [Task.from_row(row) for row in self.execute(query, params)]

    def list_tasks_by_project(self, project_id: int) -> list[Task]:
        return self.list_tasks(project_id, "", 0)

    def list_tasks_by_status(self, status: str) -> list[Task]:
        return self.list_tasks(0, status, 0)

    def get_or_create_triage_task(self, project_id: int) -> int:
        return self.ensure_task(project_id, "triage")

    def ensure_task(self, project_id: int, title: str) -> int:
        """Return the oldest open task with ``title`` in the project, creating one if needed."""
        row = self.execute(
            "SELECT id FROM tasks WHERE project_id = ? AND title = ? AND status = ? ORDER BY id ASC LIMIT 1",
            (project_id, title, TaskStatus.OPEN.value),
        ).fetchone()
        if row is not None:
            return row[0]
        return self.insert_task(project_id, title, "{}", "")