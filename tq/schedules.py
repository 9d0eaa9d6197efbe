"""Schedule storage operations."""

from __future__ import annotations

from typing import Any

from tq.database import NotFoundError, order_limit
from tq.models import SCHEDULE_COLUMNS, Schedule


class SchedulesMixin:
    """Schedule queries and commands for a Database."""

    def insert_schedule(self, task_id: int, instruction: str, title: str, cron_expr: str, metadata: str) -> int:
        """Create an enabled schedule and return its id."""
        cursor = self.execute(
            "INSERT INTO schedules (task_id, instruction, title, cron_expr, metadata) VALUES (?, ?, ?, ?, ?)",
            (task_id, instruction, title, cron_expr, metadata),
        )
        schedule_id = cursor.lastrowid
        self._emit_event(
            "schedule",
            schedule_id,
            "schedule.created",
            {"task_id": task_id, "instruction": instruction, "cron_expr": cron_expr},
        )
        return schedule_id

    def list_schedules(self, limit: int = 0) -> list[Schedule]:
        """List schedules newest first, at most ``limit`` if positive."""
        query, params = order_limit(f"SELECT {SCHEDULE_COLUMNS} FROM schedules", [], limit)
        return [Schedule.from_row(row) for row in self.execute(query, params)]

    def get_schedule(self, schedule_id: int) -> Schedule:
        """Return the schedule with ``schedule_id``; raise NotFoundError if absent."""
        row = self.query_one(f"SELECT {SCHEDULE_COLUMNS} FROM schedules WHERE id = ?", (schedule_id,))
        return Schedule.from_row(row)

    def update_schedule_enabled(self, schedule_id: int, enabled: bool) -> None:
        self.execute("UPDATE schedules SET enabled = ? WHERE id = ?", (int(bool(enabled)), schedule_id))

    def update_schedule_last_run_at(self, schedule_id: int, timestamp: str) -> None:
        """Record when the schedule last produced an action."""
        self.execute("UPDATE schedules SET last_run_at = ? WHERE id = ?", (timestamp, schedule_id))
        self._emit_event("schedule", schedule_id, "schedule.ran", {"last_run_at": timestamp})

    def update_schedule(
        self,
        schedule_id: int,
        *,
        title: str | None = None,
        cron_expr: str | None = None,
        metadata: str | None = None,
        instruction: str | None = None,
        task_id: int | None = None,
    ) -> None:
        """Change the given fields; raise ValueError if none are given."""
        fields = {
            "title": title,
            "cron_expr": cron_expr,
            "metadata": metadata,
            "instruction": instruction,
            "task_id": task_id,
        }
        changes = {column: value for column, value in fields.items() if value is not None}
        if not changes:
            raise ValueError("no fields to update")
        assignments = ", ".join(f"{column} = ?" for column in changes)
        params: list[Any] = [*changes.values(), schedule_id]
        self.execute(f"UPDATE schedules SET {assignments} WHERE id = ?", params)

    def delete_schedule(self, schedule_id: int) -> None:
        """Delete a schedule; raise NotFoundError if it does not exist."""
        try:
            (task_id,) = self.query_one("SELECT task_id FROM schedules WHERE id = ?", (schedule_id,))
        except NotFoundError as exc:
            raise NotFoundError(f"get schedule task_id: schedule {schedule_id} not found") from exc
        self.execute("DELETE FROM schedules WHERE id = ?", (schedule_id,))
        self._emit_event("schedule", schedule_id, "schedule.deleted", {"task_id": task_id})