"""Action storage operations: queueing, claiming and finishing actions."""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping

from tq.database import NotFoundError, order_limit
from tq.models import (
    ACTION_COLUMNS,
    ACTIVE_ACTION_STATUSES,
    VALID_ACTION_STATUSES,
    Action,
    ActionStatus,
    dump_json,
)

_PREFIXED_COLUMNS = ", ".join(f"a.{c.strip()}" for c in ACTION_COLUMNS.split(","))


class ActionsMixin:
    """Action queries and commands for a Database."""

    def insert_action(self, title: str, task_id: int, metadata: str, status: str) -> int:
        """Queue an action under a task and return its id."""
        if status not in VALID_ACTION_STATUSES:
            raise ValueError(
                f'invalid action status "{status}": must be one of '
                "pending, running, dispatched, done, failed, cancelled"
            )
        status = str(status)
        cursor = self.execute(
            "INSERT INTO actions (title, task_id, metadata, status) VALUES (?, ?, ?, ?)",
            (title, task_id, metadata, status),
        )
        action_id = cursor.lastrowid
        self._emit_event(
            "action", action_id, "action.created", {"status": status, "task_id": task_id, "title": title}
        )
        return action_id

    def has_active_action_with_meta(self, task_id: int, meta_key: str, meta_value: str) -> bool:
        """Whether an unfinished action of the task has ``metadata[meta_key] == meta_value``."""
        (count,) = self.query_one(
            "SELECT COUNT(*) FROM actions WHERE task_id = ? AND status IN (?, ?, ?)"
            " AND json_extract(metadata, '$.' || ?) = ?",
            (task_id, *(str(s) for s in ACTIVE_ACTION_STATUSES), meta_key, meta_value),
        )
        return count > 0

    def next_pending(self) -> Action | None:
        """Claim the oldest pending action of a dispatch-enabled project, or return None."""
        with self._transaction():
            row = self.execute(
                f"SELECT {_PREFIXED_COLUMNS} FROM actions a"
                " INNER JOIN tasks t ON a.task_id = t.id"
                " INNER JOIN projects p ON t.project_id = p.id"
                " WHERE a.status = ? AND p.dispatch_enabled = 1"
                " ORDER BY a.id ASC LIMIT 1",
                (ActionStatus.PENDING.value,),
            ).fetchone()
            if row is None:
                return None
            action = Action.from_row(row)
            self._mark_started(action.id)
        self._emit_claimed(action.id)
        action.status = ActionStatus.RUNNING.value
        return action

    def claim_pending(self, action_id: int) -> Action:
        """Claim one specific pending action and mark it running."""
        with self._transaction():
            row = self.execute(
                f"SELECT {ACTION_COLUMNS} FROM actions WHERE id = ?", (action_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError(f"action #{action_id} not found")
            action = Action.from_row(row)
            if action.status != ActionStatus.PENDING:
                raise ValueError(f"action #{action_id} is not pending (current: {action.status})")
            self._mark_started(action_id)
        self._emit_claimed(action_id)
        action.status = ActionStatus.RUNNING.value
        return action

    def _mark_started(self, action_id: int) -> None:
        self.execute(
            "UPDATE actions SET status = ?, started_at = datetime('now') WHERE id = ?",
            (ActionStatus.RUNNING.value, action_id),
        )

    def _emit_claimed(self, action_id: int) -> None:
        self._emit_event(
            "action",
            action_id,
            "action.claimed",
            {"from": ActionStatus.PENDING.value, "to": ActionStatus.RUNNING.value},
        )

    def _current_status(self, action_id: int) -> str:
        try:
            (status,) = self.query_one("SELECT status FROM actions WHERE id = ?", (action_id,))
        except NotFoundError as exc:
            raise NotFoundError(f"get current status: action #{action_id} not found") from exc
        return status

    def _mark_terminal(self, action_id: int, status: ActionStatus, result: str) -> None:
        previous = self._current_status(action_id)
        self.execute(
            "UPDATE actions SET status = ?, result = ?, completed_at = datetime('now') WHERE id = ?",
            (status.value, result, action_id),
        )
        self._emit_event(
            "action",
            action_id,
            "action.status_changed",
            {"from": previous, "to": status.value, "result": result},
        )

    def mark_done(self, action_id: int, result: str) -> None:
        self._mark_terminal(action_id, ActionStatus.DONE, result)

    def mark_failed(self, action_id: int, result: str) -> None:
        self._mark_terminal(action_id, ActionStatus.FAILED, result)

    def mark_cancelled(self, action_id: int, result: str) -> None:
        self._mark_terminal(action_id, ActionStatus.CANCELLED, result)

    def mark_dispatched(self, action_id: int) -> None:
        """Move a running action to dispatched; raise ValueError if it is not running."""
        cursor = self.execute(
            "UPDATE actions SET status = ? WHERE id = ? AND status = ?",
            (ActionStatus.DISPATCHED.value, action_id, ActionStatus.RUNNING.value),
        )
        if cursor.rowcount == 0:
            raise ValueError(f"action #{action_id} is not running, cannot mark as dispatched")
        self._emit_event(
            "action",
            action_id,
            "action.status_changed",
            {"from": ActionStatus.RUNNING.value, "to": ActionStatus.DISPATCHED.value},
        )

    def list_actions(self, status: str = "", task_id: int | None = None, limit: int = 0) -> list[Action]:
        """List actions newest first, optionally filtered by status and task."""
        query = f"SELECT {ACTION_COLUMNS} FROM actions WHERE 1=1"
        params: list[Any] = []
        if status:
            query += " AND status = ?"
            params.append(str(status))
        if task_id is not None:
            query += " AND task_id = ?"
            params.append(task_id)
        query, params = order_limit(query, params, limit)
        return [Action.from_row(row) for row in self.execute(query, params)]

    def count_by_status(self) -> dict[str, int]:
        """Return the number of actions in each status."""
        rows = self.execute("SELECT status, COUNT(*) FROM actions GROUP BY status")
        return {status: count for status, count in rows}

    def list_running_interactive(self) -> list[Action]:
        """Running actions that have a terminal session attached."""
        rows = self.execute(
            f"SELECT {ACTION_COLUMNS} FROM actions WHERE status = ? AND session_id IS NOT NULL ORDER BY id",
            (ActionStatus.RUNNING.value,),
        )
        return [Action.from_row(row) for row in rows]

    def count_running_interactive(self) -> int:
        (count,) = self.query_one(
            "SELECT COUNT(*) FROM actions WHERE status = ? AND session_id IS NOT NULL",
            (ActionStatus.RUNNING.value,),
        )
        return count

    def reset_to_pending(self, action_id: int) -> None:
        """Return an action to the queue, clearing its start time and session."""
        previous = self._current_status(action_id)
        self.execute(
            "UPDATE actions SET status = ?, started_at = NULL, session_id = NULL, tmux_pane = NULL WHERE id = ?",
            (ActionStatus.PENDING.value, action_id),
        )
        self._emit_event(
            "action", action_id, "action.status_changed", {"from": previous, "to": ActionStatus.PENDING.value}
        )

    def set_session_info(self, action_id: int, session_id: str, tmux_pane: str) -> None:
        self.execute(
            "UPDATE actions SET session_id = ?, tmux_pane = ? WHERE id = ?", (session_id, tmux_pane, action_id)
        )
        self._emit_event(
            "action", action_id, "action.session_set", {"session_id": session_id, "tmux_pane": tmux_pane}
        )

    def merge_action_metadata(self, action_id: int, updates: Mapping[str, Any]) -> None:
        """Merge ``updates`` into an action's JSON metadata, overwriting existing keys."""
        (existing,) = self.query_one("SELECT metadata FROM actions WHERE id = ?", (action_id,))
        merged: dict[str, Any] = {}
        if existing and existing != "{}":
            try:
                merged = json.loads(existing)
            except json.JSONDecodeError as exc:
                raise ValueError(f"parse existing metadata: {exc}") from exc
        merged.update(updates)
        self.execute("UPDATE actions SET metadata = ? WHERE id = ?", (dump_json(merged), action_id))
        self._emit_event("action", action_id, "action.metadata_merged", {"keys_updated": list(updates)})

    def list_actions_by_task_ids(self, task_ids: Iterable[int]) -> dict[int, list[Action]]:
        """Group the actions of the given tasks by task id, oldest first."""
        task_ids = list(task_ids)
        grouped: dict[int, list[Action]] = {}
        if not task_ids:
            return grouped
        placeholders = ", ".join("?" for _ in task_ids)
        rows = self.execute(
            f"SELECT {ACTION_COLUMNS} FROM actions WHERE task_id IN ({placeholders}) ORDER BY id", task_ids
        )
        for row in rows:
            action = Action.from_row(row)
            grouped.setdefault(action.task_id, []).append(action)
        return grouped

    def get_action(self, action_id: int) -> Action:
        """Return the action with ``action_id``; raise NotFoundError if absent."""
        return Action.from_row(
            self.query_one(f"SELECT {ACTION_COLUMNS} FROM actions WHERE id = ?", (action_id,))
        )