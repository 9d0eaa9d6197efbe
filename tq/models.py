"""Record types for projects, tasks, actions, schedules, events and search hits."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Iterable, Sequence

from tq.timeutil import matches_date_local


class ActionStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    DISPATCHED = "dispatched"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


VALID_ACTION_STATUSES = frozenset(s.value for s in ActionStatus)
ACTIVE_ACTION_STATUSES = (ActionStatus.PENDING, ActionStatus.RUNNING, ActionStatus.DISPATCHED)


class TaskStatus(StrEnum):
    OPEN = "open"
    DONE = "done"
    ARCHIVED = "archived"


def dump_json(value: Any) -> str:
    """Serialise to compact JSON with sorted keys."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


ACTION_COLUMNS = (
    "id, title, task_id, metadata, status, result, session_id, tmux_pane, created_at, started_at, completed_at"
)
TASK_COLUMNS = "id, project_id, title, metadata, status, work_dir, created_at, updated_at"
PROJECT_COLUMNS = "id, name, work_dir, metadata, dispatch_enabled, created_at"
SCHEDULE_COLUMNS = "id, task_id, instruction, title, cron_expr, metadata, enabled, last_run_at, created_at"
EVENT_COLUMNS = "id, entity_type, entity_id, event_type, payload, created_at"


@dataclass
class Action:
    id: int = 0
    title: str = ""
    task_id: int = 0
    metadata: str = "{}"
    status: str = ActionStatus.PENDING
    result: str | None = None
    session_id: str | None = None
    tmux_pane: str | None = None
    created_at: str = ""
    started_at: str | None = None
    completed_at: str | None = None

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> Action:
        return cls(*row)

    def matches_date(self, date: str) -> bool:
        """Whether any of the action's timestamps falls on ``date`` (local time)."""
        stamps = [self.created_at, self.started_at, self.completed_at]
        return any(s is not None and matches_date_local(s, date) for s in stamps)


@dataclass
class Task:
    id: int = 0
    project_id: int = 0
    title: str = ""
    metadata: str = "{}"
    status: str = TaskStatus.OPEN
    work_dir: str = ""
    created_at: str = ""
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> Task:
        return cls(*row)

    def matches_date(self, date: str) -> bool:
        """Whether the task was created or updated on ``date`` (local time)."""
        if matches_date_local(self.created_at, date):
            return True
        return self.updated_at is not None and matches_date_local(self.updated_at, date)


@dataclass
class Project:
    id: int = 0
    name: str = ""
    work_dir: str = ""
    metadata: str = "{}"
    dispatch_enabled: bool = True
    created_at: str = ""

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> Project:
        pid, name, work_dir, metadata, enabled, created_at = row
        return cls(pid, name, work_dir, metadata, bool(enabled), created_at)


@dataclass
class Schedule:
    id: int = 0
    task_id: int = 0
    instruction: str = ""
    title: str = ""
    cron_expr: str = ""
    metadata: str = "{}"
    enabled: bool = True
    last_run_at: str | None = None
    created_at: str = ""

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> Schedule:
        sid, task_id, instruction, title, cron_expr, metadata, enabled, last_run_at, created_at = row
        return cls(sid, task_id, instruction, title, cron_expr, metadata, bool(enabled), last_run_at, created_at)


@dataclass
class Event:
    id: int
    entity_type: str
    entity_id: int
    event_type: str
    payload: str
    created_at: str

    @classmethod
    def from_row(cls, row: Sequence[Any]) -> Event:
        return cls(*row)


@dataclass
class SearchResult:
    entity_type: str
    entity_id: int
    task_id: int
    field: str
    snippet: str
    status: str
    created_at: str


def filter_for_open_task(actions: Iterable[Action], date: str) -> list[Action]:
    """Keep active actions and finished ones touching ``date``; keep all if no date."""
    actions = list(actions)
    if not date:
        return actions
    return [a for a in actions if a.status in ACTIVE_ACTION_STATUSES or a.matches_date(date)]


def filter_by_date(actions: Iterable[Action], date: str) -> list[Action]:
    """Keep actions touching ``date``; keep all if no date."""
    actions = list(actions)
    if not date:
        return actions
    return [a for a in actions if a.matches_date(date)]