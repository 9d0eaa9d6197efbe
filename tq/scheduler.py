"""Turning due cron schedules into pending actions."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any

from tq.cron import CronError, parse_cron
from tq.execute import parse_metadata
from tq.models import ActionStatus, TaskStatus, dump_json
from tq.runner import META_KEY_INSTRUCTION, META_KEY_SCHEDULE_ID
from tq.timeutil import format_utc, parse_timestamp

log = logging.getLogger(__name__)

_STORE_ERRORS = (sqlite3.Error, LookupError, ValueError)
_CLOSED_TASK_STATUSES = (TaskStatus.DONE, TaskStatus.ARCHIVED)


def check_schedules(store: Any, now: datetime | None = None) -> list[int]:
    """Create a pending action for every enabled schedule that is due at ``now``.

    Schedules of closed tasks are disabled. A schedule is skipped while an
    action it created is still active. Returns the ids of the new actions.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    created: list[int] = []
    for schedule in store.list_schedules(0):
        if not schedule.enabled:
            continue

        try:
            task = store.get_task(schedule.task_id)
        except _STORE_ERRORS as exc:
            log.warning(
                "schedule: task lookup failed (schedule_id=%s, task_id=%s): %s", schedule.id, schedule.task_id, exc
            )
            continue
        if task.status in _CLOSED_TASK_STATUSES:
            log.info(
                "schedule: auto-disabling for closed task (schedule_id=%s, task_id=%s, task_status=%s)",
                schedule.id,
                schedule.task_id,
                task.status,
            )
            try:
                store.update_schedule_enabled(schedule.id, False)
            except _STORE_ERRORS as exc:
                log.error("schedule: auto-disable failed (schedule_id=%s): %s", schedule.id, exc)
            continue

        try:
            cron = parse_cron(schedule.cron_expr)
        except CronError as exc:
            log.warning(
                "schedule: invalid cron expr (schedule_id=%s, cron_expr=%r): %s", schedule.id, schedule.cron_expr, exc
            )
            continue

        base_text = schedule.last_run_at if schedule.last_run_at is not None else schedule.created_at
        try:
            base = parse_timestamp(base_text)
        except (ValueError, TypeError) as exc:
            log.warning(
                "schedule: parse base time failed (schedule_id=%s, base_time=%r): %s", schedule.id, base_text, exc
            )
            continue

        next_run = cron.next(base)
        if next_run is None or now < next_run:
            continue

        schedule_key = str(schedule.id)
        try:
            active = store.has_active_action_with_meta(schedule.task_id, META_KEY_SCHEDULE_ID, schedule_key)
        except _STORE_ERRORS as exc:
            log.warning("schedule: active action check failed (schedule_id=%s): %s", schedule.id, exc)
            continue
        if active:
            log.debug("schedule: skipping, active action exists (schedule_id=%s)", schedule.id)
            continue

        try:
            meta = parse_metadata(schedule.metadata)
        except ValueError as exc:
            log.warning("schedule: parse metadata failed (schedule_id=%s): %s", schedule.id, exc)
            meta = {}
        meta[META_KEY_INSTRUCTION] = schedule.instruction
        meta[META_KEY_SCHEDULE_ID] = schedule_key

        try:
            action_id = store.insert_action(schedule.title, schedule.task_id, dump_json(meta), ActionStatus.PENDING)
        except _STORE_ERRORS as exc:
            log.error("schedule: insert action failed (schedule_id=%s): %s", schedule.id, exc)
            continue

        try:
            store.update_schedule_last_run_at(schedule.id, format_utc(now))
        except _STORE_ERRORS as exc:
            log.error("schedule: update last_run_at failed (schedule_id=%s): %s", schedule.id, exc)

        log.info(
            "schedule: action created (action_id=%s, schedule_id=%s, instruction=%r, task_id=%s)",
            action_id,
            schedule.id,
            schedule.instruction,
            schedule.task_id,
        )
        created.append(action_id)

    return created