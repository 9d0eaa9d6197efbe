"""Follow-up actions that investigate why an action failed."""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

from tq.models import Action, ActionStatus, dump_json
from tq.runner import META_KEY_FAILED_ACTION_ID, META_KEY_INSTRUCTION, META_KEY_IS_INVESTIGATION

log = logging.getLogger(__name__)

_INSTRUCTION = (
    "Investigate why action #{failed_id} failed.\n\n"
    "Failure result:\n{failure}\n\n"
    "Steps:\n"
    "1. Run `tq action list --task $TQ_TASK_ID` to review action history\n"
    "2. Check logs and context for the failed action\n"
    "3. Determine root cause and create a fix action if needed\n"
    "4. Mark this action done with findings"
)


def _metadata_of(raw: str) -> dict[str, Any]:
    try:
        meta = json.loads(raw) if raw else {}
    except ValueError:
        return {}
    return meta if isinstance(meta, dict) else {}


def create_investigate_failure_action(store: Any, action: Action, failure_result: str) -> int | None:
    """Queue an action on the same task to investigate ``action``'s failure.

    Nothing is created for a failed investigation itself, nor when an active
    investigation of the same action already exists. Returns the new id or None.
    """
    if META_KEY_IS_INVESTIGATION in _metadata_of(action.metadata):
        log.info("skipping investigate-failure for investigation action itself (action_id=%s)", action.id)
        return None

    failed_id = str(action.id)
    try:
        exists = store.has_active_action_with_meta(action.task_id, META_KEY_FAILED_ACTION_ID, failed_id)
    except (sqlite3.Error, LookupError) as exc:
        log.error("check active investigate-failure action: %s", exc)
        return None
    if exists:
        log.info("investigate-failure action already exists (failed_action_id=%s)", action.id)
        return None

    metadata = {
        META_KEY_IS_INVESTIGATION: True,
        META_KEY_FAILED_ACTION_ID: failed_id,
        "failure_result": failure_result,
        META_KEY_INSTRUCTION: _INSTRUCTION.format(failed_id=failed_id, failure=failure_result),
    }
    title = f"Investigate failure of action #{action.id}"
    try:
        new_id = store.insert_action(title, action.task_id, dump_json(metadata), ActionStatus.PENDING)
    except (sqlite3.Error, LookupError, ValueError) as exc:
        log.error("create investigate-failure action: %s", exc)
        return None

    log.info("investigate-failure action created (action_id=%s, failed_action_id=%s)", new_id, action.id)
    return new_id