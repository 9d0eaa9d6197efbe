"""Dispatching one claimed action to the worker its mode calls for."""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from tq.investigate import create_investigate_failure_action
from tq.models import Action
from tq.runner import (
    META_KEY_INSTRUCTION,
    META_KEY_MODE,
    META_KEY_PERMISSION_MODE,
    META_KEY_WORKTREE,
    ActionConfig,
    Mode,
    Worker,
    window_name,
)

log = logging.getLogger(__name__)

_STORE_ERRORS = (sqlite3.Error, LookupError, ValueError)


@dataclass
class DispatchConfig:
    """The store and worker factories shared by dispatching code."""

    store: Any
    noninteractive_factory: Callable[[], Worker] | None = None
    interactive_factory: Callable[[], Worker] | None = None
    remote_factory: Callable[[], Worker] | None = None
    tmux_session: str = ""


@dataclass(frozen=True)
class ExecuteResult:
    mode: str
    output: str


class ActionFailedError(Exception):
    """The worker running an action failed; the action is marked failed."""

    def __init__(self, action_id: int, error: BaseException) -> None:
        super().__init__(f"action #{action_id} failed: {error}")
        self.action_id = action_id
        self.error = error


class InteractiveDeferred(Exception):
    """An interactive action must wait; it has been returned to the queue."""

    def __init__(self, message: str = "interactive deferred") -> None:
        super().__init__(message)


def parse_metadata(raw: str) -> dict[str, Any]:
    """Parse action metadata JSON; raise ValueError if it is not a JSON object."""
    if not raw or raw == "{}":
        return {}
    meta = json.loads(raw)
    if not isinstance(meta, dict):
        raise ValueError("metadata is not a JSON object")
    return meta


def expand_home(path: str) -> str:
    """Expand a leading ``~/`` to the user's home directory."""
    if path.startswith("~/"):
        try:
            home = Path.home()
        except RuntimeError:
            return path
        return os.path.normpath(os.path.join(home, path[2:]))
    return path


def resolve_work_dir(store: Any, action: Action) -> str:
    """The task's working directory, else its project's, else ``.``."""
    try:
        task = store.get_task(action.task_id)
    except (sqlite3.Error, LookupError):
        return "."
    if task.work_dir:
        return expand_home(task.work_dir)
    try:
        project = store.get_project_by_id(task.project_id)
    except (sqlite3.Error, LookupError):
        return "."
    if project.work_dir:
        return expand_home(project.work_dir)
    return "."


def _fail(store: Any, action: Action, message: str, investigate: bool = True) -> None:
    with suppress(*_STORE_ERRORS):
        store.mark_failed(action.id, message)
    if investigate:
        create_investigate_failure_action(store, action, message)


def execute_action(
    config: DispatchConfig,
    action: Action,
    before_interactive: Callable[[Action], None] | None = None,
) -> ExecuteResult:
    """Run the instruction in the action's metadata with the worker for its mode."""
    store = config.store
    try:
        meta = parse_metadata(action.metadata)
    except ValueError as exc:
        _fail(store, action, f"parse action metadata: {exc}")
        raise ValueError(f"parse action metadata: {exc}") from exc

    instruction = meta.get(META_KEY_INSTRUCTION)
    if not isinstance(instruction, str) or not instruction:
        _fail(store, action, "no instruction in metadata", investigate=False)
        raise ValueError("no instruction in metadata")

    mode = meta.get(META_KEY_MODE)
    permission_mode = meta.get(META_KEY_PERMISSION_MODE)
    worktree = meta.get(META_KEY_WORKTREE)
    action_config = ActionConfig(
        mode=mode if isinstance(mode, str) else Mode.INTERACTIVE,
        permission_mode=permission_mode if isinstance(permission_mode, str) else "",
        worktree=worktree if isinstance(worktree, bool) else False,
    )
    work_dir = resolve_work_dir(store, action)

    if action_config.is_remote():
        return _execute_remote(config, action, instruction, action_config, work_dir)
    if action_config.is_interactive():
        return _execute_interactive(config, action, instruction, action_config, work_dir, before_interactive)
    return _execute_noninteractive(config, action, instruction, action_config, work_dir)


def _run_worker(
    config: DispatchConfig,
    factory: Callable[[], Worker] | None,
    action: Action,
    instruction: str,
    action_config: ActionConfig,
    work_dir: str,
) -> str:
    try:
        if factory is None:
            raise RuntimeError(f"no worker configured for mode {action_config.mode!r}")
        return factory().execute(instruction, action_config, work_dir, action.id, action.task_id)
    except Exception as exc:
        _fail(config.store, action, str(exc))
        raise ActionFailedError(action.id, exc) from exc


def _execute_remote(
    config: DispatchConfig, action: Action, instruction: str, action_config: ActionConfig, work_dir: str
) -> ExecuteResult:
    output = _run_worker(config, config.remote_factory, action, instruction, action_config, work_dir)
    try:
        config.store.merge_action_metadata(action.id, {"remote_session": output})
    except _STORE_ERRORS as exc:
        log.warning("failed to save remote session info (action_id=%s): %s", action.id, exc)
    try:
        config.store.mark_dispatched(action.id)
    except _STORE_ERRORS as exc:
        log.warning("failed to mark action as dispatched (action_id=%s): %s", action.id, exc)
    return ExecuteResult(Mode.REMOTE, output)


def _execute_interactive(
    config: DispatchConfig,
    action: Action,
    instruction: str,
    action_config: ActionConfig,
    work_dir: str,
    before_interactive: Callable[[Action], None] | None,
) -> ExecuteResult:
    if before_interactive is not None:
        try:
            before_interactive(action)
        except InteractiveDeferred:
            with suppress(*_STORE_ERRORS):
                config.store.reset_to_pending(action.id)
            raise

    output = _run_worker(config, config.interactive_factory, action, instruction, action_config, work_dir)
    if config.tmux_session:
        try:
            config.store.set_session_info(action.id, config.tmux_session, window_name(action.id))
        except _STORE_ERRORS as exc:
            log.warning("failed to save session info (action_id=%s): %s", action.id, exc)
    return ExecuteResult(Mode.INTERACTIVE, output)


def _execute_noninteractive(
    config: DispatchConfig, action: Action, instruction: str, action_config: ActionConfig, work_dir: str
) -> ExecuteResult:
    output = _run_worker(config, config.noninteractive_factory, action, instruction, action_config, work_dir)
    try:
        config.store.mark_done(action.id, output)
    except _STORE_ERRORS as exc:
        raise RuntimeError(f"mark done: {exc}") from exc
    return ExecuteResult(Mode.NONINTERACTIVE, output)