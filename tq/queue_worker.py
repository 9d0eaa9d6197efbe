"""The queue worker: claims pending actions and dispatches them continuously."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Protocol

from tq.execute import ActionFailedError, DispatchConfig, InteractiveDeferred, execute_action
from tq.investigate import create_investigate_failure_action
from tq.models import Action
from tq.runner import CommandRunner, output_text, window_name
from tq.scheduler import check_schedules
from tq.timeutil import parse_timestamp

log = logging.getLogger(__name__)

DEFAULT_MAX_INTERACTIVE = 3
DEFAULT_STALE_THRESHOLD = 30.0
DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_STALE_GRACE_PERIOD = 30.0
DEFAULT_TMUX_SESSION = "main"


class TmuxChecker(Protocol):
    """Lists the windows of a tmux session."""

    def list_windows(self, session: str) -> list[str]:
        """Return the window names of ``session``."""


@dataclass
class ExecTmuxChecker:
    """Lists tmux windows by running tmux."""

    runner: CommandRunner

    def list_windows(self, session: str) -> list[str]:
        try:
            out = self.runner.run("tmux", ["list-windows", "-t", session, "-F", "#{window_name}"], "", None, None)
        except Exception as exc:
            output = output_text(getattr(exc, "output", b""))
            raise RuntimeError(f"tmux list-windows: {exc} (output: {output})") from exc
        return [line for line in output_text(out).strip().split("\n") if line]


@dataclass
class WorkerConfig(DispatchConfig):
    """Dispatch settings plus the worker loop's limits and timings (in seconds)."""

    max_interactive: int = DEFAULT_MAX_INTERACTIVE
    poll_interval: float = DEFAULT_POLL_INTERVAL
    tmux_checker: TmuxChecker | None = None
    stale_grace_period: float = DEFAULT_STALE_GRACE_PERIOD


class _ClaimError(RuntimeError):
    """Claiming the next pending action failed."""


def _with_defaults(config: WorkerConfig) -> WorkerConfig:
    return replace(
        config,
        max_interactive=config.max_interactive if config.max_interactive > 0 else DEFAULT_MAX_INTERACTIVE,
        poll_interval=config.poll_interval if config.poll_interval > 0 else DEFAULT_POLL_INTERVAL,
        stale_grace_period=(
            config.stale_grace_period if config.stale_grace_period > 0 else DEFAULT_STALE_GRACE_PERIOD
        ),
        tmux_session=config.tmux_session or DEFAULT_TMUX_SESSION,
    )


def run_worker(config: WorkerConfig, stop: threading.Event | None = None) -> None:
    """Dispatch pending actions one per iteration until ``stop`` is set, sleeping when idle."""
    config = _with_defaults(config)
    stop = stop if stop is not None else threading.Event()
    log.info(
        "queue worker started (max_interactive=%s, poll_interval=%ss)", config.max_interactive, config.poll_interval
    )

    last_heartbeat: float | None = None
    while not stop.is_set():
        now = time.monotonic()
        if last_heartbeat is None or now - last_heartbeat >= config.poll_interval:
            try:
                config.store.update_worker_heartbeat()
            except Exception as exc:
                log.error("update worker heartbeat: %s", exc)
            last_heartbeat = time.monotonic()

        reap_stale_actions(config)

        try:
            check_schedules(config.store, datetime.now(timezone.utc))
        except Exception as exc:
            log.error("schedule check error: %s", exc)

        try:
            dispatched = dispatch_one(config)
        except _ClaimError as exc:
            log.error("dispatch error: %s", exc)
            dispatched = False
        except Exception as exc:
            log.error("dispatch error: %s", exc)
            dispatched = True

        if not dispatched and stop.wait(config.poll_interval):
            break

    log.info("queue worker stopped")


def reap_stale_actions(config: WorkerConfig) -> list[int]:
    """Fail running interactive actions whose tmux window has gone; return their ids."""
    if config.tmux_checker is None:
        return []

    try:
        actions = config.store.list_running_interactive()
    except Exception as exc:
        log.error("list running interactive for stale check: %s", exc)
        return []
    if not actions:
        return []

    try:
        windows = set(config.tmux_checker.list_windows(config.tmux_session))
    except Exception as exc:
        log.warning("tmux list-windows failed, skipping stale check: %s", exc)
        return []

    grace = timedelta(seconds=config.stale_grace_period)
    now = datetime.now(timezone.utc)
    reaped: list[int] = []
    for action in actions:
        if action.started_at is not None:
            try:
                started = parse_timestamp(action.started_at)
            except ValueError:
                started = None
            if started is not None and now - started < grace:
                continue

        name = window_name(action.id)
        if name in windows:
            continue

        result = f'stale: tmux window "{name}" no longer exists'
        try:
            config.store.mark_failed(action.id, result)
        except Exception as exc:
            log.error("mark stale action failed (action_id=%s): %s", action.id, exc)
            continue
        log.warning("reaped stale action (action_id=%s, window=%s)", action.id, name)
        create_investigate_failure_action(config.store, action, result)
        reaped.append(action.id)
    return reaped


def dispatch_one(config: WorkerConfig) -> bool:
    """Claim and run the next pending action; return whether one was dispatched."""
    try:
        action = config.store.next_pending()
    except Exception as exc:
        raise _ClaimError(f"next pending: {exc}") from exc
    if action is None:
        return False

    max_interactive = config.max_interactive if config.max_interactive > 0 else DEFAULT_MAX_INTERACTIVE

    def before_interactive(candidate: Action) -> None:
        try:
            running = config.store.count_running_interactive()
        except Exception as exc:
            raise RuntimeError(f"count running interactive: {exc}") from exc
        if running >= max_interactive:
            log.info(
                "interactive limit reached, deferring (action_id=%s, running=%s, max=%s)",
                candidate.id,
                running,
                max_interactive,
            )
            raise InteractiveDeferred()

    try:
        result = execute_action(config, action, before_interactive)
    except InteractiveDeferred:
        return False
    except ActionFailedError as exc:
        log.error("action failed (action_id=%s): %s", exc.action_id, exc.error)
        return True

    log.info("action dispatched (action_id=%s, mode=%s)", action.id, result.mode)
    return True