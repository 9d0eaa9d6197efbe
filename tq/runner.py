"""Running external commands and the shared vocabulary of dispatching."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from enum import StrEnum
from typing import Mapping, Protocol, Sequence

META_KEY_INSTRUCTION = "instruction"
META_KEY_MODE = "mode"
META_KEY_PERMISSION_MODE = "permission_mode"
META_KEY_WORKTREE = "worktree"
META_KEY_SCHEDULE_ID = "schedule_id"
META_KEY_IS_INVESTIGATION = "is_investigate_failure"
META_KEY_FAILED_ACTION_ID = "failed_action_id"

_HIDDEN_ENV_VARS = ("CLAUDECODE",)


class Mode(StrEnum):
    REMOTE = "remote"
    INTERACTIVE = "interactive"
    NONINTERACTIVE = "noninteractive"


@dataclass(frozen=True)
class ActionConfig:
    """How an action is to be run, as read from its metadata."""

    mode: str = Mode.INTERACTIVE
    permission_mode: str = ""
    worktree: bool = False

    def is_interactive(self) -> bool:
        return self.mode == Mode.INTERACTIVE

    def is_noninteractive(self) -> bool:
        return self.mode == Mode.NONINTERACTIVE

    def is_remote(self) -> bool:
        return self.mode == Mode.REMOTE


class CommandFailedError(RuntimeError):
    """An external command could not be run or exited unsuccessfully."""

    def __init__(self, message: str, output: bytes = b"") -> None:
        super().__init__(message)
        self.output = output


class CommandRunner(Protocol):
    """Something that runs an external command."""

    def run(
        self,
        name: str,
        args: Sequence[str],
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> bytes:
        """Run ``name`` with ``args`` and return its combined stdout and stderr."""


class ExecRunner:
    """Runs commands as child processes."""

    def run(
        self,
        name: str,
        args: Sequence[str],
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> bytes:
        """Run the command; raise CommandFailedError on failure, timeout or non-zero exit."""
        merged = filtered_env()
        if env:
            merged.update(env)
        try:
            completed = subprocess.run(
                [name, *args],
                cwd=cwd or None,
                env=merged,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise CommandFailedError(f"{name}: timed out after {timeout}s", exc.output or b"") from exc
        except OSError as exc:
            raise CommandFailedError(f"{name}: {exc}") from exc
        if completed.returncode != 0:
            raise CommandFailedError(f"{name}: exit status {completed.returncode}", completed.stdout)
        return completed.stdout


class Worker(Protocol):
    """Something that carries out an action's instruction."""

    def execute(self, instruction: str, config: ActionConfig, work_dir: str, action_id: int, task_id: int) -> str:
        """Run the instruction and return a short description of the outcome."""


def filtered_env() -> dict[str, str]:
    """The current environment without variables that must not leak to children."""
    return {key: value for key, value in os.environ.items() if key not in _HIDDEN_ENV_VARS}


def build_tq_env(action_id: int, task_id: int) -> dict[str, str]:
    """Environment variables that tell a child which action and task it serves."""
    return {"TQ_ACTION_ID": str(action_id), "TQ_TASK_ID": str(task_id)}


def window_name(action_id: int) -> str:
    """The tmux window name used for an action."""
    return f"tq-action-{action_id}"


def output_text(output: bytes | str | None) -> str:
    """Decode command output for messages."""
    if output is None:
        return ""
    if isinstance(output, str):
        return output
    return output.decode("utf-8", errors="replace")