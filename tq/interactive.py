"""Runs an action in a new tmux window with an interactive claude session."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from tq.runner import ActionConfig, CommandRunner, build_tq_env, output_text, window_name

DEFAULT_SESSION = "main"


def _shell_quote(text: str) -> str:
    return "'" + text.replace("'", "'\\''") + "'"


@dataclass
class InteractiveWorker:
    """Opens a tmux window and types the claude command into it.

    The session reports back on its own when the work is done.
    """

    runner: CommandRunner
    session: str = ""

    def execute(self, instruction: str, config: ActionConfig, work_dir: str, action_id: int, task_id: int) -> str:
        session = self.session or DEFAULT_SESSION
        name = window_name(action_id)

        self._tmux("create tmux window", ["new-window", "-t", session, "-n", name, "-c", work_dir], work_dir)

        target = f"{session}:{name}"
        env_prefix = " ".join(f"{key}={value}" for key, value in build_tq_env(action_id, task_id).items())
        flags = ""
        if config.permission_mode:
            flags += " --permission-mode " + _shell_quote(config.permission_mode)
        if config.worktree:
            flags += " --worktree"
        command = f"{env_prefix} claude{flags} {_shell_quote(instruction)}"
        self._tmux("send claude command", ["send-keys", "-t", target, command], work_dir)

        # Enter goes separately so the command text arrives intact first.
        self._tmux("send enter key", ["send-keys", "-t", target, "Enter"], work_dir)

        return f"interactive:action={action_id}"

    def _tmux(self, step: str, args: Sequence[str], work_dir: str) -> None:
        try:
            self.runner.run("tmux", list(args), work_dir, None, None)
        except Exception as exc:
            output = output_text(getattr(exc, "output", b""))
            raise RuntimeError(f"{step}: {exc} (output: {output})") from exc