"""Runs an action to completion with ``claude -p``."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from tq.runner import ActionConfig, CommandRunner, build_tq_env

DEFAULT_TIMEOUT = 300


def _string_field(wrapper: dict[str, Any], key: str) -> str:
    value = wrapper.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"failed to parse claude JSON output: field {key!r} is not a string")
    return value


@dataclass
class NonInteractiveWorker:
    """Runs claude in print mode and returns its result text."""

    runner: CommandRunner

    def execute(self, instruction: str, config: ActionConfig, work_dir: str, action_id: int, task_id: int) -> str:
        args = ["-p", instruction, "--output-format", "json"]
        if config.permission_mode:
            args += ["--permission-mode", config.permission_mode]
        if config.worktree:
            args.append("--worktree")

        output = self.runner.run("claude", args, work_dir, build_tq_env(action_id, task_id), DEFAULT_TIMEOUT)

        try:
            wrapper = json.loads(output)
        except (ValueError, UnicodeDecodeError) as exc:
            raise ValueError(f"failed to parse claude JSON output: {exc}") from exc
        if not isinstance(wrapper, dict):
            raise ValueError("failed to parse claude JSON output: not a JSON object")

        subtype = _string_field(wrapper, "subtype")
        result = _string_field(wrapper, "result")
        if subtype != "success":
            raise RuntimeError(f'claude returned subtype "{subtype}": {result}')
        return result