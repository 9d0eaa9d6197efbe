"""Starts an action as a remote claude session."""

from __future__ import annotations

import os
import re
import tempfile
from dataclasses import dataclass

from tq.runner import ActionConfig, CommandRunner, build_tq_env, output_text

REMOTE_SESSION_PREFIX = "remote:session="

_ANSI_PATTERN = re.compile(
    r"\x1b\[[0-9;]*[a-zA-Z]|\x1b\][^\x07]*\x07|\x1b\[\?[0-9;]*[a-zA-Z]|\x1b\[<[a-zA-Z]|\r|\x04"
)


def remote_rules(action_id: int) -> str:
    """Rules appended to the prompt of a remote session."""
    return (
        "\n\n## Remote Execution Rules\n"
        f"- Branch name MUST start with `tq-{action_id}-` (e.g. tq-{action_id}-add-feature)\n"
        "- Create a Pull Request when work is complete — this is the completion signal\n"
        "- /tq:done is NOT available in remote sessions"
    )


def extract_diagnosis(debug_file: str | os.PathLike[str]) -> str:
    """Collect the ERROR lines of a debug log, or return "" if there are none."""
    try:
        with open(debug_file, encoding="utf-8", errors="replace") as handle:
            text = handle.read()
    except OSError:
        return ""
    errors = [line.strip() for line in text.split("\n") if "[ERROR]" in line]
    if not errors:
        return ""
    return "\ndiagnosis:\n" + "\n".join(errors)


def strip_ansi(text: str) -> str:
    """Remove terminal escape sequences and control characters."""
    return _ANSI_PATTERN.sub("", text)


def parse_session_url(output: str) -> str:
    """Return the first https URL in the output, or the whole output trimmed."""
    for line in output.split("\n"):
        line = line.strip()
        index = line.find("https://")
        if index >= 0:
            return line[index:]
    return output.strip()


@dataclass
class RemoteWorker:
    """Runs ``claude --remote``; completion is signalled later by a pull request."""

    runner: CommandRunner

    def execute(self, instruction: str, config: ActionConfig, work_dir: str, action_id: int, task_id: int) -> str:
        prompt = instruction + remote_rules(action_id)
        debug_file = os.path.join(tempfile.gettempdir(), f"tq-remote-debug-{action_id}.log")
        # claude --remote needs a terminal; `script` provides a pseudo-terminal.
        args = ["-q", "/dev/null", "claude", "--remote", prompt, "--debug-file", debug_file]
        try:
            try:
                output = self.runner.run("script", args, work_dir, build_tq_env(action_id, task_id), None)
            except Exception as exc:
                clean = strip_ansi(output_text(getattr(exc, "output", b"")))
                diagnosis = extract_diagnosis(debug_file)
                raise RuntimeError(f"claude --remote: {exc}\noutput: {clean}{diagnosis}") from exc
        finally:
            try:
                os.remove(debug_file)
            except OSError:
                pass
        return REMOTE_SESSION_PREFIX + parse_session_url(strip_ansi(output_text(output)))