"""Summarizer for shell command tools."""

from typing import Any

from gitclaw_state.compression.summarizers.base import CallSummary, Summarizer, count_lines
from gitclaw_state.models import serialized_size


class ShellSummarizer(Summarizer):
    """Keeps the first line of a command as the target."""

    tool_names = ("bash", "shell", "run_command", "execute_command")

    def summarize(self, arguments: Any) -> CallSummary:
        if isinstance(arguments, dict):
            command = arguments.get("command") or arguments.get("cmd") or ""
        else:
            command = str(arguments)
        if not isinstance(command, str):
            command = str(command)
        first_line = command.strip().splitlines()[0] if command.strip() else None
        return CallSummary(
            target=first_line,
            lines=count_lines(command),
            bytes=serialized_size(arguments),
            content=command,
        )
