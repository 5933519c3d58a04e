"""Summarizers for tools that write or edit files.

Their arguments carry whole file bodies, which is where most transcript
bulk comes from.
"""

from typing import Any

from gitclaw_state.compression.summarizers.base import CallSummary, Summarizer, count_lines, find_target
from gitclaw_state.models import serialized_size

CONTENT_KEYS = ("content", "contents", "file_text", "text")
EDIT_KEYS = ("new_string", "new_str", "replacement", "new_source")


def _first_str(arguments: dict[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = arguments.get(key)
        if isinstance(value, str):
            return value
    return ""


class FileWriteSummarizer(Summarizer):
    """Summarizes full-file writes by target path and body size."""

    tool_names = ("write", "write_file", "create_file", "file_write")

    def summarize(self, arguments: Any) -> CallSummary:
        if not isinstance(arguments, dict):
            arguments = {"content": str(arguments)}
        content = _first_str(arguments, CONTENT_KEYS)
        return CallSummary(
            target=find_target(arguments),
            lines=count_lines(content),
            bytes=serialized_size(arguments),
            content=content,
        )


class FileEditSummarizer(Summarizer):
    """Summarizes in-place edits by target path and replacement size."""

    tool_names = ("edit", "multiedit", "str_replace_editor", "str_replace", "apply_patch")

    def summarize(self, arguments: Any) -> CallSummary:
        if not isinstance(arguments, dict):
            arguments = {"patch": str(arguments)}
        content = _first_str(arguments, EDIT_KEYS + ("patch", "input"))
        edits = arguments.get("edits")
        if not content and isinstance(edits, list):
            content = "\n".join(
                e.get("new_string", "") for e in edits if isinstance(e, dict)
            )
        return CallSummary(
            target=find_target(arguments),
            lines=count_lines(content),
            bytes=serialized_size(arguments),
            content=content,
        )
