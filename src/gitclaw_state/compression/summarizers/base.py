"""Base summarizer interface and registry."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from gitclaw_state.models import serialized_size

__all__ = ["CallSummary", "GenericSummarizer", "Summarizer", "SummarizerRegistry", "find_target"]

# Argument keys that usually name what a tool call operates on
TARGET_KEYS = (
    "path",
    "file_path",
    "filePath",
    "file",
    "filename",
    "notebook_path",
    "url",
    "pattern",
    "query",
    "command",
)


def find_target(arguments: Any) -> str | None:
    """Pick the identifier a tool call operates on, if one is recognisable."""
    if not isinstance(arguments, dict):
        return None
    for key in TARGET_KEYS:
        value = arguments.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def count_lines(text: str) -> int:
    if not text:
        return 0
    return text.count("\n") + (0 if text.endswith("\n") else 1)


@dataclass
class CallSummary:
    """What a compressed tool call keeps of its arguments."""

    target: str | None
    lines: int
    bytes: int
    content: str  # text the head/tail preview is cut from


class Summarizer(ABC):
    """Base class for tool-call summarizers.

    Subclasses set `tool_names` and implement `summarize()` to describe
    a tool call's arguments without keeping them.
    """

    tool_names: tuple[str, ...] = ()

    @abstractmethod
    def summarize(self, arguments: Any) -> CallSummary:
        """Summarize a tool call's arguments.

        Args:
            arguments: The call's arguments payload

        Returns:
            CallSummary describing the payload
        """


class GenericSummarizer(Summarizer):
    """Fallback for tools without a dedicated summarizer."""

    def summarize(self, arguments: Any) -> CallSummary:
        if isinstance(arguments, str):
            content = arguments
        else:
            content = json.dumps(arguments, ensure_ascii=False, sort_keys=True)
        return CallSummary(
            target=find_target(arguments),
            lines=count_lines(content),
            bytes=serialized_size(arguments),
            content=content,
        )


class SummarizerRegistry:
    """Registry of summarizers by tool name (case-insensitive)."""

    _summarizers: dict[str, Summarizer] = {}
    _fallback: Summarizer = GenericSummarizer()

    @classmethod
    def register(cls, summarizer: Summarizer) -> None:
        """Register a summarizer for each of its tool names."""
        for name in summarizer.tool_names:
            cls._summarizers[name.lower()] = summarizer

    @classmethod
    def get(cls, tool_name: str) -> Summarizer:
        """Get the summarizer for a tool, falling back to the generic one."""
        return cls._summarizers.get(tool_name.lower(), cls._fallback)

    @classmethod
    def tool_names(cls) -> list[str]:
        """List all tool names with a dedicated summarizer."""
        return sorted(cls._summarizers.keys())
