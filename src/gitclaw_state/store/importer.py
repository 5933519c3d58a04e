"""Importer for agent session logs.

The agent process writes its session as JSONL, one entry per line:
- type: "user", "assistant", or bookkeeping entries (ignored)
- message.role: "user" or "assistant"
- message.content: string or array of content blocks
  (text, tool_use, tool_result, thinking)
- timestamp: ISO 8601 timestamp

The importer converts new entries into turns so the orchestrator can
append them to the issue's transcript after each agent run.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from gitclaw_state.logging import get_logger
from gitclaw_state.models import (
    Block,
    TextBlock,
    ThinkingBlock,
    ToolCallBlock,
    ToolResultBlock,
    Turn,
)
from gitclaw_state.store.transcript import TranscriptStore

logger = get_logger("importer")

ENTRY_TYPES = ("user", "assistant")


def parse_timestamp(value: Any, default: int = 0) -> int:
    """ISO 8601 string to Unix seconds; naive times are taken as UTC."""
    if not isinstance(value, str) or not value:
        return default
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return default
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return max(0, int(dt.timestamp()))


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


class AgentSessionImporter:
    """Parses agent JSONL session logs into turns.

    Parsing is incremental: ``parse`` returns the byte offset it stopped at
    and the next call resumes from there. A final line without a newline is
    still being written by the agent and is left for the next call.
    """

    def parse(self, path: Path, from_offset: int = 0, default_ts: int = 0) -> tuple[list[Turn], int]:
        """Parse new entries of a session log.

        Args:
            path: Session log file
            from_offset: Byte offset to resume from
            default_ts: Timestamp for leading entries that carry none,
                        usually the last timestamp of the previous import

        Returns:
            Tuple of (turns in file order, offset to resume from)
        """
        turns: list[Turn] = []
        last_ts = default_ts
        offset = from_offset

        with open(path, "rb") as f:
            f.seek(from_offset)
            for raw in iter(f.readline, b""):
                if not raw.endswith(b"\n"):
                    break
                offset += len(raw)

                turn = self._parse_line(raw, last_ts)
                if turn is not None:
                    turns.append(turn)
                    last_ts = turn.ts

        return turns, offset

    def _parse_line(self, raw: bytes, last_ts: int) -> Turn | None:
        try:
            entry = json.loads(raw)
        except ValueError:
            logger.debug("Skipping malformed session line: bytes=%d", len(raw))
            return None
        if not isinstance(entry, dict) or entry.get("type") not in ENTRY_TYPES:
            return None

        message = entry.get("message")
        if not isinstance(message, dict):
            logger.debug("Skipping session entry without a message object: type=%s", entry.get("type"))
            return None
        role = message.get("role")
        if role not in ENTRY_TYPES:
            return None
        blocks = self._extract_blocks(message.get("content"))
        if not blocks:
            return None
        # Entries without a usable timestamp inherit the previous one
        return Turn(role=role, blocks=blocks, ts=parse_timestamp(entry.get("timestamp"), last_ts))

    def _extract_blocks(self, content: str | list | None) -> list[Block]:
        if isinstance(content, str):
            return [TextBlock(text=content)] if content else []
        if not isinstance(content, list):
            return []

        blocks: list[Block] = []
        for item in content:
            if isinstance(item, str):
                block = TextBlock(text=item) if item else None
            elif isinstance(item, dict):
                block = self._convert_block(item)
            else:
                block = None
            if block is not None:
                blocks.append(block)
        return blocks

    def _convert_block(self, item: dict[str, Any]) -> Block | None:
        block_type = item.get("type")
        if block_type == "text":
            text = item.get("text")
            return TextBlock(text=text) if isinstance(text, str) and text else None
        if block_type == "tool_use":
            name = item.get("name")
            return ToolCallBlock(
                name=name if isinstance(name, str) and name else "unknown",
                arguments=item.get("input", {}),
                call_id=_optional_str(item.get("id")),
            )
        if block_type == "tool_result":
            return ToolResultBlock(
                payload=item.get("content", ""),
                ok=not item.get("is_error", False),
                call_id=_optional_str(item.get("tool_use_id")),
            )
        if block_type == "thinking":
            text = item.get("thinking")
            return ThinkingBlock(text=text) if isinstance(text, str) and text else None
        logger.debug("Skipping unknown content block: type=%s", block_type)
        return None


def import_session(
    store: TranscriptStore,
    handle: str,
    session_path: Path,
    from_offset: int = 0,
) -> tuple[int, int]:
    """Append new turns from an agent session log to a transcript.

    Args:
        store: Transcript store
        handle: Transcript handle to append to
        session_path: Agent session JSONL file
        from_offset: Byte offset reached by the previous import

    Returns:
        Tuple of (number of turns appended, new offset)
    """
    last_ts = 0
    for turn in store.read_all(handle):
        last_ts = turn.ts
    turns, new_offset = AgentSessionImporter().parse(session_path, from_offset, default_ts=last_ts)
    for turn in turns:
        store.append(handle, turn)
    logger.info(
        "Imported agent session: handle=%s source=%s turns=%d offset=%d",
        handle,
        session_path,
        len(turns),
        new_offset,
    )
    return len(turns), new_offset
