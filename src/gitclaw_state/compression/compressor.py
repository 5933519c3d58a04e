"""Transcript compressor.

Shrinks the historical part of a transcript in place. Turns outside the
protected suffix keep their role, timestamp and block layout; only bulky
payloads are swapped for bounded summaries:

- tool-call arguments over the threshold -> tool, target, counts, preview
- tool-result payloads over the threshold -> head + omitted marker + tail
- thinking -> fixed marker with the original length
- text -> untouched
"""

import json
import re
from dataclasses import dataclass
from typing import Any

from gitclaw_state.compression.summarizers import SummarizerRegistry
from gitclaw_state.config import CompressionConfig
from gitclaw_state.logging import get_logger
from gitclaw_state.models import (
    Block,
    CompressionRecord,
    ThinkingBlock,
    ToolCallBlock,
    ToolResultBlock,
    Turn,
    serialized_size,
)
from gitclaw_state.store.transcript import TranscriptStore, turns_size

logger = get_logger("compressor")

COMPRESSED_KEY = "_compressed"
MAX_TOOL_NAME_CHARS = 100
MAX_TARGET_CHARS = 200

RESULT_MARKER_RE = re.compile(r"\[\.\.\. \d+ bytes, \d+ lines omitted \.\.\.\]")
THINKING_MARKER_RE = re.compile(r"^\[thinking removed: \d+ chars\]$")


def make_preview(text: str, head_chars: int, tail_chars: int) -> str:
    """Head and tail of a text joined by an ellipsis."""
    if len(text) <= head_chars + tail_chars:
        return text
    tail = text[-tail_chars:] if tail_chars > 0 else ""
    return f"{text[:head_chars]} ... {tail}"


def _truncate(value: str | None, limit: int) -> str | None:
    if value is None or len(value) <= limit:
        return value
    return value[:limit] + "..."


@dataclass
class _Counts:
    tool_calls: int = 0
    tool_results: int = 0
    thinking: int = 0
    skipped: int = 0

    @property
    def changed(self) -> int:
        return self.tool_calls + self.tool_results + self.thinking


class Compressor:
    """Compresses historical turns of transcripts in a TranscriptStore."""

    def __init__(self, store: TranscriptStore, config: CompressionConfig | None = None) -> None:
        self._store = store
        self._config = config or CompressionConfig()

    @property
    def config(self) -> CompressionConfig:
        return self._config

    def compress(self, handle: str, dry_run: bool = False) -> CompressionRecord:
        """Compress one transcript.

        Args:
            handle: Transcript handle
            dry_run: Report what would be saved without writing anything

        Returns:
            CompressionRecord with before/after sizes and per-category counts
        """
        if not self._store.exists(handle):
            logger.warning("Compression skipped, transcript missing: handle=%s", handle)
            return CompressionRecord(handle, 0, 0, skipped_reason="missing", dry_run=dry_run)

        original_bytes = self._store.size(handle)
        if original_bytes <= self._config.min_transcript_bytes:
            logger.debug(
                "Compression skipped, below threshold: handle=%s bytes=%d threshold=%d",
                handle,
                original_bytes,
                self._config.min_transcript_bytes,
            )
            return CompressionRecord(
                handle,
                original_bytes,
                original_bytes,
                skipped_reason="below_threshold",
                dry_run=dry_run,
            )

        cutoff = self._store.turn_count(handle) - self._config.protect_recent_turns
        if cutoff <= 0:
            return CompressionRecord(
                handle,
                original_bytes,
                original_bytes,
                skipped_reason="no_eligible_turns",
                dry_run=dry_run,
            )

        counts, rewritten = self._rewrite(handle, cutoff, dry_run=True)
        if dry_run or counts.changed == 0:
            compressed_bytes = turns_size(rewritten) if counts.changed else original_bytes
            return self._record(handle, original_bytes, compressed_bytes, counts, None, dry_run)

        backup = None
        if self._config.backup:
            backup = self._store.backup(handle)

        counts, _ = self._rewrite(handle, cutoff, dry_run=False)
        compressed_bytes = self._store.size(handle)
        record = self._record(
            handle,
            original_bytes,
            compressed_bytes,
            counts,
            str(backup) if backup else None,
            dry_run,
        )
        logger.info(
            "Compressed transcript: handle=%s before=%d after=%d tool_calls=%d "
            "tool_results=%d thinking=%d skipped=%d",
            handle,
            record.original_bytes,
            record.compressed_bytes,
            record.tool_calls_compressed,
            record.tool_results_compressed,
            record.thinking_removed,
            record.blocks_skipped,
        )
        return record

    def restore_backup(self, handle: str) -> bool:
        """Undo lossy compression by reinstating the pre-compression backup."""
        return self._store.restore_backup(handle)

    @staticmethod
    def _record(
        handle: str,
        original_bytes: int,
        compressed_bytes: int,
        counts: _Counts,
        backup_path: str | None,
        dry_run: bool,
    ) -> CompressionRecord:
        return CompressionRecord(
            handle=handle,
            original_bytes=original_bytes,
            compressed_bytes=compressed_bytes,
            tool_calls_compressed=counts.tool_calls,
            tool_results_compressed=counts.tool_results,
            thinking_removed=counts.thinking,
            blocks_skipped=counts.skipped,
            skipped_reason=None if counts.changed else "nothing_to_compress",
            backup_path=backup_path,
            dry_run=dry_run,
        )

    def _rewrite(self, handle: str, cutoff: int, dry_run: bool) -> tuple[_Counts, list[Turn]]:
        counts = _Counts()

        def transform(block: Block) -> Block:
            try:
                return self.compress_block(block, counts)
            except Exception:
                logger.warning(
                    "Could not compress block, leaving it untouched: handle=%s type=%s",
                    handle,
                    block.type,
                    exc_info=True,
                )
                counts.skipped += 1
                return block

        rewritten = self._store.rewrite_historical(
            handle,
            lambda index, _turn: index < cutoff,
            transform,
            dry_run=dry_run,
        )
        return counts, rewritten

    def compress_block(self, block: Block, counts: _Counts | None = None) -> Block:
        """Return the compressed form of a block, or the block itself."""
        if counts is None:
            counts = _Counts()
        if isinstance(block, ToolCallBlock):
            new_block = self._compress_tool_call(block)
            if new_block is not block:
                counts.tool_calls += 1
            return new_block
        if isinstance(block, ToolResultBlock):
            new_block = self._compress_tool_result(block)
            if new_block is not block:
                counts.tool_results += 1
            return new_block
        if isinstance(block, ThinkingBlock):
            if THINKING_MARKER_RE.match(block.text):
                return block
            counts.thinking += 1
            return ThinkingBlock(text=f"[thinking removed: {len(block.text)} chars]")
        return block

    def _compress_tool_call(self, block: ToolCallBlock) -> ToolCallBlock:
        args = block.arguments
        if isinstance(args, dict) and args.get(COMPRESSED_KEY):
            return block
        if serialized_size(args) <= self._config.tool_call_threshold_bytes:
            return block

        summary = SummarizerRegistry.get(block.name).summarize(args)
        compact: dict[str, Any] = {
            COMPRESSED_KEY: True,
            "tool": _truncate(block.name, MAX_TOOL_NAME_CHARS),
            "target": _truncate(summary.target, MAX_TARGET_CHARS),
            "lines": summary.lines,
            "bytes": summary.bytes,
            "preview": make_preview(
                summary.content,
                self._config.preview_head_chars,
                self._config.preview_tail_chars,
            ),
        }
        return ToolCallBlock(name=block.name, arguments=compact, call_id=block.call_id)

    def _compress_tool_result(self, block: ToolResultBlock) -> ToolResultBlock:
        payload = block.payload
        if isinstance(payload, str):
            if RESULT_MARKER_RE.search(payload):
                return block
            text = payload
        else:
            text = json.dumps(payload, ensure_ascii=False, sort_keys=True)

        size = serialized_size(payload)
        if size <= self._config.tool_result_threshold_bytes:
            return block

        head_chars = self._config.preview_head_chars
        tail_chars = self._config.preview_tail_chars
        head = text[:head_chars]
        tail = text[-tail_chars:] if tail_chars > 0 else ""
        if head_chars + tail_chars >= len(text):
            head, tail = text, ""
        omitted_bytes = len(text.encode("utf-8")) - len(head.encode("utf-8")) - len(tail.encode("utf-8"))
        omitted_lines = text.count("\n") - head.count("\n") - tail.count("\n")
        compact = f"{head}\n[... {omitted_bytes} bytes, {omitted_lines} lines omitted ...]\n{tail}"
        if serialized_size(compact) >= size:
            return block
        return ToolResultBlock(payload=compact, ok=block.ok, call_id=block.call_id)
