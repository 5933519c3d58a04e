"""Canonical data models."""

import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, ClassVar

from gitclaw_state.errors import InvalidTurn

ROLES = ("user", "assistant")


def serialized_size(value: Any) -> int:
    """Size in bytes of a value as it is written to a transcript."""
    if isinstance(value, str):
        return len(value.encode("utf-8"))
    return len(json.dumps(value, ensure_ascii=False, sort_keys=True).encode("utf-8"))


@dataclass
class TextBlock:
    """Plain text written by the user or the assistant."""

    text: str
    type: ClassVar[str] = "text"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass
class ToolCallBlock:
    """A tool invocation; ``arguments`` is free-form and unbounded."""

    name: str
    arguments: Any = field(default_factory=dict)
    call_id: str | None = None
    type: ClassVar[str] = "tool_call"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "name": self.name, "arguments": self.arguments}
        if self.call_id is not None:
            data["call_id"] = self.call_id
        return data


@dataclass
class ToolResultBlock:
    """Output of a tool invocation; ``payload`` is a string or structured value."""

    payload: Any
    ok: bool = True
    call_id: str | None = None
    type: ClassVar[str] = "tool_result"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "payload": self.payload, "ok": self.ok}
        if self.call_id is not None:
            data["call_id"] = self.call_id
        return data


@dataclass
class ThinkingBlock:
    """Model-internal reasoning. Not needed to continue a conversation."""

    text: str
    type: ClassVar[str] = "thinking"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}


Block = TextBlock | ToolCallBlock | ToolResultBlock | ThinkingBlock
BLOCK_TYPES: tuple[type, ...] = (TextBlock, ToolCallBlock, ToolResultBlock, ThinkingBlock)


def block_from_dict(data: Any) -> Block:
    """Build a block from its serialized form.

    Raises:
        InvalidTurn: If the type is unknown or a required field is missing
    """
    if not isinstance(data, dict):
        raise InvalidTurn(f"Block must be an object, got {type(data).__name__}")

    block_type = data.get("type")
    try:
        if block_type == TextBlock.type:
            return TextBlock(text=_require_str(data, "text"))
        if block_type == ToolCallBlock.type:
            return ToolCallBlock(
                name=_require_str(data, "name"),
                arguments=data.get("arguments", {}),
                call_id=data.get("call_id"),
            )
        if block_type == ToolResultBlock.type:
            if "payload" not in data:
                raise KeyError("payload")
            return ToolResultBlock(
                payload=data["payload"],
                ok=bool(data.get("ok", True)),
                call_id=data.get("call_id"),
            )
        if block_type == ThinkingBlock.type:
            return ThinkingBlock(text=_require_str(data, "text"))
    except KeyError as e:
        raise InvalidTurn(f"Block of type {block_type!r} is missing field {e}") from e

    raise InvalidTurn(f"Unknown block type: {block_type!r}")


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data[key]
    if not isinstance(value, str):
        raise InvalidTurn(f"Field {key!r} must be a string")
    return value


def _validate_block(block: Any) -> None:
    """Reject blocks that ``block_from_dict`` would not read back."""
    if not isinstance(block, BLOCK_TYPES):
        raise InvalidTurn(f"Not a block: {block!r}")
    if isinstance(block, (TextBlock, ThinkingBlock)) and not isinstance(block.text, str):
        raise InvalidTurn(f"Block {block.type} text must be a string")
    if isinstance(block, ToolCallBlock) and (not isinstance(block.name, str) or not block.name):
        raise InvalidTurn("Tool call name must be a non-empty string")
    if isinstance(block, (ToolCallBlock, ToolResultBlock)) and not isinstance(block.call_id, (str, type(None))):
        raise InvalidTurn(f"Block {block.type} call_id must be a string")


@dataclass
class Turn:
    """One role-tagged unit of a conversation."""

    role: str  # user, assistant
    blocks: list[Block]
    ts: int  # Unix timestamp (seconds)

    def validate(self) -> None:
        """Check the role/block invariants.

        Raises:
            InvalidTurn: If the turn cannot be stored
        """
        if self.role not in ROLES:
            raise InvalidTurn(f"Invalid role: {self.role!r}")
        if not self.blocks:
            raise InvalidTurn("Turn has no blocks")
        for block in self.blocks:
            _validate_block(block)
        if not isinstance(self.ts, int) or isinstance(self.ts, bool) or self.ts < 0:
            raise InvalidTurn(f"Invalid timestamp: {self.ts!r}")

    @property
    def text(self) -> str:
        """Concatenated text blocks of this turn."""
        return "\n".join(b.text for b in self.blocks if isinstance(b, TextBlock))

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "ts": self.ts,
            "blocks": [block.to_dict() for block in self.blocks],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Turn":
        """Build and validate a turn from its serialized form."""
        if not isinstance(data, dict):
            raise InvalidTurn("Turn must be an object")
        blocks = data.get("blocks")
        if not isinstance(blocks, list):
            raise InvalidTurn("Turn blocks must be a list")
        turn = cls(
            role=data.get("role", ""),
            blocks=[block_from_dict(b) for b in blocks],
            ts=data.get("ts", -1),
        )
        turn.validate()
        return turn


@dataclass
class CompressionRecord:
    """Statistics for one compression pass over a transcript."""

    handle: str
    original_bytes: int
    compressed_bytes: int
    tool_calls_compressed: int = 0
    tool_results_compressed: int = 0
    thinking_removed: int = 0
    blocks_skipped: int = 0
    skipped_reason: str | None = None  # below_threshold, no_eligible_turns, missing
    backup_path: str | None = None
    dry_run: bool = False

    @property
    def saved_bytes(self) -> int:
        return self.original_bytes - self.compressed_bytes

    @property
    def blocks_compressed(self) -> int:
        return self.tool_calls_compressed + self.tool_results_compressed + self.thinking_removed

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["saved_bytes"] = self.saved_bytes
        return data


class LifecycleState(str, Enum):
    """Derived retention status of a transcript."""

    ACTIVE = "active"
    DORMANT = "dormant"
    ARCHIVED = "archived"
    PURGED = "purged"


@dataclass
class ArchiveEntry:
    """Where and when a transcript was archived."""

    association_id: str
    handle: str
    location: str
    archived_at: int
    original_bytes: int
    turn_count: int
    purged_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class IndexEntry:
    """Searchable summary of one conversation, derived from its transcript."""

    association_id: str
    title: str
    created_at: int
    updated_at: int
    turn_count: int
    summary: str
    keywords: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    decisions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexEntry":
        return cls(
            association_id=str(data["association_id"]),
            title=data.get("title", ""),
            created_at=int(data.get("created_at", 0)),
            updated_at=int(data.get("updated_at", 0)),
            turn_count=int(data.get("turn_count", 0)),
            summary=data.get("summary", ""),
            keywords=list(data.get("keywords", [])),
            files=list(data.get("files", [])),
            decisions=list(data.get("decisions", [])),
        )

    def to_typesense_doc(self) -> dict[str, Any]:
        """Convert to Typesense document format."""
        doc = self.to_dict()
        doc["id"] = self.association_id
        return doc


@dataclass
class VerificationStage:
    """One verification step: a command run against the working tree."""

    name: str  # typecheck, lint, test, build
    command: str
    timeout_seconds: int = 300
    optional: bool = False
    tool: str = ""  # npm, python, cargo, go, make, custom


@dataclass
class StageResult:
    """Outcome of running one stage."""

    name: str
    command: str
    passed: bool
    exit_code: int | None
    stdout: str
    stderr: str
    duration: float
    timed_out: bool = False
    optional: bool = False
    error: str | None = None  # set when the command could not be started

    @property
    def blocking(self) -> bool:
        """True when this result should stop the pipeline."""
        return not self.passed and not self.optional

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class IterationResult:
    """All stage results of one verification attempt."""

    number: int
    results: list[StageResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.blocking_failures

    @property
    def blocking_failures(self) -> list[StageResult]:
        return [r for r in self.results if r.blocking]

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "passed": self.passed,
            "results": [r.to_dict() for r in self.results],
            "skipped": list(self.skipped),
        }


@dataclass
class VerificationResult:
    """Overall outcome of the build-verify-fix loop."""

    passed: bool
    iterations: list[IterationResult] = field(default_factory=list)
    skipped: bool = False  # no stages were detected
    duration: float = 0.0
    fix_error: str | None = None

    @property
    def final_results(self) -> list[StageResult]:
        if not self.iterations:
            return []
        return self.iterations[-1].results

    @property
    def blocking_failures(self) -> list[StageResult]:
        if not self.iterations:
            return []
        return self.iterations[-1].blocking_failures

    @property
    def status(self) -> str:
        if self.skipped:
            return "skipped"
        return "passed" if self.passed else "failed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "passed": self.passed,
            "skipped": self.skipped,
            "duration": self.duration,
            "fix_error": self.fix_error,
            "iterations": [i.to_dict() for i in self.iterations],
            "blocking_failures": [r.name for r in self.blocking_failures],
        }
