"""Tests for canonical data models."""

import pytest

from gitclaw_state.errors import InvalidTurn
from gitclaw_state.models import (
    CompressionRecord,
    IndexEntry,
    IterationResult,
    StageResult,
    TextBlock,
    ThinkingBlock,
    ToolCallBlock,
    ToolResultBlock,
    Turn,
    VerificationResult,
    block_from_dict,
    serialized_size,
)


def make_result(name: str, passed: bool, optional: bool = False) -> StageResult:
    return StageResult(
        name=name,
        command=f"run-{name}",
        passed=passed,
        exit_code=0 if passed else 1,
        stdout="",
        stderr="",
        duration=0.1,
        optional=optional,
    )


class TestBlockFromDict:
    """Tests for block_from_dict."""

    def test_parses_each_block_type(self) -> None:
        """Every known block type should round-trip through its dict form."""
        blocks = [
            TextBlock(text="hello"),
            ToolCallBlock(name="write", arguments={"path": "a.py"}, call_id="c1"),
            ToolResultBlock(payload="done", ok=False, call_id="c1"),
            ThinkingBlock(text="hmm"),
        ]
        for block in blocks:
            assert block_from_dict(block.to_dict()) == block

    def test_call_id_omitted_when_none(self) -> None:
        """Blocks without a call id should not serialize one."""
        assert "call_id" not in ToolCallBlock(name="bash").to_dict()

    def test_unknown_type_raises(self) -> None:
        """An unknown block type should raise InvalidTurn."""
        with pytest.raises(InvalidTurn, match="Unknown block type"):
            block_from_dict({"type": "image", "data": "..."})

    def test_missing_field_raises(self) -> None:
        """A block missing a required field should raise InvalidTurn."""
        with pytest.raises(InvalidTurn, match="missing field"):
            block_from_dict({"type": "tool_result"})

    def test_non_string_text_raises(self) -> None:
        """Text fields must be strings."""
        with pytest.raises(InvalidTurn):
            block_from_dict({"type": "text", "text": 42})


class TestTurn:
    """Tests for Turn validation and serialization."""

    def test_valid_turn(self) -> None:
        """A well-formed turn should validate."""
        Turn(role="user", blocks=[TextBlock("hi")], ts=1706000000).validate()

    def test_rejects_unknown_role(self) -> None:
        """Only user and assistant roles are allowed."""
        with pytest.raises(InvalidTurn, match="role"):
            Turn(role="system", blocks=[TextBlock("hi")], ts=1).validate()

    def test_rejects_empty_blocks(self) -> None:
        """A turn must carry at least one block."""
        with pytest.raises(InvalidTurn, match="no blocks"):
            Turn(role="user", blocks=[], ts=1).validate()

    def test_rejects_negative_timestamp(self) -> None:
        """Timestamps must be non-negative integers."""
        with pytest.raises(InvalidTurn, match="timestamp"):
            Turn(role="user", blocks=[TextBlock("hi")], ts=-5).validate()

    def test_invalid_turn_is_value_error(self) -> None:
        """InvalidTurn should be catchable as ValueError."""
        with pytest.raises(ValueError):
            Turn(role="bot", blocks=[TextBlock("x")], ts=1).validate()

    def test_text_joins_text_blocks(self) -> None:
        """text should concatenate only text blocks."""
        turn = Turn(
            role="assistant",
            blocks=[TextBlock("one"), ThinkingBlock("skip"), TextBlock("two")],
            ts=1,
        )
        assert turn.text == "one\ntwo"

    def test_from_dict_validates(self) -> None:
        """from_dict should reject structurally invalid data."""
        with pytest.raises(InvalidTurn):
            Turn.from_dict({"role": "user", "ts": 1, "blocks": "nope"})
        with pytest.raises(InvalidTurn):
            Turn.from_dict({"role": "user", "blocks": [{"type": "text", "text": "a"}]})


class TestSerializedSize:
    """Tests for serialized_size."""

    def test_string_counts_utf8_bytes(self) -> None:
        assert serialized_size("é") == 2

    def test_structured_value_uses_json(self) -> None:
        assert serialized_size({"a": 1}) == len('{"a": 1}')


class TestCompressionRecord:
    """Tests for CompressionRecord."""

    def test_saved_and_compressed_counts(self) -> None:
        record = CompressionRecord(
            handle="issue-1.jsonl",
            original_bytes=1000,
            compressed_bytes=300,
            tool_calls_compressed=1,
            tool_results_compressed=2,
            thinking_removed=3,
        )
        assert record.saved_bytes == 700
        assert record.blocks_compressed == 6
        assert record.to_dict()["saved_bytes"] == 700


class TestIndexEntry:
    """Tests for IndexEntry."""

    def test_typesense_doc_has_id(self) -> None:
        entry = IndexEntry(
            association_id="42",
            title="Fix login",
            created_at=1,
            updated_at=2,
            turn_count=3,
            summary="s",
        )
        doc = entry.to_typesense_doc()
        assert doc["id"] == "42"
        assert doc["title"] == "Fix login"

    def test_from_dict_coerces_id(self) -> None:
        entry = IndexEntry.from_dict({"association_id": 7, "title": "t"})
        assert entry.association_id == "7"
        assert entry.keywords == []


class TestVerificationResults:
    """Tests for verification result models."""

    def test_optional_failure_is_not_blocking(self) -> None:
        """An optional stage failure should not fail the iteration."""
        iteration = IterationResult(
            number=1,
            results=[make_result("typecheck", True), make_result("lint", False, optional=True)],
        )
        assert iteration.passed
        assert iteration.blocking_failures == []

    def test_blocking_failure(self) -> None:
        iteration = IterationResult(number=1, results=[make_result("test", False)])
        assert not iteration.passed
        assert [r.name for r in iteration.blocking_failures] == ["test"]

    def test_status(self) -> None:
        assert VerificationResult(passed=True, skipped=True).status == "skipped"
        assert VerificationResult(passed=True).status == "passed"
        assert VerificationResult(passed=False).status == "failed"

    def test_final_results_from_last_iteration(self) -> None:
        first = IterationResult(number=1, results=[make_result("test", False)])
        second = IterationResult(number=2, results=[make_result("test", True)])
        result = VerificationResult(passed=True, iterations=[first, second])
        assert result.final_results == second.results
        assert result.to_dict()["blocking_failures"] == []
