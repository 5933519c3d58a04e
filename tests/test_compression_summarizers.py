"""Tests for tool-call summarizers."""

from gitclaw_state.compression.summarizers import (
    FileEditSummarizer,
    FileWriteSummarizer,
    GenericSummarizer,
    ShellSummarizer,
    SummarizerRegistry,
    find_target,
)


class TestFindTarget:
    """Tests for find_target."""

    def test_prefers_path_keys(self) -> None:
        assert find_target({"content": "x", "file_path": "a.py"}) == "a.py"

    def test_none_for_non_dict(self) -> None:
        assert find_target("just a string") is None

    def test_none_when_no_key(self) -> None:
        assert find_target({"content": "x"}) is None


class TestSummarizerRegistry:
    """Tests for SummarizerRegistry."""

    def test_lookup_is_case_insensitive(self) -> None:
        assert isinstance(SummarizerRegistry.get("Write"), FileWriteSummarizer)
        assert isinstance(SummarizerRegistry.get("BASH"), ShellSummarizer)
        assert isinstance(SummarizerRegistry.get("MultiEdit"), FileEditSummarizer)

    def test_unknown_tool_falls_back(self) -> None:
        assert isinstance(SummarizerRegistry.get("web_fetch"), GenericSummarizer)

    def test_tool_names_sorted(self) -> None:
        names = SummarizerRegistry.tool_names()
        assert names == sorted(names)
        assert "write" in names


class TestFileWriteSummarizer:
    """Tests for FileWriteSummarizer."""

    def test_counts_content_lines(self) -> None:
        summary = FileWriteSummarizer().summarize({"path": "src/a.py", "content": "one\ntwo\nthree\n"})
        assert summary.target == "src/a.py"
        assert summary.lines == 3
        assert summary.content == "one\ntwo\nthree\n"

    def test_non_dict_arguments(self) -> None:
        summary = FileWriteSummarizer().summarize("raw body")
        assert summary.target is None
        assert summary.lines == 1


class TestFileEditSummarizer:
    """Tests for FileEditSummarizer."""

    def test_uses_replacement_text(self) -> None:
        summary = FileEditSummarizer().summarize(
            {"file_path": "b.py", "old_string": "old", "new_string": "new\nlines"}
        )
        assert summary.target == "b.py"
        assert summary.content == "new\nlines"
        assert summary.lines == 2

    def test_multi_edit_joins_edits(self) -> None:
        summary = FileEditSummarizer().summarize(
            {"file_path": "c.py", "edits": [{"new_string": "a"}, {"new_string": "b"}]}
        )
        assert summary.content == "a\nb"


class TestShellSummarizer:
    """Tests for ShellSummarizer."""

    def test_target_is_first_line(self) -> None:
        summary = ShellSummarizer().summarize({"command": "cat <<EOF > f.txt\nbody\nEOF"})
        assert summary.target == "cat <<EOF > f.txt"
        assert summary.lines == 3

    def test_empty_command(self) -> None:
        summary = ShellSummarizer().summarize({})
        assert summary.target is None
        assert summary.lines == 0


class TestGenericSummarizer:
    """Tests for GenericSummarizer."""

    def test_serializes_structured_arguments(self) -> None:
        summary = GenericSummarizer().summarize({"url": "https://example.com", "b": 1})
        assert summary.target == "https://example.com"
        assert summary.content.startswith("{")
