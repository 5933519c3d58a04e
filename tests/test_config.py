"""Tests for configuration loading."""

from pathlib import Path

import pytest

from gitclaw_state.config import (
    DEFAULT_STAGE_TIMEOUTS,
    Config,
    expand_env_var,
    expand_path,
    load_config,
)


class TestExpansion:
    """Tests for path and environment expansion."""

    def test_expand_env_var(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GITCLAW_TEST_KEY", "secret")
        assert expand_env_var("${GITCLAW_TEST_KEY}") == "secret"

    def test_expand_env_var_unset_kept(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GITCLAW_UNSET", raising=False)
        assert expand_env_var("${GITCLAW_UNSET}") == "${GITCLAW_UNSET}"

    def test_plain_value_unchanged(self) -> None:
        assert expand_env_var("plain") == "plain"

    def test_expand_path_home(self) -> None:
        assert expand_path("~/x") == Path.home() / "x"


class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        config = load_config(tmp_path / "missing.yaml")
        assert config == Config()
        assert config.lifecycle.dormant_after_days == 7
        assert config.lifecycle.archive_after_days == 30
        assert config.lifecycle.purge_after_days == 365
        assert config.verification.timeouts == DEFAULT_STAGE_TIMEOUTS

    def test_searches_working_directory(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        (tmp_path / "gitclaw.yaml").write_text("compression:\n  protect_recent_turns: 9\n")
        monkeypatch.chdir(tmp_path)
        assert load_config().compression.protect_recent_turns == 9

    def test_loads_all_sections(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TS_KEY", "from-env")
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            f"""
store:
  sessions_path: {tmp_path}/sessions
  state_db: {tmp_path}/state.db
compression:
  min_transcript_bytes: 1000
  backup: false
lifecycle:
  dormant_after_days: 3
  archive_path: {tmp_path}/archive
  status_file: {tmp_path}/status.yaml
index:
  index_path: {tmp_path}/index.json
  max_keywords: 5
verification:
  max_iterations: 2
  disabled: [build]
  timeouts:
    test: 30
  stages:
    - name: test
      command: make check
typesense:
  enabled: true
  api_key: ${{TS_KEY}}
"""
        )

        config = load_config(config_file)

        assert config.store.sessions_path == tmp_path / "sessions"
        assert config.store.backups_path == Path(".gitclaw/backups")
        assert config.compression.min_transcript_bytes == 1000
        assert config.compression.backup is False
        assert config.compression.protect_recent_turns == 4
        assert config.lifecycle.dormant_after_days == 3
        assert config.lifecycle.status_file == tmp_path / "status.yaml"
        assert config.index.max_keywords == 5
        assert config.verification.max_iterations == 2
        assert config.verification.disabled == ["build"]
        assert config.verification.timeouts["test"] == 30
        assert config.verification.timeouts["lint"] == 180
        [stage] = config.verification.stages
        assert (stage.name, stage.command, stage.timeout_seconds, stage.tool) == ("test", "make check", 30, "custom")
        assert config.typesense.enabled is True
        assert config.typesense.api_key == "from-env"

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "empty.yaml"
        config_file.write_text("")
        assert load_config(config_file) == Config()
