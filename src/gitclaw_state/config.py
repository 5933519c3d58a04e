"""Configuration loading and management."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from gitclaw_state.models import VerificationStage

DEFAULT_STAGE_TIMEOUTS = {"typecheck": 180, "lint": 180, "test": 600, "build": 600}


@dataclass
class StoreConfig:
    sessions_path: Path = field(default_factory=lambda: Path(".gitclaw/sessions"))
    backups_path: Path = field(default_factory=lambda: Path(".gitclaw/backups"))
    state_db: Path = field(default_factory=lambda: Path(".gitclaw/state/state.db"))


@dataclass
class CompressionConfig:
    min_transcript_bytes: int = 256_000
    protect_recent_turns: int = 4
    tool_call_threshold_bytes: int = 1024
    tool_result_threshold_bytes: int = 2048
    preview_head_chars: int = 120
    preview_tail_chars: int = 80
    backup: bool = True


@dataclass
class LifecycleConfig:
    dormant_after_days: int = 7
    archive_after_days: int = 30
    purge_after_days: int = 365
    archive_path: Path = field(default_factory=lambda: Path(".gitclaw-archive"))
    status_file: Path | None = None
    interval_seconds: int = 3600


@dataclass
class IndexConfig:
    index_path: Path = field(default_factory=lambda: Path(".gitclaw/index/sessions.json"))
    title_chars: int = 100
    summary_chars: int = 300
    max_keywords: int = 20
    max_files: int = 50
    max_decisions: int = 10


@dataclass
class VerificationConfig:
    max_iterations: int = 3
    output_limit_bytes: int = 8000
    prompt_tail_chars: int = 3000
    timeouts: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_STAGE_TIMEOUTS))
    disabled: list[str] = field(default_factory=list)
    stages: list[VerificationStage] = field(default_factory=list)
    report_path: Path | None = None


@dataclass
class TypesenseConfig:
    enabled: bool = False
    host: str = "localhost"
    port: int = 8108
    protocol: str = "http"
    api_key: str = "dev-api-key"
    collection: str = "sessions"


@dataclass
class Config:
    store: StoreConfig = field(default_factory=StoreConfig)
    compression: CompressionConfig = field(default_factory=CompressionConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    typesense: TypesenseConfig = field(default_factory=TypesenseConfig)


def expand_env_var(value: str) -> str:
    """Expand environment variables in string (e.g. ${VAR})."""
    if value.startswith("${") and value.endswith("}"):
        env_var = value[2:-1]
        return os.environ.get(env_var, value)
    return value


def expand_path(path_str: str | Path) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expandvars(os.path.expanduser(str(path_str))))


def _parse_stages(stages_data: list[dict[str, Any]], timeouts: dict[str, int]) -> list[VerificationStage]:
    stages = []
    for item in stages_data:
        name = item["name"]
        stages.append(
            VerificationStage(
                name=name,
                command=item["command"],
                timeout_seconds=int(item.get("timeout_seconds", timeouts.get(name, 300))),
                optional=bool(item.get("optional", False)),
                tool="custom",
            )
        )
    return stages


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file."""
    if config_path is None:
        # Look for config in standard locations
        search_paths = [
            Path.cwd() / "gitclaw.yaml",
            Path.cwd() / ".gitclaw" / "config.yaml",
            Path.home() / ".config" / "gitclaw" / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = path
                break

    if config_path is None or not config_path.exists():
        return Config()

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    store_data = data.get("store", {})
    store = StoreConfig(
        sessions_path=expand_path(store_data.get("sessions_path", ".gitclaw/sessions")),
        backups_path=expand_path(store_data.get("backups_path", ".gitclaw/backups")),
        state_db=expand_path(store_data.get("state_db", ".gitclaw/state/state.db")),
    )

    comp_data = data.get("compression", {})
    defaults = CompressionConfig()
    compression = CompressionConfig(
        min_transcript_bytes=comp_data.get("min_transcript_bytes", defaults.min_transcript_bytes),
        protect_recent_turns=comp_data.get("protect_recent_turns", defaults.protect_recent_turns),
        tool_call_threshold_bytes=comp_data.get(
            "tool_call_threshold_bytes", defaults.tool_call_threshold_bytes
        ),
        tool_result_threshold_bytes=comp_data.get(
            "tool_result_threshold_bytes", defaults.tool_result_threshold_bytes
        ),
        preview_head_chars=comp_data.get("preview_head_chars", defaults.preview_head_chars),
        preview_tail_chars=comp_data.get("preview_tail_chars", defaults.preview_tail_chars),
        backup=comp_data.get("backup", defaults.backup),
    )

    # Retention windows, in days
    lc_data = data.get("lifecycle", {})
    status_file = lc_data.get("status_file")
    lifecycle = LifecycleConfig(
        dormant_after_days=lc_data.get("dormant_after_days", 7),
        archive_after_days=lc_data.get("archive_after_days", 30),
        purge_after_days=lc_data.get("purge_after_days", 365),
        archive_path=expand_path(lc_data.get("archive_path", ".gitclaw-archive")),
        status_file=expand_path(status_file) if status_file else None,
        interval_seconds=lc_data.get("interval_seconds", 3600),
    )

    idx_data = data.get("index", {})
    idx_defaults = IndexConfig()
    index = IndexConfig(
        index_path=expand_path(idx_data.get("index_path", ".gitclaw/index/sessions.json")),
        title_chars=idx_data.get("title_chars", idx_defaults.title_chars),
        summary_chars=idx_data.get("summary_chars", idx_defaults.summary_chars),
        max_keywords=idx_data.get("max_keywords", idx_defaults.max_keywords),
        max_files=idx_data.get("max_files", idx_defaults.max_files),
        max_decisions=idx_data.get("max_decisions", idx_defaults.max_decisions),
    )

    ver_data = data.get("verification", {})
    timeouts = dict(DEFAULT_STAGE_TIMEOUTS)
    timeouts.update(ver_data.get("timeouts", {}))
    report_path = ver_data.get("report_path")
    verification = VerificationConfig(
        max_iterations=ver_data.get("max_iterations", 3),
        output_limit_bytes=ver_data.get("output_limit_bytes", 8000),
        prompt_tail_chars=ver_data.get("prompt_tail_chars", 3000),
        timeouts=timeouts,
        disabled=list(ver_data.get("disabled", [])),
        stages=_parse_stages(ver_data.get("stages", []), timeouts),
        report_path=expand_path(report_path) if report_path else None,
    )

    ts_data = data.get("typesense", {})
    api_key = expand_env_var(ts_data.get("api_key", "dev-api-key"))

    typesense = TypesenseConfig(
        enabled=ts_data.get("enabled", False),
        host=ts_data.get("host", "localhost"),
        port=ts_data.get("port", 8108),
        protocol=ts_data.get("protocol", "http"),
        api_key=api_key,
        collection=ts_data.get("collection", "sessions"),
    )

    return Config(
        store=store,
        compression=compression,
        lifecycle=lifecycle,
        index=index,
        verification=verification,
        typesense=typesense,
    )
