"""Detect verification stages from the tooling present in a working tree.

Detection only ever adds stages. A tree with nothing recognisable yields no
stages, and the pipeline then passes without running anything.
"""

import json
import re
import tomllib
from pathlib import Path
from typing import Any

from gitclaw_state.config import VerificationConfig
from gitclaw_state.logging import get_logger
from gitclaw_state.models import VerificationStage

logger = get_logger("verification")

STAGE_ORDER = ("typecheck", "lint", "test", "build")

# What `npm init` writes when a project has no tests
NPM_PLACEHOLDER_TEST = 'echo "Error: no test specified" && exit 1'

MAKE_TARGET_RE = re.compile(r"^([A-Za-z0-9_.-]+)\s*:(?!=)", re.MULTILINE)


def stage_sort_key(stage: VerificationStage) -> int:
    try:
        return STAGE_ORDER.index(stage.name)
    except ValueError:
        return len(STAGE_ORDER)


class _StageFactory:
    def __init__(self, timeouts: dict[str, int]) -> None:
        self._timeouts = timeouts

    def __call__(self, name: str, command: str, tool: str, optional: bool = False) -> VerificationStage:
        return VerificationStage(
            name=name,
            command=command,
            timeout_seconds=self._timeouts.get(name, 300),
            optional=optional,
            tool=tool,
        )


def _detect_node(tree: Path, make: _StageFactory) -> list[VerificationStage]:
    manifest = tree / "package.json"
    if not manifest.exists():
        return []
    try:
        data = json.loads(manifest.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        logger.warning("Unreadable package.json, skipping node stages: path=%s", manifest)
        return []

    scripts: dict[str, Any] = data.get("scripts") or {}
    if (tree / "pnpm-lock.yaml").exists():
        runner = "pnpm"
    elif (tree / "yarn.lock").exists():
        runner = "yarn"
    else:
        runner = "npm"

    stages = []
    if "typecheck" in scripts:
        stages.append(make("typecheck", f"{runner} run typecheck", runner))
    elif (tree / "tsconfig.json").exists():
        stages.append(make("typecheck", "npx tsc --noEmit", "tsc"))
    if "lint" in scripts:
        stages.append(make("lint", f"{runner} run lint", runner))
    test_script = scripts.get("test")
    if test_script and test_script.strip() != NPM_PLACEHOLDER_TEST:
        stages.append(make("test", f"{runner} test", runner))
    if "build" in scripts:
        stages.append(make("build", f"{runner} run build", runner))
    return stages


def _detect_python(tree: Path, make: _StageFactory) -> list[VerificationStage]:
    pyproject = tree / "pyproject.toml"
    if not (pyproject.exists() or (tree / "setup.py").exists() or (tree / "setup.cfg").exists()):
        return []

    tool: dict[str, Any] = {}
    if pyproject.exists():
        try:
            with open(pyproject, "rb") as f:
                tool = tomllib.load(f).get("tool", {})
        except (OSError, tomllib.TOMLDecodeError):
            logger.warning("Unreadable pyproject.toml: path=%s", pyproject)

    stages = []
    if "mypy" in tool or (tree / "mypy.ini").exists():
        stages.append(make("typecheck", "mypy .", "python"))
    if "ruff" in tool or (tree / "ruff.toml").exists() or (tree / ".ruff.toml").exists():
        stages.append(make("lint", "ruff check .", "python"))
    if "pytest" in tool or (tree / "pytest.ini").exists() or (tree / "tests").is_dir():
        stages.append(make("test", "pytest -q", "python"))
    return stages


def _detect_rust(tree: Path, make: _StageFactory) -> list[VerificationStage]:
    if not (tree / "Cargo.toml").exists():
        return []
    return [
        make("typecheck", "cargo check", "cargo"),
        make("lint", "cargo clippy", "cargo", optional=True),
        make("test", "cargo test", "cargo"),
        make("build", "cargo build", "cargo"),
    ]


def _detect_go(tree: Path, make: _StageFactory) -> list[VerificationStage]:
    if not (tree / "go.mod").exists():
        return []
    return [
        make("typecheck", "go vet ./...", "go"),
        make("test", "go test ./...", "go"),
        make("build", "go build ./...", "go"),
    ]


def _detect_make(tree: Path, make: _StageFactory, covered: set[str]) -> list[VerificationStage]:
    makefile = tree / "Makefile"
    if not makefile.exists():
        return []
    try:
        targets = set(MAKE_TARGET_RE.findall(makefile.read_text(encoding="utf-8")))
    except OSError:
        return []
    return [make(name, f"make {name}", "make") for name in STAGE_ORDER if name in targets and name not in covered]


def detect(working_tree: Path, config: VerificationConfig | None = None) -> list[VerificationStage]:
    """Map recognisable manifests in a working tree to verification stages.

    Args:
        working_tree: Root of the checked-out tree
        config: Verification config (explicit stages, disabled names, timeouts)

    Returns:
        Stages ordered typecheck, lint, test, build; empty if nothing applies
    """
    config = config or VerificationConfig()

    if config.stages:
        stages = list(config.stages)
    else:
        make = _StageFactory(config.timeouts)
        stages = []
        for detector in (_detect_node, _detect_python, _detect_rust, _detect_go):
            stages.extend(detector(working_tree, make))
        stages.extend(_detect_make(working_tree, make, {s.name for s in stages}))

    stages = [s for s in stages if s.name not in config.disabled]
    stages.sort(key=stage_sort_key)

    if stages:
        logger.info(
            "Detected verification stages: tree=%s stages=%s",
            working_tree,
            ",".join(f"{s.name}:{s.tool}" for s in stages),
        )
    else:
        logger.info("No verification tooling detected: tree=%s", working_tree)
    return stages
