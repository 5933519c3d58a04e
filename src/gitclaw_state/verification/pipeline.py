"""Build-verify-fix loop over a working tree.

Runs the detected stages in order. When a non-optional stage fails and
attempts remain, the failures are summarised into a prompt for the fix
callback (an external agent run that edits the tree) and the stages are
run again. The pipeline never decides whether to commit: it returns a
VerificationResult and the caller chooses.
"""

import json
import os
import shlex
import subprocess
import tempfile
import time
from collections.abc import Callable
from pathlib import Path

from gitclaw_state.config import VerificationConfig
from gitclaw_state.logging import get_logger
from gitclaw_state.models import IterationResult, StageResult, VerificationResult, VerificationStage
from gitclaw_state.verification.detect import detect, stage_sort_key
from gitclaw_state.verification.runner import DEFAULT_OUTPUT_LIMIT, run_stage

logger = get_logger("verification")

FixCallback = Callable[[str], object]

DEFAULT_PROMPT_TAIL_CHARS = 3000


def run_iteration(
    stages: list[VerificationStage],
    working_tree: Path,
    number: int = 1,
    output_limit: int = DEFAULT_OUTPUT_LIMIT,
) -> IterationResult:
    """Run stages in order, stopping at the first blocking failure."""
    ordered = sorted(stages, key=stage_sort_key)
    iteration = IterationResult(number=number)

    for position, stage in enumerate(ordered):
        result = run_stage(stage, working_tree, output_limit)
        iteration.results.append(result)
        if result.blocking:
            iteration.skipped = [s.name for s in ordered[position + 1 :]]
            if iteration.skipped:
                logger.info(
                    "Skipping remaining stages: iteration=%d failed=%s skipped=%s",
                    number,
                    stage.name,
                    ",".join(iteration.skipped),
                )
            break

    return iteration


def _describe_failure(result: StageResult) -> str:
    if result.error:
        return f"Could not start: {result.error}"
    if result.timed_out:
        return f"Timed out after {result.duration:.0f}s"
    return f"Exit code: {result.exit_code}"


def _output_tail(result: StageResult, tail_chars: int) -> str:
    output = "\n".join(part for part in (result.stdout.strip(), result.stderr.strip()) if part)
    if len(output) > tail_chars:
        output = output[-tail_chars:]
    return output


def build_fix_prompt(iteration: IterationResult, output_tail_chars: int = DEFAULT_PROMPT_TAIL_CHARS) -> str:
    """Summarise an iteration's blocking failures for the fix callback."""
    lines = [
        f"Verification attempt {iteration.number} failed. "
        "Fix the problems below in the working tree. "
        "Do not disable, skip or delete the failing checks.",
    ]
    for result in iteration.blocking_failures:
        lines.append("")
        lines.append(f"## {result.name} failed")
        lines.append(f"Command: {result.command}")
        lines.append(_describe_failure(result))
        tail = _output_tail(result, output_tail_chars)
        if tail:
            lines.append("Output (tail):")
            lines.append("```")
            lines.append(tail)
            lines.append("```")
    if iteration.skipped:
        lines.append("")
        lines.append(f"Not run because of the failure above: {', '.join(iteration.skipped)}")
    return "\n".join(lines) + "\n"


def run_pipeline(
    stages: list[VerificationStage],
    working_tree: Path,
    fix_callback: FixCallback | None = None,
    max_iterations: int = 3,
    output_limit: int = DEFAULT_OUTPUT_LIMIT,
    prompt_tail_chars: int = DEFAULT_PROMPT_TAIL_CHARS,
    redetect: Callable[[], list[VerificationStage]] | None = None,
) -> VerificationResult:
    """Run the build-verify-fix loop.

    Args:
        stages: Stages to run; empty means nothing to verify
        working_tree: Directory the stage commands run in
        fix_callback: Called with a fix prompt between failed attempts
        max_iterations: Maximum number of verification attempts
        output_limit: Bytes of stdout/stderr kept per stage
        prompt_tail_chars: Characters of output included per failure in the prompt
        redetect: Called after each fix to pick up tooling the fix added

    Returns:
        VerificationResult; the fix callback runs at most max_iterations - 1 times
    """
    if max_iterations < 1:
        raise ValueError(f"max_iterations must be at least 1, got {max_iterations}")

    start = time.monotonic()
    if not stages:
        logger.info("Verification skipped, no stages: tree=%s", working_tree)
        return VerificationResult(passed=True, skipped=True)

    result = VerificationResult(passed=False)
    for number in range(1, max_iterations + 1):
        iteration = run_iteration(stages, working_tree, number, output_limit)
        result.iterations.append(iteration)

        if iteration.passed:
            result.passed = True
            break
        if number == max_iterations or fix_callback is None:
            break

        prompt = build_fix_prompt(iteration, prompt_tail_chars)
        logger.info(
            "Invoking fix callback: iteration=%d failures=%s",
            number,
            ",".join(r.name for r in iteration.blocking_failures),
        )
        try:
            fix_callback(prompt)
        except Exception as e:
            logger.exception("Fix callback failed: iteration=%d", number)
            result.fix_error = str(e) or type(e).__name__
            break

        if redetect is not None:
            stages = redetect() or stages

    result.duration = time.monotonic() - start
    logger.info(
        "Verification finished: status=%s iterations=%d duration=%.1fs",
        result.status,
        len(result.iterations),
        result.duration,
    )
    return result


def verify_working_tree(
    working_tree: Path,
    config: VerificationConfig | None = None,
    fix_callback: FixCallback | None = None,
) -> VerificationResult:
    """Detect stages for a working tree and run the loop with config limits."""
    config = config or VerificationConfig()
    stages = detect(working_tree, config)
    result = run_pipeline(
        stages,
        working_tree,
        fix_callback=fix_callback,
        max_iterations=config.max_iterations,
        output_limit=config.output_limit_bytes,
        prompt_tail_chars=config.prompt_tail_chars,
        redetect=lambda: detect(working_tree, config),
    )
    if config.report_path is not None:
        write_report(result, config.report_path)
    return result


def write_report(result: VerificationResult, path: Path) -> None:
    """Write a JSON report of a verification run atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(result.to_dict(), f, indent=2)
            f.write("\n")
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    logger.info("Wrote verification report: path=%s status=%s", path, result.status)


class CommandFixCallback:
    """Fix callback that pipes the prompt to an agent command on stdin."""

    def __init__(self, command: str, cwd: Path, timeout_seconds: int | None = None) -> None:
        self.argv = shlex.split(command)
        if not self.argv:
            raise ValueError("fix command is empty")
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds

    def __call__(self, prompt: str) -> None:
        completed = subprocess.run(
            self.argv,
            cwd=self.cwd,
            input=prompt,
            capture_output=True,
            text=True,
            timeout=self.timeout_seconds,
            check=False,
        )
        if completed.returncode != 0:
            stderr = completed.stderr.strip()[-500:]
            raise RuntimeError(f"fix command exited with {completed.returncode}: {stderr}")
