"""Run a single verification stage as a child process."""

import os
import shlex
import signal
import subprocess
import tempfile
import time
from pathlib import Path
from typing import IO

from gitclaw_state.logging import get_logger
from gitclaw_state.models import StageResult, VerificationStage

logger = get_logger("verification")

DEFAULT_OUTPUT_LIMIT = 8000


def _tail(f: IO[bytes], limit: int) -> str:
    """Last `limit` bytes of a spooled output file."""
    f.seek(0, os.SEEK_END)
    size = f.tell()
    start = max(0, size - limit)
    f.seek(start)
    text = f.read().decode("utf-8", errors="replace")
    if start > 0:
        text = f"[... {start} bytes truncated ...]\n{text}"
    return text


def _kill(proc: subprocess.Popen) -> None:
    """Kill the stage's whole process group, falling back to the child."""
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass
    except OSError:
        proc.kill()


def run_stage(
    stage: VerificationStage,
    working_tree: Path,
    output_limit: int = DEFAULT_OUTPUT_LIMIT,
) -> StageResult:
    """Execute a stage's command with its timeout.

    Output goes to temporary files and only the tail is kept, so a noisy
    command cannot grow memory without bound. On timeout the process group
    is killed and the result is marked timed out.

    Args:
        stage: Stage to run
        working_tree: Directory to run the command in
        output_limit: Maximum bytes kept of each of stdout and stderr

    Returns:
        StageResult; a command that cannot be started is a failed result
    """
    start = time.monotonic()

    def failed_to_start(error: str) -> StageResult:
        logger.warning("Stage could not start: stage=%s command=%s error=%s", stage.name, stage.command, error)
        return StageResult(
            name=stage.name,
            command=stage.command,
            passed=False,
            exit_code=None,
            stdout="",
            stderr="",
            duration=time.monotonic() - start,
            optional=stage.optional,
            error=error,
        )

    try:
        argv = shlex.split(stage.command)
    except ValueError as e:
        return failed_to_start(f"invalid command: {e}")
    if not argv:
        return failed_to_start("empty command")

    with tempfile.TemporaryFile() as out, tempfile.TemporaryFile() as err:
        try:
            proc = subprocess.Popen(
                argv,
                cwd=working_tree,
                stdin=subprocess.DEVNULL,
                stdout=out,
                stderr=err,
                start_new_session=True,
            )
        except OSError as e:
            return failed_to_start(str(e))

        timed_out = False
        try:
            exit_code = proc.wait(timeout=stage.timeout_seconds)
        except subprocess.TimeoutExpired:
            timed_out = True
            _kill(proc)
            exit_code = proc.wait()

        duration = time.monotonic() - start
        stdout = _tail(out, output_limit)
        stderr = _tail(err, output_limit)

    passed = exit_code == 0 and not timed_out
    logger.info(
        "Stage finished: stage=%s passed=%s exit_code=%s timed_out=%s duration=%.1fs",
        stage.name,
        passed,
        exit_code,
        timed_out,
        duration,
    )
    return StageResult(
        name=stage.name,
        command=stage.command,
        passed=passed,
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        duration=duration,
        timed_out=timed_out,
        optional=stage.optional,
    )
