"""CLI for verifying a working tree before commit.

Usage:
    python -m gitclaw_state.verification [WORKTREE] --fix-command "agent --stdin"
"""

import sys
from pathlib import Path

import click

from gitclaw_state.config import load_config
from gitclaw_state.logging import setup_logging
from gitclaw_state.models import VerificationResult
from gitclaw_state.verification.detect import detect
from gitclaw_state.verification.pipeline import CommandFixCallback, run_pipeline, write_report


def print_summary(result: VerificationResult) -> None:
    click.echo(f"Verification {result.status} after {len(result.iterations)} iteration(s)")
    for stage in result.final_results:
        mark = "ok" if stage.passed else ("timeout" if stage.timed_out else "FAIL")
        suffix = " (optional)" if stage.optional and not stage.passed else ""
        click.echo(f"  {stage.name:<10} {mark}{suffix}  {stage.command}  [{stage.duration:.1f}s]")
    if result.iterations and result.iterations[-1].skipped:
        click.echo(f"  skipped: {', '.join(result.iterations[-1].skipped)}")
    if result.fix_error:
        click.echo(f"  fix callback error: {result.fix_error}")


@click.command()
@click.argument(
    "worktree",
    required=False,
    default=".",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
)
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), help="Config file")
@click.option("--max-iterations", type=click.IntRange(min=1), default=None, help="Verification attempts")
@click.option("--fix-command", default=None, help="Agent command that receives the fix prompt on stdin")
@click.option("--report", "report_path", type=click.Path(dir_okay=False, path_type=Path), help="Write a JSON report")
@click.option("--detect-only", is_flag=True, help="List detected stages and exit")
def main(
    worktree: Path,
    config_path: Path | None,
    max_iterations: int | None,
    fix_command: str | None,
    report_path: Path | None,
    detect_only: bool,
) -> None:
    """Run typecheck, lint, test and build stages for WORKTREE."""
    setup_logging("verification", console=False)
    config = load_config(config_path).verification
    worktree = worktree.resolve()

    stages = detect(worktree, config)
    if detect_only:
        if not stages:
            click.echo("No verification tooling detected")
        for stage in stages:
            optional = " (optional)" if stage.optional else ""
            click.echo(f"{stage.name}\t{stage.command}\t{stage.timeout_seconds}s{optional}")
        return

    fix_callback = CommandFixCallback(fix_command, worktree) if fix_command else None
    result = run_pipeline(
        stages,
        worktree,
        fix_callback=fix_callback,
        max_iterations=max_iterations or config.max_iterations,
        output_limit=config.output_limit_bytes,
        prompt_tail_chars=config.prompt_tail_chars,
        redetect=lambda: detect(worktree, config),
    )

    report_path = report_path or config.report_path
    if report_path is not None:
        write_report(result, report_path)

    print_summary(result)
    sys.exit(0 if result.passed else 1)


if __name__ == "__main__":
    main()
