"""CLI entry point for the lifecycle sweeper.

Allows running the sweeper as a module:
    python -m gitclaw_state.lifecycle run
"""

import json
import signal
import sys
import time
from pathlib import Path
from types import FrameType

import click

from gitclaw_state.compression.compressor import Compressor
from gitclaw_state.config import Config, load_config
from gitclaw_state.errors import RestoreError
from gitclaw_state.lifecycle.daemon import (
    open_lifecycle_manager,
    request_shutdown,
    run_sweep_cycle,
    run_sweeper,
)
from gitclaw_state.logging import get_logger, setup_logging
from gitclaw_state.store.mapping import MappingStore
from gitclaw_state.store.transcript import TranscriptStore

logger = get_logger("sweeper")


def signal_handler(signum: int, frame: FrameType | None) -> None:
    """Handle shutdown signals gracefully."""
    sig_name = signal.Signals(signum).name
    logger.info("Received signal %s, shutting down", sig_name)
    request_shutdown()


@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), help="Config file")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """Manage transcript lifecycle: compress, archive, restore, purge."""
    ctx.obj = load_config(config_path)


@cli.command()
@click.option("--interval", type=int, default=None, help="Seconds between sweeps")
@click.pass_obj
def run(config: Config, interval: int | None) -> None:
    """Run the sweeper until interrupted."""
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        run_sweeper(config, interval)
    except KeyboardInterrupt:
        # Handle case where signal handler didn't catch it
        logger.info("Interrupted, shutting down")
        request_shutdown()


@cli.command()
@click.pass_obj
def sweep(config: Config) -> None:
    """Run a single sweep and print the report."""
    setup_logging("sweeper")
    with open_lifecycle_manager(config) as manager:
        report = run_sweep_cycle(manager)
    click.echo(json.dumps(report.to_dict(), indent=2))


@cli.command()
@click.argument("association_id")
@click.pass_obj
def restore(config: Config, association_id: str) -> None:
    """Restore an archived transcript into the working set."""
    setup_logging("sweeper")
    with open_lifecycle_manager(config) as manager:
        try:
            handle = manager.restore(association_id, int(time.time()))
        except RestoreError as e:
            click.echo(f"Restore failed: {e}", err=True)
            sys.exit(1)
    click.echo(f"Restored {association_id} to {handle}")


@cli.command()
@click.argument("handle")
@click.option("--dry-run", is_flag=True, help="Report savings without writing")
@click.pass_obj
def compress(config: Config, handle: str, dry_run: bool) -> None:
    """Compress one transcript."""
    store = TranscriptStore(config.store.sessions_path, config.store.backups_path)
    record = Compressor(store, config.compression).compress(handle, dry_run=dry_run)
    click.echo(json.dumps(record.to_dict(), indent=2))


@cli.command()
@click.pass_obj
def status(config: Config) -> None:
    """Show the lifecycle state of every mapped association."""
    now = int(time.time())
    with open_lifecycle_manager(config) as manager, MappingStore(config.store.state_db) as mappings:
        for mapping in mappings.list_mappings():
            state = manager.classify(mapping.association_id, now)
            click.echo(f"{mapping.association_id}\t{state.value}\t{mapping.handle}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
