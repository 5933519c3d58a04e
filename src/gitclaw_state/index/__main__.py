"""CLI entry point for the session index.

Allows searching past conversations and rebuilding the index:
    python -m gitclaw_state.index search "caching strategy"
"""

import json
import sys
from datetime import datetime
from pathlib import Path

import click

from gitclaw_state.config import Config, load_config
from gitclaw_state.index.service import IndexService, build_index_service
from gitclaw_state.index.session_index import SearchHit
from gitclaw_state.logging import setup_logging
from gitclaw_state.store.mapping import MappingStore
from gitclaw_state.store.transcript import TranscriptStore


def format_timestamp(ts: int) -> str:
    """Format timestamp for display."""
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def print_hit(hit: SearchHit, verbose: bool = False) -> None:
    """Print a search hit."""
    entry = hit.entry

    click.echo(f"\033[36m[{format_timestamp(entry.updated_at)}]\033[0m \033[1m#{entry.association_id} {entry.title}\033[0m")
    click.echo(f"Score: {hit.score} ({', '.join(hit.matched_fields)}) | Turns: {entry.turn_count}")
    if entry.summary:
        click.echo(f"Summary: {entry.summary}")
    if verbose:
        for decision in entry.decisions:
            click.echo(f"  - {decision}")
        if entry.files:
            click.echo(f"Files: {', '.join(entry.files)}")
    click.echo("-" * 40)


def _open_service(config: Config) -> tuple[IndexService, MappingStore]:
    store = TranscriptStore(config.store.sessions_path, config.store.backups_path)
    mappings = MappingStore(config.store.state_db)
    return build_index_service(config, store, mappings), mappings


@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), help="Config file")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """Search and maintain the session index."""
    setup_logging("index", console=False)
    ctx.obj = load_config(config_path)


@cli.command("search")
@click.argument("query")
@click.option("--limit", "-n", default=10, help="Number of results")
@click.option("--verbose", "-v", is_flag=True, help="Show decisions and files")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@click.pass_obj
def search_command(config: Config, query: str, limit: int, verbose: bool, as_json: bool) -> None:
    """Search past conversations."""
    service, mappings = _open_service(config)
    try:
        hits = service.search(query, limit=limit)
    finally:
        mappings.close()

    if as_json:
        click.echo(json.dumps(
            [{"score": h.score, "matched_fields": h.matched_fields, **h.entry.to_dict()} for h in hits],
            indent=2,
        ))
        return

    click.echo(f"Found {len(hits)} conversations:\n")
    for hit in hits:
        print_hit(hit, verbose)


@cli.command()
@click.argument("association_id")
@click.pass_obj
def show(config: Config, association_id: str) -> None:
    """Show the index entry for one association."""
    service, mappings = _open_service(config)
    try:
        entry = service.load().get(association_id)
    finally:
        mappings.close()

    if entry is None:
        click.echo(f"No index entry for {association_id}", err=True)
        sys.exit(1)
    click.echo(json.dumps(entry.to_dict(), indent=2))


@cli.command("rebuild")
@click.pass_obj
def rebuild_command(config: Config) -> None:
    """Rebuild the index from every active transcript."""
    service, mappings = _open_service(config)
    try:
        index = service.rebuild()
    finally:
        mappings.close()
    click.echo(f"Indexed {len(index)} conversations")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
