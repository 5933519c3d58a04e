"""Lifecycle sweeper main loop for compressing, archiving and purging transcripts."""

import time
from collections.abc import Iterator
from contextlib import contextmanager

from gitclaw_state.compression.compressor import Compressor
from gitclaw_state.config import Config
from gitclaw_state.index.service import build_index_service
from gitclaw_state.lifecycle.archive_index import ArchiveIndex
from gitclaw_state.lifecycle.manager import LifecycleManager, SweepReport
from gitclaw_state.lifecycle.status import (
    AssociationStatusProvider,
    FileStatusProvider,
    StaticStatusProvider,
)
from gitclaw_state.lifecycle.transport import DirectoryArchiveTransport
from gitclaw_state.logging import get_logger, setup_logging
from gitclaw_state.store.mapping import MappingStore
from gitclaw_state.store.transcript import TranscriptStore

logger = get_logger("sweeper")

# Global flag for graceful shutdown
_shutdown_requested = False


def request_shutdown() -> None:
    """Request graceful shutdown of the sweeper."""
    global _shutdown_requested
    _shutdown_requested = True


def is_shutdown_requested() -> bool:
    """Check if shutdown has been requested."""
    return _shutdown_requested


def reset_shutdown() -> None:
    """Reset shutdown flag (useful for testing)."""
    global _shutdown_requested
    _shutdown_requested = False


def build_status_provider(config: Config) -> AssociationStatusProvider:
    """Status provider from the configured status file, or an empty one."""
    if config.lifecycle.status_file is not None:
        return FileStatusProvider(config.lifecycle.status_file)
    logger.warning("No status file configured, classifying by idle time only")
    return StaticStatusProvider()


@contextmanager
def open_lifecycle_manager(
    config: Config,
    status_provider: AssociationStatusProvider | None = None,
) -> Iterator[LifecycleManager]:
    """Wire a LifecycleManager from configuration, closing its databases on exit."""
    store = TranscriptStore(config.store.sessions_path, config.store.backups_path)
    with MappingStore(config.store.state_db) as mappings, ArchiveIndex(config.store.state_db) as archive_index:
        yield LifecycleManager(
            store=store,
            mappings=mappings,
            archive_index=archive_index,
            transport=DirectoryArchiveTransport(config.lifecycle.archive_path),
            compressor=Compressor(store, config.compression),
            status_provider=status_provider or build_status_provider(config),
            config=config.lifecycle,
            index_service=build_index_service(config, store, mappings),
        )


def run_sweep_cycle(manager: LifecycleManager, now: int | None = None) -> SweepReport:
    """Run one sweep, refreshing file-based statuses first."""
    if now is None:
        now = int(time.time())
    if isinstance(manager.status_provider, FileStatusProvider):
        manager.status_provider.reload()
    return manager.sweep(now)


def run_sweeper(config: Config, interval_seconds: int | None = None) -> None:
    """Run the lifecycle sweeper main loop.

    Sweeps all mappings, archiving and purging what is eligible. Repeats on
    the configured interval until shutdown is requested.

    Args:
        config: Application configuration
        interval_seconds: Seconds between sweeps (defaults to config value)
    """
    reset_shutdown()

    setup_logging("sweeper")

    if interval_seconds is None:
        interval_seconds = config.lifecycle.interval_seconds

    logger.info(
        "Starting lifecycle sweeper: sessions=%s archive=%s state_db=%s interval=%ds",
        config.store.sessions_path,
        config.lifecycle.archive_path,
        config.store.state_db,
        interval_seconds,
    )

    with open_lifecycle_manager(config) as manager:
        while not is_shutdown_requested():
            try:
                run_sweep_cycle(manager)
            except Exception:
                logger.exception("Sweep failed")

            if is_shutdown_requested():
                break

            logger.debug("Waiting %ds until next sweep", interval_seconds)

            # Sleep in small increments to allow graceful shutdown
            sleep_remaining = float(interval_seconds)
            while sleep_remaining > 0 and not is_shutdown_requested():
                sleep_time = min(1.0, sleep_remaining)
                time.sleep(sleep_time)
                sleep_remaining -= sleep_time

    logger.info("Lifecycle sweeper stopped")
