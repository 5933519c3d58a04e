"""Logging setup for gitclaw-state components.

Every module logs through a child of the ``gitclaw_state`` logger. A CLI or
daemon calls ``setup_logging`` once; its handlers are attached to the package
logger so all components end up in the same file. Purge records go to the
``gitclaw_state.audit`` logger and are additionally kept in ``audit.log``,
which is never shared with component output.
"""

import logging
import sys
from pathlib import Path

PACKAGE_LOGGER = "gitclaw_state"
AUDIT_LOGGER = f"{PACKAGE_LOGGER}.audit"

DEFAULT_LOG_DIR = Path.home() / ".gitclaw" / "logs"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _file_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    name: str,
    log_dir: Path | None = None,
    level: int = logging.INFO,
    console: bool = True,
) -> logging.Logger:
    """Configure logging for a gitclaw-state process.

    Args:
        name: Component name; output goes to <log_dir>/<name>.log
        log_dir: Directory for log files (defaults to ~/.gitclaw/logs/)
        level: Logging level (defaults to INFO)
        console: Whether to also log to stderr

    Returns:
        The component's logger
    """
    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)
    logger = get_logger(name)
    logger.setLevel(level)

    # First call wins
    if package_logger.handlers:
        return logger

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    package_logger.addHandler(_file_handler(log_dir / f"{name}.log", level, formatter))
    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

    audit_logger = logging.getLogger(AUDIT_LOGGER)
    audit_logger.setLevel(logging.INFO)
    audit_logger.addHandler(_file_handler(log_dir / "audit.log", logging.INFO, formatter))

    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger for a component, e.g. get_logger("store") -> gitclaw_state.store."""
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
