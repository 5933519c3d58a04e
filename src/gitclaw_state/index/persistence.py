"""File persistence for the session index."""

import json
import os
import tempfile
from pathlib import Path

from gitclaw_state.index.session_index import SessionIndex
from gitclaw_state.logging import get_logger

logger = get_logger("index")


def load_index(path: Path) -> SessionIndex:
    """Load the index from disk.

    The index is a cache, so a missing or unreadable file yields an empty
    index instead of an error.
    """
    if not path.exists():
        return SessionIndex()
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return SessionIndex.from_dict(data)
    except (OSError, ValueError, KeyError, TypeError):
        logger.warning("Discarding unreadable session index: path=%s", path, exc_info=True)
        return SessionIndex()


def save_index(index: SessionIndex, path: Path) -> None:
    """Atomically write the index to disk."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(index.to_json())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    logger.debug("Saved session index: path=%s entries=%d", path, len(index))
