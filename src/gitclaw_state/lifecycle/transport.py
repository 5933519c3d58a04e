"""Archive transports.

An archive transport stores named byte blobs somewhere disjoint from the
primary working set: a separate directory tree, a separate branch checkout,
or a bucket mounted as a directory.
"""

import os
import tempfile
from pathlib import Path
from typing import Protocol

from gitclaw_state.logging import get_logger

logger = get_logger("transport")


class ArchiveTransport(Protocol):
    """Minimal blob storage the lifecycle manager archives into."""

    def write(self, location: str, data: bytes) -> None: ...

    def read(self, location: str) -> bytes | None: ...

    def delete(self, location: str) -> bool: ...

    def exists(self, location: str) -> bool: ...


class DirectoryArchiveTransport:
    """Archive transport backed by a directory tree.

    Locations are relative paths under the archive root, e.g.
    ``2025-03-15/issue-42.jsonl``.
    """

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, location: str) -> Path:
        path = (self._root / location).resolve()
        try:
            path.relative_to(self._root.resolve())
        except ValueError:
            raise ValueError(f"Location {location} is not under archive {self._root}")
        return path

    def write(self, location: str, data: bytes) -> None:
        """Write a blob, replacing any previous content atomically."""
        dest_path = self._path(location)
        dest_path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=dest_path.parent, prefix=f".{dest_path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, dest_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.debug("Wrote archive blob: location=%s bytes=%d", location, len(data))

    def read(self, location: str) -> bytes | None:
        """Read a blob, or None if it is absent or unreadable."""
        try:
            return self._path(location).read_bytes()
        except FileNotFoundError:
            return None
        except OSError:
            logger.warning("Could not read archive blob: location=%s", location, exc_info=True)
            return None

    def delete(self, location: str) -> bool:
        path = self._path(location)
        if not path.exists():
            return False
        path.unlink()
        logger.debug("Deleted archive blob: location=%s", location)
        return True

    def exists(self, location: str) -> bool:
        return self._path(location).exists()
