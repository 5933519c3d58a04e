"""Append-only transcript storage.

Each transcript is a JSONL file under the store root, one turn per line:

    {"role": "user", "ts": 1706000000, "blocks": [{"type": "text", "text": "..."}]}

A transcript handle is the file path relative to the store root.
"""

import json
import os
import re
import shutil
import tempfile
from collections.abc import Callable, Iterator
from pathlib import Path

from gitclaw_state.errors import IntegrityViolation, InvalidTurn
from gitclaw_state.logging import get_logger
from gitclaw_state.models import BLOCK_TYPES, Block, Turn

logger = get_logger("store")

TurnPredicate = Callable[[int, Turn], bool]
BlockTransform = Callable[[Block], Block]

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def encode_turn(turn: Turn) -> bytes:
    """Serialize a turn as one JSONL line."""
    return (json.dumps(turn.to_dict(), ensure_ascii=False) + "\n").encode("utf-8")


def turns_size(turns: list[Turn]) -> int:
    """Size in bytes the turns occupy on disk."""
    return sum(len(encode_turn(t)) for t in turns)


class TurnSequence:
    """Lazy, restartable view over a transcript's turns.

    Every iteration re-opens the file, so the sequence can be walked any
    number of times.
    """

    def __init__(self, path: Path, handle: str) -> None:
        self._path = path
        self._handle = handle

    def __iter__(self) -> Iterator[Turn]:
        if not self._path.exists():
            return
        with open(self._path, "rb") as f:
            for line_no, line in enumerate(f, start=1):
                try:
                    line_text = line.decode("utf-8").strip()
                    if not line_text:
                        continue
                    turn = Turn.from_dict(json.loads(line_text))
                except (UnicodeDecodeError, json.JSONDecodeError, InvalidTurn) as e:
                    raise IntegrityViolation(
                        f"Corrupt turn at {self._handle}:{line_no}: {e}"
                    ) from e
                yield turn


class TranscriptStore:
    """Stores transcripts in the primary working set.

    Appends are the only mutation callers make; ``rewrite_historical`` is
    reserved for the compressor and refuses any change to turn structure.
    """

    def __init__(self, root: Path, backups_root: Path | None = None) -> None:
        """Initialize the store.

        Args:
            root: Directory holding transcript files (created if missing)
            backups_root: Directory for pre-compression backups
                          (defaults to <root>/.backups)
        """
        self._root = root
        self._backups_root = backups_root if backups_root is not None else root / ".backups"
        root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    @staticmethod
    def handle_for(association_id: str) -> str:
        """Default handle for an association (e.g. issue 42 -> issue-42.jsonl)."""
        safe = _UNSAFE_CHARS.sub("-", str(association_id)).strip("-.") or "unknown"
        return f"issue-{safe}.jsonl"

    def path_for(self, handle: str) -> Path:
        """Resolve a handle to its file path.

        Raises:
            ValueError: If the handle points outside the store root
        """
        path = (self._root / handle).resolve()
        try:
            path.relative_to(self._root.resolve())
        except ValueError:
            raise ValueError(f"Handle {handle} is not under store root {self._root}")
        return path

    def exists(self, handle: str) -> bool:
        return self.path_for(handle).exists()

    def size(self, handle: str) -> int:
        """Size of the transcript file in bytes (0 if missing)."""
        path = self.path_for(handle)
        return path.stat().st_size if path.exists() else 0

    def mtime(self, handle: str) -> int | None:
        """Last modification time as a Unix timestamp, or None if missing."""
        try:
            return int(self.path_for(handle).stat().st_mtime)
        except OSError:
            return None

    def list_handles(self) -> list[str]:
        """All transcript handles in the working set."""
        return sorted(str(p.relative_to(self._root)) for p in self._root.glob("**/*.jsonl"))

    def append(self, handle: str, turn: Turn) -> None:
        """Append a turn to the end of a transcript.

        Raises:
            InvalidTurn: If the turn violates the role/block invariants
        """
        turn.validate()
        path = self.path_for(handle)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "ab") as f:
            f.write(encode_turn(turn))
        logger.debug("Appended turn: handle=%s role=%s blocks=%d", handle, turn.role, len(turn.blocks))

    def read_all(self, handle: str) -> TurnSequence:
        """Lazy sequence of the transcript's turns."""
        return TurnSequence(self.path_for(handle), handle)

    def turn_count(self, handle: str) -> int:
        return sum(1 for _ in self.read_all(handle))

    def rewrite_historical(
        self,
        handle: str,
        turn_predicate: TurnPredicate,
        block_transform: BlockTransform,
        dry_run: bool = False,
    ) -> list[Turn]:
        """Rewrite blocks of selected turns in place.

        Args:
            handle: Transcript handle
            turn_predicate: Called as (index, turn); only matching turns are touched
            block_transform: Maps a block to its replacement of the same type
            dry_run: Compute the result without writing it

        Returns:
            The rewritten list of turns

        Raises:
            IntegrityViolation: If the rewrite would change turn count, role,
                timestamp, block count or block type
        """
        original = list(self.read_all(handle))
        rewritten: list[Turn] = []

        for index, turn in enumerate(original):
            if not turn_predicate(index, turn):
                rewritten.append(turn)
                continue
            new_blocks = []
            for block in turn.blocks:
                new_block = block_transform(block)
                if not isinstance(new_block, BLOCK_TYPES):
                    raise IntegrityViolation(
                        f"Transform returned a non-block for {handle} turn {index}"
                    )
                if new_block.type != block.type:
                    raise IntegrityViolation(
                        f"Transform changed block type {block.type} -> {new_block.type} "
                        f"in {handle} turn {index}"
                    )
                new_blocks.append(new_block)
            rewritten.append(Turn(role=turn.role, blocks=new_blocks, ts=turn.ts))

        self._check_structure(handle, original, rewritten)

        if not dry_run:
            self._write_turns(handle, rewritten)
        return rewritten

    @staticmethod
    def _check_structure(handle: str, before: list[Turn], after: list[Turn]) -> None:
        if len(before) != len(after):
            raise IntegrityViolation(
                f"Rewrite changed turn count of {handle}: {len(before)} -> {len(after)}"
            )
        for index, (old, new) in enumerate(zip(before, after)):
            if old.role != new.role or old.ts != new.ts:
                raise IntegrityViolation(f"Rewrite changed role or timestamp of {handle} turn {index}")
            if len(old.blocks) != len(new.blocks):
                raise IntegrityViolation(f"Rewrite changed block count of {handle} turn {index}")

    def _write_turns(self, handle: str, turns: list[Turn]) -> None:
        # A rewrite is not activity: keep the modification time
        st = self.path_for(handle).stat()
        self.write_bytes(handle, b"".join(encode_turn(t) for t in turns))
        os.utime(self.path_for(handle), ns=(st.st_atime_ns, st.st_mtime_ns))

    def read_bytes(self, handle: str) -> bytes:
        """Raw transcript content.

        Raises:
            FileNotFoundError: If the transcript does not exist
        """
        path = self.path_for(handle)
        if not path.exists():
            raise FileNotFoundError(f"Transcript does not exist: {handle}")
        return path.read_bytes()

    def write_bytes(self, handle: str, data: bytes) -> None:
        """Atomically replace a transcript's content."""
        path = self.path_for(handle)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def delete(self, handle: str) -> bool:
        """Remove a transcript from the working set.

        Returns:
            True if a file was removed
        """
        path = self.path_for(handle)
        if not path.exists():
            return False
        path.unlink()
        logger.info("Removed transcript: handle=%s", handle)
        return True

    def backup_path(self, handle: str) -> Path:
        return self._backups_root / f"{handle}.orig"

    def backup(self, handle: str) -> Path | None:
        """Copy the transcript to the backups directory unless a backup exists.

        Returns:
            Path of the new backup, or None if one already existed
        """
        dest = self.backup_path(handle)
        if dest.exists():
            return None
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(self.path_for(handle), dest)
        logger.info("Backed up transcript: handle=%s dest=%s", handle, dest)
        return dest

    def restore_backup(self, handle: str) -> bool:
        """Replace a transcript with its backup.

        Returns:
            True if a backup existed and was restored
        """
        src = self.backup_path(handle)
        if not src.exists():
            return False
        self.write_bytes(handle, src.read_bytes())
        logger.info("Restored transcript from backup: handle=%s", handle)
        return True

    def delete_backup(self, handle: str) -> bool:
        src = self.backup_path(handle)
        if not src.exists():
            return False
        src.unlink()
        return True
