"""Archive index with SQLite persistence."""

import sqlite3
from pathlib import Path
from typing import Self

from gitclaw_state.models import ArchiveEntry


class ArchiveIndex:
    """Records where each association's transcript was archived.

    One row per association id; recording again replaces the row. Purged
    entries stay in the table with ``purged_at`` set as an audit trail.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize archive index with database path.

        Args:
            db_path: Path to SQLite database file. Parent directories
                     will be created if they don't exist.
        """
        self._db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self.ensure_schema()

    def ensure_schema(self) -> None:
        """Create the archive_entries table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS archive_entries (
                association_id TEXT PRIMARY KEY,
                handle TEXT NOT NULL,
                location TEXT NOT NULL,
                archived_at INTEGER NOT NULL,
                original_bytes INTEGER NOT NULL,
                turn_count INTEGER NOT NULL,
                purged_at INTEGER
            )
        """)
        self._conn.commit()

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> ArchiveEntry:
        return ArchiveEntry(
            association_id=row["association_id"],
            handle=row["handle"],
            location=row["location"],
            archived_at=row["archived_at"],
            original_bytes=row["original_bytes"],
            turn_count=row["turn_count"],
            purged_at=row["purged_at"],
        )

    def record(self, entry: ArchiveEntry) -> None:
        """Insert or replace the entry for an association."""
        self._conn.execute(
            """
            INSERT OR REPLACE INTO archive_entries
            (association_id, handle, location, archived_at, original_bytes, turn_count, purged_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.association_id,
                entry.handle,
                entry.location,
                entry.archived_at,
                entry.original_bytes,
                entry.turn_count,
                entry.purged_at,
            ),
        )
        self._conn.commit()

    def get(self, association_id: str) -> ArchiveEntry | None:
        """Get the archive entry for an association.

        Returns:
            ArchiveEntry if found, None otherwise
        """
        cursor = self._conn.execute(
            """
            SELECT association_id, handle, location, archived_at, original_bytes, turn_count, purged_at
            FROM archive_entries
            WHERE association_id = ?
            """,
            (str(association_id),),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_entry(row)

    def mark_purged(self, association_id: str, ts: int) -> None:
        self._conn.execute(
            "UPDATE archive_entries SET purged_at = ? WHERE association_id = ?",
            (ts, str(association_id)),
        )
        self._conn.commit()

    def list_entries(self, include_purged: bool = True) -> list[ArchiveEntry]:
        """List archive entries ordered by archive time."""
        query = """
            SELECT association_id, handle, location, archived_at, original_bytes, turn_count, purged_at
            FROM archive_entries
        """
        if not include_purged:
            query += " WHERE purged_at IS NULL"
        query += " ORDER BY archived_at, association_id"
        return [self._row_to_entry(row) for row in self._conn.execute(query)]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> Self:
        """Enter context manager."""
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Exit context manager, closing database connection."""
        self.close()
