"""Association-to-transcript mapping with SQLite persistence."""

import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Self

MAPPING_STATUSES = ("active", "archived", "purged")


@dataclass
class MappingEntry:
    """Which transcript belongs to an association (e.g. an issue number)."""

    association_id: str
    handle: str
    updated_at: int
    status: str = "active"  # active, archived, purged
    archive_location: str | None = None


class MappingStore:
    """Manages the association-id -> transcript-handle mapping.

    This is the only owner of that relationship. The lifecycle manager
    flips entries between active, archived and purged.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize mapping store with database path.

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
        """Create the mappings table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS mappings (
                association_id TEXT PRIMARY KEY,
                handle TEXT NOT NULL,
                updated_at INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'active',
                archive_location TEXT
            )
        """)
        self._conn.commit()

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> MappingEntry:
        return MappingEntry(
            association_id=row["association_id"],
            handle=row["handle"],
            updated_at=row["updated_at"],
            status=row["status"],
            archive_location=row["archive_location"],
        )

    def get(self, association_id: str) -> MappingEntry | None:
        """Get the mapping for an association.

        Args:
            association_id: External association identifier

        Returns:
            MappingEntry if found, None otherwise
        """
        cursor = self._conn.execute(
            """
            SELECT association_id, handle, updated_at, status, archive_location
            FROM mappings
            WHERE association_id = ?
            """,
            (str(association_id),),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_entry(row)

    def assign(self, association_id: str, handle: str, ts: int) -> MappingEntry:
        """Point an association at a transcript, creating the mapping if needed.

        The mapping becomes active and any archive pointer is cleared.
        """
        self._conn.execute(
            """
            INSERT INTO mappings (association_id, handle, updated_at, status, archive_location)
            VALUES (?, ?, ?, 'active', NULL)
            ON CONFLICT(association_id) DO UPDATE SET
                handle = excluded.handle,
                updated_at = excluded.updated_at,
                status = 'active',
                archive_location = NULL
            """,
            (str(association_id), handle, ts),
        )
        self._conn.commit()
        return MappingEntry(association_id=str(association_id), handle=handle, updated_at=ts)

    def _update(self, association_id: str, **attrs: str | int | None) -> None:
        valid_attrs = {"handle", "updated_at", "status", "archive_location"}
        invalid = set(attrs.keys()) - valid_attrs
        if invalid:
            raise ValueError(f"Invalid attributes: {invalid}")
        status = attrs.get("status")
        if status is not None and status not in MAPPING_STATUSES:
            raise ValueError(f"Invalid status: {status}")

        set_clauses = []
        values: list[str | int | None] = []
        for key, value in attrs.items():
            set_clauses.append(f"{key} = ?")
            values.append(value)
        values.append(str(association_id))

        cursor = self._conn.execute(
            f"""
            UPDATE mappings
            SET {', '.join(set_clauses)}
            WHERE association_id = ?
            """,
            values,
        )
        self._conn.commit()
        if cursor.rowcount == 0:
            raise KeyError(f"No mapping for association {association_id}")

    def touch(self, association_id: str, ts: int) -> None:
        """Record activity on an association's transcript."""
        self._update(association_id, updated_at=ts)

    def mark_archived(self, association_id: str, location: str, ts: int) -> None:
        self._update(association_id, status="archived", archive_location=location, updated_at=ts)

    def mark_active(self, association_id: str, handle: str, ts: int) -> None:
        self._update(association_id, status="active", handle=handle, updated_at=ts)

    def mark_purged(self, association_id: str, ts: int) -> None:
        self._update(association_id, status="purged", updated_at=ts)

    def list_mappings(self, status: str | None = None) -> list[MappingEntry]:
        """List mappings, optionally filtered by status.

        Returns:
            List of MappingEntry objects ordered by association id
        """
        if status is None:
            cursor = self._conn.execute(
                """
                SELECT association_id, handle, updated_at, status, archive_location
                FROM mappings
                ORDER BY association_id
                """
            )
        else:
            cursor = self._conn.execute(
                """
                SELECT association_id, handle, updated_at, status, archive_location
                FROM mappings
                WHERE status = ?
                ORDER BY association_id
                """,
                (status,),
            )
        return [self._row_to_entry(row) for row in cursor]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> Self:
        """Enter context manager."""
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Exit context manager, closing database connection."""
        self.close()
