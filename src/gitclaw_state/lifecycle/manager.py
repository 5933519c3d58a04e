"""Lifecycle manager: classify, archive, restore and purge transcripts.

States are derived, never stored as truth:

    active -> dormant       association closed, or idle past dormant_after_days
    dormant -> archived     archive(); moved out of the primary working set
    archived -> purged      purge(); archive content deleted after retention
    archived -> active      restore(); the only way back

Archiving copies before it deletes. Every step up to the final removal of
the primary copy can fail without losing the transcript; a failed archive
leaves at worst a duplicate in the archive.
"""

import json
from collections.abc import Iterable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from gitclaw_state.compression.compressor import Compressor
from gitclaw_state.config import LifecycleConfig
from gitclaw_state.errors import RestoreContentMissing, RestoreNotFound
from gitclaw_state.index.service import IndexService
from gitclaw_state.lifecycle.archive_index import ArchiveIndex
from gitclaw_state.lifecycle.status import AssociationStatus, AssociationStatusProvider
from gitclaw_state.lifecycle.transport import ArchiveTransport
from gitclaw_state.logging import get_logger
from gitclaw_state.models import ArchiveEntry, CompressionRecord, LifecycleState
from gitclaw_state.store.mapping import MappingEntry, MappingStore
from gitclaw_state.store.transcript import TranscriptStore

logger = get_logger("lifecycle")
audit_logger = get_logger("audit")

SECONDS_PER_DAY = 86400

META_SUFFIX = ".meta.json"
BACKUP_SUFFIX = ".orig"


@dataclass
class ArchiveOutcome:
    association_id: str
    archived: bool
    location: str | None = None
    reason: str | None = None  # why the transcript was not archived
    compression: CompressionRecord | None = None


@dataclass
class PurgeOutcome:
    association_id: str
    purged: bool
    reason: str | None = None


@dataclass
class SweepReport:
    """Result of one lifecycle sweep over every mapping."""

    states: dict[str, int] = field(default_factory=dict)
    compressed: list[CompressionRecord] = field(default_factory=list)
    archived: list[ArchiveOutcome] = field(default_factory=list)
    purged: list[PurgeOutcome] = field(default_factory=list)
    restore_candidates: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class LifecycleManager:
    """Drives transcripts through the active/dormant/archived/purged lifecycle."""

    def __init__(
        self,
        store: TranscriptStore,
        mappings: MappingStore,
        archive_index: ArchiveIndex,
        transport: ArchiveTransport,
        compressor: Compressor | None = None,
        status_provider: AssociationStatusProvider | None = None,
        config: LifecycleConfig | None = None,
        index_service: IndexService | None = None,
    ) -> None:
        self._store = store
        self._mappings = mappings
        self._archive_index = archive_index
        self._transport = transport
        self._compressor = compressor
        self._status_provider = status_provider
        self._config = config or LifecycleConfig()
        self._index_service = index_service

    @property
    def status_provider(self) -> AssociationStatusProvider | None:
        return self._status_provider

    def _status(self, association_id: str) -> AssociationStatus | None:
        if self._status_provider is None:
            return None
        return self._status_provider.get_status(association_id)

    def _last_activity(self, mapping: MappingEntry, status: AssociationStatus | None) -> int:
        last = mapping.updated_at
        mtime = self._store.mtime(mapping.handle)
        if mtime is not None:
            last = max(last, mtime)
        if status is not None and status.last_activity is not None:
            last = max(last, status.last_activity)
        return last

    def _idle_seconds(self, mapping: MappingEntry, status: AssociationStatus | None, now: int) -> int:
        return now - self._last_activity(mapping, status)

    def _require_mapping(self, association_id: str) -> MappingEntry:
        mapping = self._mappings.get(association_id)
        if mapping is None:
            raise KeyError(f"No mapping for association {association_id}")
        return mapping

    def classify(
        self,
        association_id: str,
        now: int,
        status: AssociationStatus | None = None,
    ) -> LifecycleState:
        """Derive the lifecycle state of an association's transcript.

        Args:
            association_id: External association identifier
            now: Current Unix timestamp
            status: Association status (fetched from the provider if omitted)

        Raises:
            KeyError: If the association has no mapping
        """
        mapping = self._require_mapping(association_id)
        if mapping.status == "purged":
            return LifecycleState.PURGED
        if mapping.status == "archived":
            return LifecycleState.ARCHIVED

        if status is None:
            status = self._status(association_id)
        closed = status is not None and not status.is_open
        idle = self._idle_seconds(mapping, status, now)
        if closed or idle >= self._config.dormant_after_days * SECONDS_PER_DAY:
            return LifecycleState.DORMANT
        return LifecycleState.ACTIVE

    def is_archive_eligible(
        self,
        association_id: str,
        now: int,
        status: AssociationStatus | None = None,
    ) -> bool:
        """Dormant and idle for at least archive_after_days."""
        if status is None:
            status = self._status(association_id)
        if self.classify(association_id, now, status) != LifecycleState.DORMANT:
            return False
        mapping = self._require_mapping(association_id)
        idle = self._idle_seconds(mapping, status, now)
        return idle >= self._config.archive_after_days * SECONDS_PER_DAY

    def is_purge_eligible(self, association_id: str, now: int) -> bool:
        """Archived, not yet purged, and past the retention window."""
        mapping = self._mappings.get(association_id)
        entry = self._archive_index.get(association_id)
        if mapping is None or mapping.status != "archived" or entry is None:
            return False
        if entry.purged_at is not None:
            return False
        return now - entry.archived_at >= self._config.purge_after_days * SECONDS_PER_DAY

    def archive(self, association_ids: Iterable[str], now: int) -> list[ArchiveOutcome]:
        """Move transcripts out of the primary working set.

        Each transcript is handled independently; a failure on one leaves
        its primary copy in place and does not stop the others.
        """
        outcomes = []
        for association_id in association_ids:
            try:
                outcome = self._archive_one(str(association_id), now)
            except Exception:
                logger.exception("Error archiving transcript: association=%s", association_id)
                outcome = ArchiveOutcome(str(association_id), False, reason="error")
            outcomes.append(outcome)
        return outcomes

    def _archive_one(self, association_id: str, now: int) -> ArchiveOutcome:
        mapping = self._mappings.get(association_id)
        if mapping is None:
            return ArchiveOutcome(association_id, False, reason="no_mapping")
        if mapping.status != "active":
            return ArchiveOutcome(association_id, False, reason=f"already_{mapping.status}")
        if self.classify(association_id, now) == LifecycleState.ACTIVE:
            return ArchiveOutcome(association_id, False, reason="active")

        handle = mapping.handle
        if not self._store.exists(handle):
            logger.warning("Transcript missing, not archiving: association=%s handle=%s", association_id, handle)
            return ArchiveOutcome(association_id, False, reason="missing_transcript")

        # 1. Compress
        compression = None
        if self._compressor is not None:
            try:
                compression = self._compressor.compress(handle)
            except Exception:
                logger.exception("Compression before archive failed: handle=%s", handle)

        # 2. Copy content and metadata into the archive namespace
        data = self._store.read_bytes(handle)
        date_str = datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y-%m-%d")
        location = f"{date_str}/{handle}"
        entry = ArchiveEntry(
            association_id=association_id,
            handle=handle,
            location=location,
            archived_at=now,
            original_bytes=len(data),
            turn_count=self._store.turn_count(handle),
        )
        self._transport.write(location, data)
        self._transport.write(location + META_SUFFIX, json.dumps(entry.to_dict(), indent=2, sort_keys=True).encode())
        backup_path = self._store.backup_path(handle)
        if backup_path.exists():
            self._transport.write(location + BACKUP_SUFFIX, backup_path.read_bytes())

        if self._transport.read(location) != data:
            logger.error("Archive copy does not match, keeping primary: association=%s location=%s", association_id, location)
            return ArchiveOutcome(association_id, False, location, reason="verify_failed", compression=compression)

        # Re-check right before the irreversible part: the association may
        # have been reopened or the transcript appended to since classify.
        if self.classify(association_id, now) == LifecycleState.ACTIVE:
            logger.info("Association became active during archive: association=%s", association_id)
            return ArchiveOutcome(association_id, False, location, reason="became_active", compression=compression)
        if self._store.read_bytes(handle) != data:
            logger.info("Transcript changed during archive: association=%s", association_id)
            return ArchiveOutcome(association_id, False, location, reason="modified", compression=compression)

        # 3. Record, point the mapping at the archive, then drop the primary copy
        self._archive_index.record(entry)
        self._mappings.mark_archived(association_id, location, now)
        self._store.delete(handle)
        self._store.delete_backup(handle)

        if self._index_service is not None:
            self._index_service.remove(association_id)

        logger.info(
            "Archived transcript: association=%s handle=%s location=%s bytes=%d turns=%d",
            association_id,
            handle,
            location,
            entry.original_bytes,
            entry.turn_count,
        )
        return ArchiveOutcome(association_id, True, location, compression=compression)

    def restore(self, association_id: str, now: int) -> str:
        """Bring an archived transcript back into the primary working set.

        Returns:
            The restored transcript handle

        Raises:
            RestoreNotFound: If the association was never archived
            RestoreContentMissing: If the archived content is purged or unreadable
        """
        association_id = str(association_id)
        entry = self._archive_index.get(association_id)
        if entry is None:
            raise RestoreNotFound(association_id, f"No archive entry for association {association_id}")

        mapping = self._mappings.get(association_id)
        if mapping is not None and mapping.status == "active" and self._store.exists(mapping.handle):
            logger.debug("Transcript already active: association=%s", association_id)
            return mapping.handle

        if entry.purged_at is not None or (mapping is not None and mapping.status == "purged"):
            raise RestoreContentMissing(association_id, f"Archive for association {association_id} was purged")

        data = self._transport.read(entry.location)
        if not data:
            raise RestoreContentMissing(
                association_id, f"Archive content missing for association {association_id}: {entry.location}"
            )

        handle = entry.handle
        if self._store.exists(handle):
            # A primary copy survived a partial archive; it is at least as new
            logger.warning("Primary copy still present, keeping it: association=%s handle=%s", association_id, handle)
        else:
            self._store.write_bytes(handle, data)

        if mapping is None:
            self._mappings.assign(association_id, handle, now)
        else:
            self._mappings.mark_active(association_id, handle, now)

        if self._index_service is not None:
            self._index_service.refresh(association_id, handle)

        logger.info("Restored transcript: association=%s handle=%s location=%s", association_id, handle, entry.location)
        return handle

    def purge(self, association_ids: Iterable[str], now: int) -> list[PurgeOutcome]:
        """Delete archived content past the retention window. Irreversible."""
        outcomes = []
        for association_id in association_ids:
            try:
                outcome = self._purge_one(str(association_id), now)
            except Exception:
                logger.exception("Error purging transcript: association=%s", association_id)
                outcome = PurgeOutcome(str(association_id), False, reason="error")
            outcomes.append(outcome)
        return outcomes

    def _purge_one(self, association_id: str, now: int) -> PurgeOutcome:
        mapping = self._mappings.get(association_id)
        entry = self._archive_index.get(association_id)
        if mapping is None or entry is None or mapping.status not in ("archived", "purged"):
            return PurgeOutcome(association_id, False, reason="not_archived")
        if entry.purged_at is not None or mapping.status == "purged":
            return PurgeOutcome(association_id, False, reason="already_purged")
        if now - entry.archived_at < self._config.purge_after_days * SECONDS_PER_DAY:
            return PurgeOutcome(association_id, False, reason="retention")

        for location in (entry.location, entry.location + META_SUFFIX, entry.location + BACKUP_SUFFIX):
            self._transport.delete(location)
        self._archive_index.mark_purged(association_id, now)
        self._mappings.mark_purged(association_id, now)

        audit_logger.info(
            "Purged transcript: association=%s handle=%s location=%s archived_at=%d "
            "purged_at=%d original_bytes=%d turns=%d",
            association_id,
            entry.handle,
            entry.location,
            entry.archived_at,
            now,
            entry.original_bytes,
            entry.turn_count,
        )
        return PurgeOutcome(association_id, True)

    def _compress_in_place(self, handle: str) -> CompressionRecord | None:
        if self._compressor is None or not self._store.exists(handle):
            return None
        try:
            return self._compressor.compress(handle)
        except Exception:
            logger.exception("Compression during sweep failed: handle=%s", handle)
            return None

    def sweep(self, now: int) -> SweepReport:
        """Classify every mapping, then compress, archive and purge what is eligible.

        Transcripts that stay in the working set are compressed in place;
        archive candidates are compressed as part of archiving.
        """
        report = SweepReport()
        to_archive: list[str] = []
        to_purge: list[str] = []

        for mapping in self._mappings.list_mappings():
            association_id = mapping.association_id
            status = self._status(association_id)
            state = self.classify(association_id, now, status)
            report.states[state.value] = report.states.get(state.value, 0) + 1

            if state == LifecycleState.DORMANT and self.is_archive_eligible(association_id, now, status):
                to_archive.append(association_id)
            elif state in (LifecycleState.ACTIVE, LifecycleState.DORMANT):
                record = self._compress_in_place(mapping.handle)
                if record is not None:
                    report.compressed.append(record)
            elif state == LifecycleState.ARCHIVED:
                if status is not None and status.is_open:
                    # Reopened; restoring is the orchestrator's call
                    report.restore_candidates.append(association_id)
                elif self.is_purge_eligible(association_id, now):
                    to_purge.append(association_id)

        if to_archive:
            report.archived = self.archive(to_archive, now)
        if to_purge:
            report.purged = self.purge(to_purge, now)

        logger.info(
            "Sweep complete: states=%s compressed=%d archived=%d purged=%d restore_candidates=%d",
            report.states,
            sum(1 for r in report.compressed if r.saved_bytes > 0),
            sum(1 for o in report.archived if o.archived),
            sum(1 for o in report.purged if o.purged),
            len(report.restore_candidates),
        )
        return report
