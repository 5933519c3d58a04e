"""Tests for the lifecycle manager."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import pytest

from gitclaw_state.compression.compressor import Compressor
from gitclaw_state.config import CompressionConfig, LifecycleConfig
from gitclaw_state.errors import RestoreContentMissing, RestoreNotFound
from gitclaw_state.index.service import IndexService
from gitclaw_state.lifecycle.archive_index import ArchiveIndex
from gitclaw_state.lifecycle.manager import BACKUP_SUFFIX, META_SUFFIX, SECONDS_PER_DAY, LifecycleManager
from gitclaw_state.lifecycle.status import AssociationStatus, StaticStatusProvider
from gitclaw_state.lifecycle.transport import DirectoryArchiveTransport
from gitclaw_state.models import LifecycleState, TextBlock, ThinkingBlock, Turn
from gitclaw_state.store.mapping import MappingStore
from gitclaw_state.store.transcript import TranscriptStore

NOW = 1_710_000_000
DAY = SECONDS_PER_DAY


@dataclass
class LifecycleEnv:
    store: TranscriptStore
    mappings: MappingStore
    archive_index: ArchiveIndex
    transport: DirectoryArchiveTransport
    statuses: StaticStatusProvider
    manager: LifecycleManager

    def add_transcript(self, association_id: str, updated_at: int, turns: int = 2) -> str:
        handle = self.store.handle_for(association_id)
        for i in range(turns):
            role = "user" if i % 2 == 0 else "assistant"
            self.store.append(handle, Turn(role=role, blocks=[TextBlock(f"turn {i}")], ts=updated_at))
        os.utime(self.store.path_for(handle), (updated_at, updated_at))
        self.mappings.assign(association_id, handle, updated_at)
        return handle

    def close_association(self, association_id: str, at: int) -> None:
        self.statuses.set_status(association_id, AssociationStatus(is_open=False, last_activity=at))


@pytest.fixture
def env(tmp_path: Path) -> LifecycleEnv:
    """Wire a lifecycle manager over temporary stores."""
    store = TranscriptStore(tmp_path / "sessions", tmp_path / "backups")
    mappings = MappingStore(tmp_path / "state.db")
    archive_index = ArchiveIndex(tmp_path / "state.db")
    transport = DirectoryArchiveTransport(tmp_path / "archive")
    statuses = StaticStatusProvider()
    manager = LifecycleManager(
        store=store,
        mappings=mappings,
        archive_index=archive_index,
        transport=transport,
        status_provider=statuses,
        config=LifecycleConfig(dormant_after_days=7, archive_after_days=30, purge_after_days=365),
    )
    yield LifecycleEnv(store, mappings, archive_index, transport, statuses, manager)
    mappings.close()
    archive_index.close()


class TestClassify:
    """Tests for classify."""

    def test_recent_is_active(self, env: LifecycleEnv) -> None:
        env.add_transcript("1", NOW - DAY)
        assert env.manager.classify("1", NOW) == LifecycleState.ACTIVE

    def test_closed_is_dormant(self, env: LifecycleEnv) -> None:
        """An association closed 20 days ago is dormant with a 7-day threshold."""
        env.add_transcript("1", NOW - 20 * DAY)
        env.close_association("1", NOW - 20 * DAY)
        assert env.manager.classify("1", NOW) == LifecycleState.DORMANT

    def test_closed_recently_is_dormant(self, env: LifecycleEnv) -> None:
        env.add_transcript("1", NOW - DAY)
        env.close_association("1", NOW - DAY)
        assert env.manager.classify("1", NOW) == LifecycleState.DORMANT

    def test_idle_open_is_dormant(self, env: LifecycleEnv) -> None:
        env.add_transcript("1", NOW - 8 * DAY)
        assert env.manager.classify("1", NOW) == LifecycleState.DORMANT

    def test_external_activity_keeps_active(self, env: LifecycleEnv) -> None:
        """Recent activity on the association counts even without new turns."""
        env.add_transcript("1", NOW - 10 * DAY)
        env.statuses.set_status("1", AssociationStatus(is_open=True, last_activity=NOW - DAY))
        assert env.manager.classify("1", NOW) == LifecycleState.ACTIVE

    def test_explicit_status_overrides_provider(self, env: LifecycleEnv) -> None:
        env.add_transcript("1", NOW - DAY)
        assert env.manager.classify("1", NOW, AssociationStatus(is_open=False)) == LifecycleState.DORMANT

    def test_recent_file_write_keeps_active(self, env: LifecycleEnv) -> None:
        """Turns appended straight to the store count as activity."""
        handle = env.add_transcript("1", NOW - 20 * DAY)
        os.utime(env.store.path_for(handle), (NOW - DAY, NOW - DAY))

        assert env.mappings.get("1").updated_at == NOW - 20 * DAY
        assert env.manager.classify("1", NOW) == LifecycleState.ACTIVE
        assert not env.manager.is_archive_eligible("1", NOW)

    def test_unmapped_raises(self, env: LifecycleEnv) -> None:
        with pytest.raises(KeyError):
            env.manager.classify("missing", NOW)

    def test_archive_eligibility_needs_archive_window(self, env: LifecycleEnv) -> None:
        env.add_transcript("1", NOW - 20 * DAY)
        env.close_association("1", NOW - 20 * DAY)
        assert not env.manager.is_archive_eligible("1", NOW)
        assert env.manager.is_archive_eligible("1", NOW + 10 * DAY)


class TestArchive:
    """Tests for archive."""

    def test_archive_dormant_transcript(self, env: LifecycleEnv) -> None:
        """Archiving moves the transcript out and points the mapping at the archive."""
        handle = env.add_transcript("1", NOW - 20 * DAY, turns=3)
        env.close_association("1", NOW - 20 * DAY)
        data = env.store.read_bytes(handle)

        [outcome] = env.manager.archive(["1"], NOW)

        assert outcome.archived is True
        mapping = env.mappings.get("1")
        assert mapping.status == "archived"
        assert mapping.archive_location == outcome.location
        assert not env.store.exists(handle)
        assert env.transport.read(outcome.location) == data
        assert env.transport.exists(outcome.location + META_SUFFIX)

        entry = env.archive_index.get("1")
        assert entry.location == outcome.location
        assert entry.turn_count == 3
        assert entry.original_bytes == len(data)
        assert entry.archived_at == NOW
        assert env.manager.classify("1", NOW) == LifecycleState.ARCHIVED

    def test_location_is_dated(self, env: LifecycleEnv) -> None:
        handle = env.add_transcript("1", NOW - 20 * DAY)
        env.close_association("1", NOW - 20 * DAY)
        [outcome] = env.manager.archive(["1"], NOW)
        # 1710000000 is 2024-03-09 UTC
        assert outcome.location == f"2024-03-09/{handle}"

    def test_active_not_archived(self, env: LifecycleEnv) -> None:
        handle = env.add_transcript("1", NOW - DAY)
        [outcome] = env.manager.archive(["1"], NOW)
        assert outcome.archived is False
        assert outcome.reason == "active"
        assert env.store.exists(handle)

    def test_unmapped_not_archived(self, env: LifecycleEnv) -> None:
        [outcome] = env.manager.archive(["missing"], NOW)
        assert outcome.reason == "no_mapping"

    def test_missing_transcript_not_archived(self, env: LifecycleEnv) -> None:
        env.mappings.assign("1", "issue-1.jsonl", NOW - 20 * DAY)
        [outcome] = env.manager.archive(["1"], NOW)
        assert outcome.reason == "missing_transcript"
        assert env.mappings.get("1").status == "active"

    def test_compresses_before_archiving(self, env: LifecycleEnv) -> None:
        """With a compressor, the archived copy is compressed and its backup archived too."""
        env.manager._compressor = Compressor(env.store, CompressionConfig(min_transcript_bytes=0, protect_recent_turns=1))
        handle = env.store.handle_for("1")
        env.store.append(handle, Turn(role="assistant", blocks=[ThinkingBlock("x" * 5000)], ts=NOW - 20 * DAY))
        env.store.append(handle, Turn(role="user", blocks=[TextBlock("done")], ts=NOW - 20 * DAY))
        env.mappings.assign("1", handle, NOW - 20 * DAY)
        env.close_association("1", NOW - 20 * DAY)

        [outcome] = env.manager.archive(["1"], NOW)

        assert outcome.archived is True
        assert outcome.compression.thinking_removed == 1
        assert b"x" * 5000 not in env.transport.read(outcome.location)
        assert b"x" * 5000 in env.transport.read(outcome.location + BACKUP_SUFFIX)
        assert not env.store.backup_path(handle).exists()

    def test_archives_several(self, env: LifecycleEnv) -> None:
        env.add_transcript("1", NOW - 20 * DAY)
        env.add_transcript("2", NOW - 20 * DAY)
        outcomes = env.manager.archive(["1", "2"], NOW)
        assert [o.archived for o in outcomes] == [True, True]


class TestArchiveAtomicity:
    """A failed archive must leave the primary copy readable."""

    def test_verify_failure_keeps_primary(self, env: LifecycleEnv, monkeypatch: pytest.MonkeyPatch) -> None:
        handle = env.add_transcript("1", NOW - 20 * DAY)
        data = env.store.read_bytes(handle)
        monkeypatch.setattr(env.transport, "read", lambda location: b"")

        [outcome] = env.manager.archive(["1"], NOW)

        assert outcome.archived is False
        assert outcome.reason == "verify_failed"
        assert env.store.read_bytes(handle) == data
        assert env.mappings.get("1").status == "active"
        assert env.archive_index.get("1") is None

    def test_failure_after_copy_keeps_primary(self, env: LifecycleEnv, monkeypatch: pytest.MonkeyPatch) -> None:
        """Interrupting after the copy but before removal loses nothing."""
        handle = env.add_transcript("1", NOW - 20 * DAY, turns=4)

        def interrupted(entry):
            raise RuntimeError("interrupted")

        monkeypatch.setattr(env.archive_index, "record", interrupted)

        [outcome] = env.manager.archive(["1"], NOW)

        assert outcome.archived is False
        assert outcome.reason == "error"
        assert env.store.turn_count(handle) == 4
        assert env.mappings.get("1").status == "active"
        assert env.manager.classify("1", NOW) == LifecycleState.DORMANT

    def test_reopened_during_archive(self, env: LifecycleEnv, monkeypatch: pytest.MonkeyPatch) -> None:
        handle = env.add_transcript("1", NOW - 20 * DAY)
        env.close_association("1", NOW - 20 * DAY)
        original_write = env.transport.write

        def write_and_reopen(location: str, data: bytes) -> None:
            original_write(location, data)
            env.statuses.set_status("1", AssociationStatus(is_open=True, last_activity=NOW))

        monkeypatch.setattr(env.transport, "write", write_and_reopen)

        [outcome] = env.manager.archive(["1"], NOW)

        assert outcome.reason == "became_active"
        assert env.store.exists(handle)
        assert env.mappings.get("1").status == "active"

    def test_appended_during_archive(self, env: LifecycleEnv, monkeypatch: pytest.MonkeyPatch) -> None:
        handle = env.add_transcript("1", NOW - 20 * DAY)
        env.close_association("1", NOW - 20 * DAY)
        original_write = env.transport.write
        appended = []

        def write_and_append(location: str, data: bytes) -> None:
            original_write(location, data)
            if not appended:
                appended.append(True)
                env.store.append(handle, Turn(role="user", blocks=[TextBlock("late")], ts=NOW - 20 * DAY))

        monkeypatch.setattr(env.transport, "write", write_and_append)

        [outcome] = env.manager.archive(["1"], NOW)

        assert outcome.reason == "modified"
        assert env.store.turn_count(handle) == 3


class TestRestore:
    """Tests for restore."""

    def test_restore_without_archive(self, env: LifecycleEnv) -> None:
        """Restoring a never-archived association raises and changes nothing."""
        env.add_transcript("1", NOW - DAY)
        before = env.store.list_handles()

        with pytest.raises(RestoreNotFound) as exc_info:
            env.manager.restore("1", NOW)

        assert exc_info.value.association_id == "1"
        assert env.store.list_handles() == before

    def test_restore_unknown_association(self, env: LifecycleEnv) -> None:
        with pytest.raises(RestoreNotFound):
            env.manager.restore("nope", NOW)
        assert env.store.list_handles() == []

    def test_restore_archived(self, env: LifecycleEnv) -> None:
        handle = env.add_transcript("1", NOW - 40 * DAY, turns=3)
        data = env.store.read_bytes(handle)
        env.manager.archive(["1"], NOW)

        restored = env.manager.restore("1", NOW + DAY)

        assert restored == handle
        assert env.store.read_bytes(handle) == data
        mapping = env.mappings.get("1")
        assert mapping.status == "active"
        assert mapping.updated_at == NOW + DAY
        assert env.manager.classify("1", NOW + DAY) == LifecycleState.ACTIVE

    def test_restore_keeps_surviving_primary(self, env: LifecycleEnv) -> None:
        """A primary copy left behind by a partial archive wins over the archive."""
        handle = env.add_transcript("1", NOW - 40 * DAY)
        env.manager.archive(["1"], NOW)
        env.store.append(handle, Turn(role="user", blocks=[TextBlock("survivor")], ts=NOW))

        env.manager.restore("1", NOW)

        assert list(env.store.read_all(handle))[-1].text == "survivor"

    def test_restore_missing_content(self, env: LifecycleEnv) -> None:
        env.add_transcript("1", NOW - 40 * DAY)
        [outcome] = env.manager.archive(["1"], NOW)
        env.transport.delete(outcome.location)

        with pytest.raises(RestoreContentMissing):
            env.manager.restore("1", NOW)

    def test_restore_already_active_is_noop(self, env: LifecycleEnv) -> None:
        handle = env.add_transcript("1", NOW - 40 * DAY)
        env.manager.archive(["1"], NOW)
        env.manager.restore("1", NOW)
        assert env.manager.restore("1", NOW) == handle


class TestPurge:
    """Tests for purge."""

    def archive_one(self, env: LifecycleEnv) -> str:
        env.add_transcript("1", NOW - 40 * DAY)
        [outcome] = env.manager.archive(["1"], NOW)
        return outcome.location

    def test_retention_window_respected(self, env: LifecycleEnv) -> None:
        location = self.archive_one(env)
        [outcome] = env.manager.purge(["1"], NOW + 364 * DAY)
        assert outcome.purged is False
        assert outcome.reason == "retention"
        assert env.transport.exists(location)

    def test_purge_deletes_archive(self, env: LifecycleEnv, caplog: pytest.LogCaptureFixture) -> None:
        location = self.archive_one(env)

        with caplog.at_level(logging.INFO, logger="gitclaw_state.audit"):
            [outcome] = env.manager.purge(["1"], NOW + 365 * DAY)

        assert outcome.purged is True
        assert not env.transport.exists(location)
        assert not env.transport.exists(location + META_SUFFIX)
        assert env.archive_index.get("1").purged_at == NOW + 365 * DAY
        assert env.mappings.get("1").status == "purged"
        assert any(r.name == "gitclaw_state.audit" and "association=1" in r.getMessage() for r in caplog.records)

    def test_purge_not_archived(self, env: LifecycleEnv) -> None:
        env.add_transcript("1", NOW)
        [outcome] = env.manager.purge(["1"], NOW + 1000 * DAY)
        assert outcome.reason == "not_archived"


class TestMonotonicity:
    """archived only leaves via restore; purged is terminal."""

    def test_archived_stays_archived(self, env: LifecycleEnv) -> None:
        env.add_transcript("1", NOW - 40 * DAY)
        env.manager.archive(["1"], NOW)
        env.statuses.set_status("1", AssociationStatus(is_open=True, last_activity=NOW + DAY))

        for later in (NOW, NOW + DAY, NOW + 100 * DAY):
            assert env.manager.classify("1", later) == LifecycleState.ARCHIVED
        env.manager.sweep(NOW + DAY)
        assert env.manager.classify("1", NOW + DAY) == LifecycleState.ARCHIVED

    def test_purged_is_terminal(self, env: LifecycleEnv) -> None:
        env.add_transcript("1", NOW - 40 * DAY)
        env.manager.archive(["1"], NOW)
        env.manager.purge(["1"], NOW + 400 * DAY)

        with pytest.raises(RestoreContentMissing):
            env.manager.restore("1", NOW + 401 * DAY)
        [archive_outcome] = env.manager.archive(["1"], NOW + 401 * DAY)
        [purge_outcome] = env.manager.purge(["1"], NOW + 401 * DAY)

        assert archive_outcome.reason == "already_purged"
        assert purge_outcome.reason == "already_purged"
        assert env.manager.classify("1", NOW + 401 * DAY) == LifecycleState.PURGED


class TestSweep:
    """Tests for sweep."""

    def test_sweep_archives_purges_and_reports(self, env: LifecycleEnv) -> None:
        env.add_transcript("active", NOW - DAY)
        env.add_transcript("stale", NOW - 40 * DAY)
        env.add_transcript("old", NOW - 500 * DAY)
        env.manager.archive(["old"], NOW - 400 * DAY)
        env.add_transcript("reopened", NOW - 100 * DAY)
        env.manager.archive(["reopened"], NOW - 60 * DAY)
        env.statuses.set_status("reopened", AssociationStatus(is_open=True, last_activity=NOW))

        report = env.manager.sweep(NOW)

        assert [o.association_id for o in report.archived if o.archived] == ["stale"]
        assert [o.association_id for o in report.purged if o.purged] == ["old"]
        assert report.restore_candidates == ["reopened"]
        assert report.states == {"active": 1, "dormant": 1, "archived": 2}
        assert env.mappings.get("stale").status == "archived"
        assert env.mappings.get("old").status == "purged"
        assert env.mappings.get("reopened").status == "archived"

    def test_sweep_compresses_transcripts_left_in_place(self, env: LifecycleEnv) -> None:
        """Active and not-yet-eligible dormant transcripts are compressed without looking fresher."""
        env.manager._compressor = Compressor(env.store, CompressionConfig(min_transcript_bytes=0, protect_recent_turns=1))
        for association_id, updated_at in (("active", NOW - DAY), ("dormant", NOW - 10 * DAY)):
            handle = env.store.handle_for(association_id)
            env.store.append(handle, Turn(role="assistant", blocks=[ThinkingBlock("x" * 5000)], ts=updated_at))
            env.store.append(handle, Turn(role="user", blocks=[TextBlock("next")], ts=updated_at))
            os.utime(env.store.path_for(handle), (updated_at, updated_at))
            env.mappings.assign(association_id, handle, updated_at)

        report = env.manager.sweep(NOW)

        assert [(r.handle, r.thinking_removed) for r in report.compressed] == [
            ("issue-active.jsonl", 1),
            ("issue-dormant.jsonl", 1),
        ]
        assert report.archived == []
        assert b"x" * 5000 not in env.store.read_bytes("issue-active.jsonl")
        assert env.store.mtime("issue-dormant.jsonl") == NOW - 10 * DAY
        assert env.manager.classify("dormant", NOW) == LifecycleState.DORMANT

    def test_sweep_compression_failure_is_contained(self, env: LifecycleEnv, monkeypatch: pytest.MonkeyPatch) -> None:
        env.manager._compressor = Compressor(env.store)
        env.add_transcript("1", NOW - DAY)

        def explode(handle, dry_run=False):
            raise RuntimeError("disk full")

        monkeypatch.setattr(env.manager._compressor, "compress", explode)

        report = env.manager.sweep(NOW)

        assert report.compressed == []
        assert report.states == {"active": 1}

    def test_report_serializes(self, env: LifecycleEnv) -> None:
        env.add_transcript("1", NOW - 40 * DAY)
        data = env.manager.sweep(NOW).to_dict()
        assert data["archived"][0]["association_id"] == "1"


class TestIndexIntegration:
    """The session index follows archive and restore."""

    def test_archive_removes_and_restore_refreshes(self, env: LifecycleEnv, tmp_path: Path) -> None:
        service = IndexService(tmp_path / "index.json", env.store, env.mappings)
        env.manager._index_service = service
        env.add_transcript("1", NOW - 40 * DAY)
        service.refresh("1")
        assert "1" in service.load()

        env.manager.archive(["1"], NOW)
        assert "1" not in service.load()

        env.manager.restore("1", NOW)
        assert "1" in service.load()
