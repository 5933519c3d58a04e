"""Recording conversation turns for an association.

The orchestrator's entry point into the store: resolves (or creates) the
transcript mapped to an issue, appends turns, keeps the mapping's
activity timestamp current and refreshes the session index.
"""

from pathlib import Path

from gitclaw_state.errors import RestoreError
from gitclaw_state.index.service import IndexService
from gitclaw_state.lifecycle.manager import LifecycleManager
from gitclaw_state.logging import get_logger
from gitclaw_state.models import Turn
from gitclaw_state.store.importer import import_session
from gitclaw_state.store.mapping import MappingStore
from gitclaw_state.store.transcript import TranscriptStore

logger = get_logger("session")


class SessionRecorder:
    """Appends turns to the transcript mapped to an association."""

    def __init__(
        self,
        store: TranscriptStore,
        mappings: MappingStore,
        index_service: IndexService | None = None,
        lifecycle: LifecycleManager | None = None,
    ) -> None:
        self._store = store
        self._mappings = mappings
        self._index_service = index_service
        self._lifecycle = lifecycle

    def ensure_transcript(self, association_id: str, now: int) -> str:
        """Return the active transcript handle for an association.

        An archived transcript is restored when a lifecycle manager is
        available. If it cannot be restored, or was purged, a fresh
        transcript is started instead.
        """
        association_id = str(association_id)
        mapping = self._mappings.get(association_id)
        if mapping is None:
            handle = self._store.handle_for(association_id)
            self._mappings.assign(association_id, handle, now)
            logger.info("Started transcript: association=%s handle=%s", association_id, handle)
            return handle

        if mapping.status == "active":
            return mapping.handle

        if mapping.status == "archived" and self._lifecycle is not None:
            try:
                return self._lifecycle.restore(association_id, now)
            except RestoreError:
                logger.warning(
                    "Could not restore archived transcript, starting fresh: association=%s",
                    association_id,
                    exc_info=True,
                )

        handle = f"{Path(self._store.handle_for(association_id)).stem}-{now}.jsonl"
        self._mappings.assign(association_id, handle, now)
        logger.info(
            "Started fresh transcript: association=%s handle=%s previous_status=%s",
            association_id,
            handle,
            mapping.status,
        )
        return handle

    def append(self, association_id: str, turn: Turn) -> str:
        """Append a turn and record activity.

        Raises:
            InvalidTurn: If the turn violates the role/block invariants
        """
        turn.validate()
        handle = self.ensure_transcript(association_id, turn.ts)
        self._store.append(handle, turn)
        self._mappings.touch(str(association_id), turn.ts)
        if self._index_service is not None:
            self._index_service.refresh(str(association_id), handle)
        return handle

    def import_agent_session(
        self,
        association_id: str,
        session_path: Path,
        now: int,
        from_offset: int = 0,
    ) -> tuple[int, int]:
        """Append the turns an agent run wrote to its session log.

        Returns:
            Tuple of (turns appended, new offset into the session log)
        """
        handle = self.ensure_transcript(association_id, now)
        count, new_offset = import_session(self._store, handle, session_path, from_offset)
        if count:
            self._mappings.touch(str(association_id), now)
            if self._index_service is not None:
                self._index_service.refresh(str(association_id), handle)
        return count, new_offset
