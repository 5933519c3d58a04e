"""Session index service: keeps the on-disk index in step with transcripts.

``refresh`` and ``remove`` are best-effort. They run after every transcript
mutation and must never fail the request that triggered them; errors are
logged and swallowed. ``rebuild`` recomputes the whole index.
"""

from pathlib import Path

from gitclaw_state.config import Config, IndexConfig
from gitclaw_state.index.persistence import load_index, save_index
from gitclaw_state.index.session_index import SearchHit, SessionIndex, rebuild, search, update_index
from gitclaw_state.index.typesense_mirror import TypesenseSessionMirror
from gitclaw_state.logging import get_logger
from gitclaw_state.models import IndexEntry
from gitclaw_state.store.mapping import MappingStore
from gitclaw_state.store.transcript import TranscriptStore

logger = get_logger("index")


class IndexService:
    """Owns the persisted session index file."""

    def __init__(
        self,
        index_path: Path,
        store: TranscriptStore,
        mappings: MappingStore,
        config: IndexConfig | None = None,
        mirror: TypesenseSessionMirror | None = None,
    ) -> None:
        self._index_path = index_path
        self._store = store
        self._mappings = mappings
        self._config = config or IndexConfig()
        self._mirror = mirror

    def load(self) -> SessionIndex:
        return load_index(self._index_path)

    def refresh(self, association_id: str, handle: str | None = None) -> IndexEntry | None:
        """Recompute one association's entry. Never raises."""
        try:
            if handle is None:
                mapping = self._mappings.get(association_id)
                if mapping is None:
                    logger.warning("No mapping to index: association=%s", association_id)
                    return None
                handle = mapping.handle
            index = self.load()
            entry = update_index(index, association_id, self._store.read_all(handle), self._config)
            save_index(index, self._index_path)
        except Exception:
            logger.exception("Failed to update session index: association=%s", association_id)
            return None

        if entry is not None:
            self._mirror_upsert([entry])
        return entry

    def remove(self, association_id: str) -> bool:
        """Drop an association's entry. Never raises."""
        try:
            index = self.load()
            removed = index.remove(association_id)
            if removed:
                save_index(index, self._index_path)
        except Exception:
            logger.exception("Failed to remove index entry: association=%s", association_id)
            return False

        if removed and self._mirror is not None:
            try:
                self._mirror.delete_entry(association_id)
            except Exception:
                logger.exception("Failed to remove mirrored entry: association=%s", association_id)
        return removed

    def rebuild(self) -> SessionIndex:
        """Recompute the index from every active transcript."""
        transcripts = []
        for mapping in self._mappings.list_mappings(status="active"):
            if not self._store.exists(mapping.handle):
                logger.warning(
                    "Mapped transcript missing: association=%s handle=%s",
                    mapping.association_id,
                    mapping.handle,
                )
                continue
            try:
                turns = list(self._store.read_all(mapping.handle))
            except Exception:
                logger.exception("Skipping unreadable transcript: handle=%s", mapping.handle)
                continue
            transcripts.append((mapping.association_id, turns))

        index = rebuild(transcripts, self._config)
        save_index(index, self._index_path)
        logger.info("Rebuilt session index: entries=%d path=%s", len(index), self._index_path)

        self._mirror_upsert(index.entries())
        return index

    def search(self, query: str, limit: int | None = 10) -> list[SearchHit]:
        return search(self.load(), query, limit)

    def _mirror_upsert(self, entries: list[IndexEntry]) -> None:
        if self._mirror is None or not entries:
            return
        try:
            self._mirror.upsert_entries(entries)
        except Exception:
            logger.exception("Failed to mirror index entries: count=%d", len(entries))


def build_index_service(config: Config, store: TranscriptStore, mappings: MappingStore) -> IndexService:
    """Create the index service, with the Typesense mirror if enabled."""
    mirror = None
    if config.typesense.enabled:
        try:
            mirror = TypesenseSessionMirror(config.typesense)
            mirror.ensure_collection()
        except Exception:
            logger.warning("Typesense unavailable, mirroring disabled", exc_info=True)
            mirror = None
    return IndexService(config.index.index_path, store, mappings, config.index, mirror)
