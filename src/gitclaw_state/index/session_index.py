"""Cross-conversation session index.

The index is a plain value: a map of association id to IndexEntry. Every
entry is derived from its transcript alone, so the index can be thrown
away and rebuilt at any time. Losing it costs speed, never data.
"""

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from gitclaw_state.config import IndexConfig
from gitclaw_state.index.extract import (
    extract_decisions,
    extract_files,
    extract_keywords,
    extract_summary,
    extract_title,
    path_stems,
    stems,
)
from gitclaw_state.models import IndexEntry, Turn

INDEX_FORMAT_VERSION = 1

# Points per query term found in a field
FIELD_WEIGHTS: dict[str, int] = {
    "title": 5,
    "decisions": 4,
    "files": 3,
    "summary": 2,
    "keywords": 1,
}


@dataclass
class SearchHit:
    entry: IndexEntry
    score: int
    matched_fields: list[str] = field(default_factory=list)


class SessionIndex:
    """In-memory collection of index entries keyed by association id."""

    def __init__(self, entries: Iterable[IndexEntry] = ()) -> None:
        self._entries: dict[str, IndexEntry] = {}
        for entry in entries:
            self.upsert(entry)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, association_id: object) -> bool:
        return association_id in self._entries

    def get(self, association_id: str) -> IndexEntry | None:
        return self._entries.get(str(association_id))

    def upsert(self, entry: IndexEntry) -> None:
        self._entries[entry.association_id] = entry

    def remove(self, association_id: str) -> bool:
        return self._entries.pop(str(association_id), None) is not None

    def entries(self) -> list[IndexEntry]:
        """All entries ordered by association id."""
        return [self._entries[key] for key in sorted(self._entries)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": INDEX_FORMAT_VERSION,
            "entries": [entry.to_dict() for entry in self.entries()],
        }

    def to_json(self) -> str:
        """Canonical serialization: equal indexes give equal bytes."""
        return json.dumps(self.to_dict(), indent=2, sort_keys=True, ensure_ascii=False) + "\n"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionIndex":
        return cls(IndexEntry.from_dict(item) for item in data.get("entries", []))


def build_entry(
    association_id: str,
    turns: Iterable[Turn],
    config: IndexConfig | None = None,
) -> IndexEntry | None:
    """Derive the index entry for one transcript.

    Returns:
        IndexEntry, or None for an empty transcript
    """
    config = config or IndexConfig()
    turns = list(turns)
    if not turns:
        return None

    return IndexEntry(
        association_id=str(association_id),
        title=extract_title(turns, config.title_chars),
        created_at=turns[0].ts,
        updated_at=turns[-1].ts,
        turn_count=len(turns),
        summary=extract_summary(turns, config.summary_chars),
        keywords=extract_keywords(turns, config.max_keywords),
        files=extract_files(turns, config.max_files),
        decisions=extract_decisions(turns, config.max_decisions),
    )


def update_index(
    index: SessionIndex,
    association_id: str,
    turns: Iterable[Turn],
    config: IndexConfig | None = None,
) -> IndexEntry | None:
    """Recompute one association's entry and upsert it into the index."""
    entry = build_entry(association_id, turns, config)
    if entry is None:
        index.remove(association_id)
        return None
    index.upsert(entry)
    return entry


def rebuild(
    transcripts: Iterable[tuple[str, Iterable[Turn]]],
    config: IndexConfig | None = None,
) -> SessionIndex:
    """Build a fresh index from (association id, turns) pairs."""
    index = SessionIndex()
    for association_id, turns in transcripts:
        update_index(index, association_id, turns, config)
    return index


def _field_stems(entry: IndexEntry) -> dict[str, set[str]]:
    files: set[str] = set()
    for path in entry.files:
        files |= path_stems(path)
    return {
        "title": stems(entry.title),
        "decisions": stems(" ".join(entry.decisions)),
        "files": files,
        "summary": stems(entry.summary),
        "keywords": stems(" ".join(entry.keywords)),
    }


def search(index: SessionIndex, query: str, limit: int | None = None) -> list[SearchHit]:
    """Rank index entries against a free-text query.

    Each query term scores the weight of every field it appears in.
    Results are ordered by score, then most recently updated. Entries that
    score zero are left out.
    """
    terms = stems(query)
    if not terms:
        return []

    hits: list[SearchHit] = []
    for entry in index.entries():
        fields = _field_stems(entry)
        score = 0
        matched: list[str] = []
        for name, weight in FIELD_WEIGHTS.items():
            hits_in_field = len(terms & fields[name])
            if hits_in_field:
                score += weight * hits_in_field
                matched.append(name)
        if score > 0:
            hits.append(SearchHit(entry=entry, score=score, matched_fields=matched))

    hits.sort(key=lambda h: (-h.score, -h.entry.updated_at, h.entry.association_id))
    if limit is not None:
        hits = hits[:limit]
    return hits
