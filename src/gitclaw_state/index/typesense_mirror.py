"""Typesense mirror of the session index.

Optional: when enabled, index entries are also upserted into a Typesense
collection so dashboards can run full-text queries over them.
"""

from typing import Any

import typesense
from typesense.exceptions import ObjectNotFound

from gitclaw_state.config import TypesenseConfig
from gitclaw_state.logging import get_logger
from gitclaw_state.models import IndexEntry

logger = get_logger("typesense")


def sessions_schema(name: str = "sessions") -> dict[str, Any]:
    return {
        "name": name,
        "fields": [
            {"name": "id", "type": "string"},
            {"name": "association_id", "type": "string", "facet": True},
            {"name": "title", "type": "string"},
            {"name": "summary", "type": "string"},
            {"name": "keywords", "type": "string[]", "facet": True},
            {"name": "files", "type": "string[]", "facet": True},
            {"name": "decisions", "type": "string[]"},
            {"name": "created_at", "type": "int64", "sort": True},
            {"name": "updated_at", "type": "int64", "sort": True},
            {"name": "turn_count", "type": "int32"},
        ],
        "default_sorting_field": "updated_at",
    }


class TypesenseSessionMirror:
    """Mirrors session index entries into a Typesense collection.

    The local index file stays authoritative; the mirror is a copy for
    full-text queries and may lag behind or be rebuilt at any time.
    """

    def __init__(self, config: TypesenseConfig) -> None:
        self._collection = config.collection
        self._client = typesense.Client({
            "nodes": [{
                "host": config.host,
                "port": str(config.port),
                "protocol": config.protocol,
            }],
            "api_key": config.api_key,
            "connection_timeout_seconds": 5,
        })

    @property
    def client(self) -> typesense.Client:
        return self._client

    def _documents(self):
        return self._client.collections[self._collection].documents

    def ensure_collection(self) -> None:
        """Create the sessions collection on first use."""
        try:
            self._client.collections[self._collection].retrieve()
        except ObjectNotFound:
            self._client.collections.create(sessions_schema(self._collection))
            logger.info("Created collection: collection=%s", self._collection)

    def upsert_entries(self, entries: list[IndexEntry]) -> dict[str, int]:
        """Upsert entries keyed by association id.

        Returns:
            Counts of mirrored and rejected documents, {"success": N, "failed": M}
        """
        if not entries:
            return {"success": 0, "failed": 0}

        results = self._documents().import_(
            [entry.to_typesense_doc() for entry in entries],
            {"action": "upsert"},
        )
        rejected = [r.get("error", "unknown") for r in results if not r.get("success", False)]
        if rejected:
            logger.warning(
                "Typesense rejected entries: mirrored=%d rejected=%d first_error=%s",
                len(results) - len(rejected),
                len(rejected),
                rejected[0],
            )
        return {"success": len(results) - len(rejected), "failed": len(rejected)}

    def delete_entry(self, association_id: str) -> bool:
        """Remove an entry. Returns False if it was not there."""
        try:
            self._documents()[str(association_id)].delete()
        except ObjectNotFound:
            return False
        return True

    def search(self, query: str, page: int = 1, per_page: int = 10) -> dict[str, Any]:
        """Full-text query over mirrored entries, weighted like the local index.

        ``query`` may be "*" to list everything, newest first.
        """
        return self._documents().search({
            "q": query,
            "query_by": "title,decisions,files,summary,keywords",
            "query_by_weights": "5,4,3,2,1",
            "page": page,
            "per_page": per_page,
            "sort_by": "_text_match:desc,updated_at:desc",
        })
