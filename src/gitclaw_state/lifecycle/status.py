"""Association status providers.

The lifecycle manager asks a provider whether an association (an issue or
pull request) is open and when it last saw external activity. The GitHub
side lives in the orchestrator; it can hand statuses over in memory or
write them to a YAML file:

    "42":
      state: closed
      last_activity: 1706000000
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import yaml

from gitclaw_state.logging import get_logger

logger = get_logger("status")


@dataclass
class AssociationStatus:
    """Open/closed state and last external activity of an association."""

    is_open: bool
    last_activity: int | None = None  # Unix timestamp (seconds)


class AssociationStatusProvider(Protocol):
    def get_status(self, association_id: str) -> AssociationStatus | None: ...


class StaticStatusProvider:
    """Serves statuses from an in-memory mapping."""

    def __init__(self, statuses: dict[str, AssociationStatus] | None = None) -> None:
        self._statuses = {str(k): v for k, v in (statuses or {}).items()}

    def set_status(self, association_id: str, status: AssociationStatus) -> None:
        self._statuses[str(association_id)] = status

    def get_status(self, association_id: str) -> AssociationStatus | None:
        return self._statuses.get(str(association_id))


def _parse_status(association_id: str, data: Any) -> AssociationStatus | None:
    if not isinstance(data, dict):
        logger.warning("Ignoring malformed status entry: association=%s", association_id)
        return None
    state = str(data.get("state", "open")).lower()
    last_activity = data.get("last_activity")
    return AssociationStatus(
        is_open=state not in ("closed", "merged"),
        last_activity=int(last_activity) if last_activity is not None else None,
    )


class FileStatusProvider(StaticStatusProvider):
    """Serves statuses loaded from a YAML file."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = path
        self.reload()

    def reload(self) -> None:
        """Re-read the status file. A missing file means no known statuses."""
        self._statuses = {}
        if not self._path.exists():
            logger.warning("Status file not found: path=%s", self._path)
            return
        with open(self._path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            logger.warning("Status file is not a mapping, ignoring it: path=%s", self._path)
            return
        for association_id, entry in data.items():
            status = _parse_status(str(association_id), entry)
            if status is not None:
                self._statuses[str(association_id)] = status
