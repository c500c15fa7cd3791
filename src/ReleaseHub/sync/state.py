"""Owned sync state: the build map and the high-water-mark cursor."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Mapping, Optional

from ReleaseHub.models import Build, newest_first_key

__all__ = ["SyncSnapshot", "SyncState"]

_UNSET = object()


@dataclass(frozen=True)
class SyncSnapshot:
    """Point-in-time copy of the sync state."""

    builds: Dict[str, Build]
    cursor: Optional[datetime]

    @property
    def is_cold(self) -> bool:
        return self.cursor is None


class SyncState:
    """Build map plus cursor, guarded by one lock.

    The lock is held only while copying or swapping; callers never hold it
    across upstream I/O. A ``None`` cursor is the zero value and tells the
    engine to perform a full historical fetch.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._builds: Dict[str, Build] = {}
        self._cursor: Optional[datetime] = None
        self._cycles = 0
        self._last_error: Optional[str] = None

    @property
    def cursor(self) -> Optional[datetime]:
        with self._lock:
            return self._cursor

    def snapshot(self) -> SyncSnapshot:
        with self._lock:
            return SyncSnapshot(builds=dict(self._builds), cursor=self._cursor)

    def publish(self, builds: Mapping[str, Build], cursor: object = _UNSET) -> None:
        """Swap in ``builds`` (copied) and, when given, the new cursor, atomically."""
        copied = dict(builds)
        with self._lock:
            self._builds = copied
            if cursor is not _UNSET:
                self._cursor = cursor  # type: ignore[assignment]

    def record_cycle(self, error: Optional[str] = None) -> None:
        with self._lock:
            self._cycles += 1
            self._last_error = error

    def __len__(self) -> int:
        with self._lock:
            return len(self._builds)

    def get(self, build_id: str) -> Optional[Build]:
        with self._lock:
            return self._builds.get(build_id)

    def sorted_builds(self) -> List[Build]:
        """Builds newest first by creation time; unknown creation times first."""
        with self._lock:
            builds = list(self._builds.values())
        return sorted(builds, key=newest_first_key)

    def describe(self) -> Dict[str, object]:
        with self._lock:
            return {
                "builds": len(self._builds),
                "cursor": self._cursor.isoformat() if self._cursor else None,
                "cycles": self._cycles,
                "last_error": self._last_error,
            }
