# === NAVMAP v1 ===
# {
#   "module": "ReleaseHub.sync.engine",
#   "purpose": "Incremental merge of upstream builds into the sync state and entity store.",
#   "sections": [
#     {"id": "syncengine", "name": "SyncEngine", "anchor": "class-syncengine", "kind": "class"},
#     {"id": "refresh", "name": "SyncEngine.refresh", "anchor": "function-refresh", "kind": "function"},
#     {"id": "full-fetch", "name": "SyncEngine._full_fetch", "anchor": "function-full-fetch", "kind": "function"},
#     {"id": "incremental-fetch", "name": "SyncEngine._incremental_fetch", "anchor": "function-incremental-fetch", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""
Incremental synchronization engine.

Responsibilities
----------------
- Keep a canonical build map consistent with one upstream build source
  without re-fetching full history every cycle.
- Track the cursor: the most recent build update time observed.
- Write every merged build to the entity store (the engine is its only writer).

Modes
-----
Cold (cursor unset):
    Page through history (``page_size`` records per page, at most
    ``max_pages`` pages), merge every record, publish the map after every
    page so concurrent readers see monotonically growing data, stop at the
    first short page. The cursor is the maximum stop time seen and is
    published with the final map.
Warm (cursor set):
    Fetch only the newest page, walk it oldest-to-newest, merge records whose
    update time (stop time, else start time) is after the previous cursor and
    advance the cursor to the newest update time seen. No change means no
    publish and no log line.

In both modes artifacts are attached only to the records being merged.

Failure semantics
-----------------
An upstream error aborts the cycle. In warm mode the map and cursor are left
exactly as they were; in cold mode the pages already published stay visible
but the cursor stays unset, so the next tick restarts the full fetch.

Warm mode only reads the newest page. If more than a page of builds finish
between two ticks, the overflow is never seen. A warning is logged when the
whole warm page is newer than the previous cursor, the visible symptom of
that gap.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional

from ReleaseHub.models import Build
from ReleaseHub.store.base import EntityStore
from ReleaseHub.sync.state import SyncState
from ReleaseHub.upstream.base import BuildSource

LOGGER = logging.getLogger(__name__)

__all__ = ["SyncEngine"]


class SyncEngine:
    """Merges one upstream build source into a :class:`SyncState` and a store."""

    def __init__(
        self,
        source: BuildSource,
        state: SyncState,
        store: EntityStore,
        *,
        page_size: int = 100,
        max_pages: int = 20,
    ) -> None:
        self.source = source
        self.state = state
        self.store = store
        self.page_size = page_size
        self.max_pages = max_pages

    @property
    def name(self) -> str:
        return self.source.name

    def refresh(self) -> int:
        """Run one sync cycle and return the number of changed builds.

        Raises:
            UpstreamFetchError: If the upstream listing fails
            StoreQueryError: If the entity store rejects the write
        """
        snapshot = self.state.snapshot()
        if snapshot.is_cold:
            return self._full_fetch()
        return self._incremental_fetch(snapshot.builds, snapshot.cursor)

    def _full_fetch(self) -> int:
        LOGGER.info("initial builds fetch", extra={"extra_fields": {"source": self.name}})
        builds: Dict[str, Build] = dict(self.state.snapshot().builds)
        most_recent: Optional[datetime] = None
        recorded = 0

        for page in range(self.max_pages):
            records = self.source.list_builds(limit=self.page_size, offset=page * self.page_size)
            records = self.source.attach_artifacts(records)
            for record in records:
                if record.finished_at is not None and (
                    most_recent is None or record.finished_at > most_recent
                ):
                    most_recent = record.finished_at
            merged = [record.merged_into(builds.get(record.id)) for record in records]
            self.store.upsert_builds(merged)
            for build in merged:
                builds[build.id] = build
            recorded += len(merged)
            if len(records) < self.page_size:
                break
            self.state.publish(builds)

        self.state.publish(builds, cursor=most_recent)
        LOGGER.info(
            "fetched %d initial builds",
            len(builds),
            extra={
                "extra_fields": {
                    "source": self.name,
                    "builds": len(builds),
                    "cursor": most_recent.isoformat() if most_recent else None,
                }
            },
        )
        return recorded

    def _incremental_fetch(self, builds: Dict[str, Build], previous: datetime) -> int:
        records = self.source.list_builds(limit=self.page_size, offset=0)

        timed = [record for record in records if record.update_time is not None]
        timed.sort(key=lambda record: record.update_time)

        most_recent = previous
        fresh: List[Build] = []
        for record in timed:
            update_time = record.update_time
            if update_time > most_recent:
                most_recent = update_time
            if update_time > previous:
                fresh.append(record)

        if not fresh:
            return 0

        if len(records) >= self.page_size and len(fresh) == len(timed):
            LOGGER.warning(
                "every build on the latest page is new; older updates may have been missed",
                extra={"extra_fields": {"source": self.name, "page_size": self.page_size}},
            )

        changed = [
            record.merged_into(builds.get(record.id))
            for record in self.source.attach_artifacts(fresh)
        ]
        self.store.upsert_builds(changed)
        for build in changed:
            builds[build.id] = build
        self.state.publish(builds, cursor=most_recent)
        LOGGER.info(
            "fetched %d new builds",
            len(changed),
            extra={
                "extra_fields": {
                    "source": self.name,
                    "changed": len(changed),
                    "cursor": most_recent.isoformat(),
                }
            },
        )
        return len(changed)
