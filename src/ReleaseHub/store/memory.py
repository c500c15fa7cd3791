"""In-memory entity store."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Optional

from ReleaseHub.errors import ArtifactNotFoundError
from ReleaseHub.models import Artifact, Build, newest_first_key
from ReleaseHub.store.base import BuildQuery, EntityStore

LOGGER = logging.getLogger(__name__)


class InMemoryEntityStore(EntityStore):
    """Dictionary-backed store; queries return builds newest first, ties in insertion order.

    Artifacts are indexed by id with a back-reference to their owning build,
    so an artifact lookup does not scan builds.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._builds: Dict[str, Build] = {}
        self._artifacts: Dict[str, Artifact] = {}

    def upsert_builds(self, builds: Iterable[Build]) -> int:
        written = 0
        with self._lock:
            for build in builds:
                previous = self._builds.get(build.id)
                merged = build.merged_into(previous)
                if previous is not None:
                    for artifact in previous.artifacts:
                        self._artifacts.pop(artifact.id, None)
                self._builds[build.id] = merged
                for artifact in merged.artifacts:
                    self._artifacts[artifact.id] = artifact
                written += 1
        return written

    def query_builds(self, query: BuildQuery) -> List[Build]:
        with self._lock:
            candidates = sorted(self._builds.values(), key=newest_first_key)
        results: List[Build] = []
        for build in candidates:
            if len(results) >= query.limit:
                break
            if query.has_kind_filter and not any(
                artifact.kind == query.artifact_kind for artifact in build.artifacts
            ):
                continue
            results.append(build)
        return results

    def get_build(self, build_id: str) -> Optional[Build]:
        with self._lock:
            return self._builds.get(build_id)

    def get_artifact(self, artifact_id: str) -> Artifact:
        with self._lock:
            artifact = self._artifacts.get(artifact_id)
        if artifact is None:
            raise ArtifactNotFoundError(artifact_id)
        return artifact

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"builds": len(self._builds), "artifacts": len(self._artifacts)}

    def close(self) -> None:
        LOGGER.debug("In-memory store closed")
