"""Entity store interface.

The store holds Build and Artifact entities and the Build → Artifact
relationship. It answers path-style queries of the form "Build having an
Artifact with kind K, limited to N" and loads each matching build together
with *all* of its artifacts (depth 1). The relationship filter can only
assert existence of a matching artifact; narrowing the nested collection is
the caller's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from ReleaseHub.models import Artifact, ArtifactKind, Build

__all__ = ["BuildQuery", "EntityStore"]


@dataclass(frozen=True, slots=True)
class BuildQuery:
    """Path-style build query.

    ``artifact_kind`` restricts the result to builds owning at least one
    artifact of that kind; ``None`` or :attr:`ArtifactKind.UNKNOWN` means no
    restriction.
    """

    artifact_kind: Optional[ArtifactKind] = None
    limit: int = 300

    @property
    def has_kind_filter(self) -> bool:
        return self.artifact_kind is not None and self.artifact_kind > 0


class EntityStore:
    """Protocol-like base class for entity stores.

    Implementations must be safe to call from concurrent request handlers
    while the sync engine writes.
    """

    def upsert_builds(self, builds: Iterable[Build]) -> int:
        """Insert or update builds with their artifacts (idempotent).

        Re-ingesting a build id updates the existing entity. The first
        ``created_at`` recorded for a build is kept. Returns the number of
        builds written.

        Raises:
            StoreQueryError: If the write fails
        """
        raise NotImplementedError

    def query_builds(self, query: BuildQuery) -> List[Build]:
        """Return builds matching ``query`` loaded to depth 1.

        Builds come newest first (undated first, then by creation time), so
        ``query.limit`` keeps the most recent builds.

        Raises:
            StoreQueryError: If the query fails
        """
        raise NotImplementedError

    def get_build(self, build_id: str) -> Optional[Build]:
        raise NotImplementedError

    def get_artifact(self, artifact_id: str) -> Artifact:
        """Load one artifact.

        Raises:
            ArtifactNotFoundError: If no artifact has this id
            StoreQueryError: If the load fails
        """
        raise NotImplementedError

    def stats(self) -> Dict[str, int]:
        """Return entity counts (``builds``, ``artifacts``)."""
        raise NotImplementedError

    def close(self) -> None:
        """Release resources held by the store."""
