"""
Query layer: filtered, sorted, bounded build listings with signed URLs.

The entity store can only assert that a build owns *some* artifact of the
requested kind; it loads each matching build with all of its artifacts. The
second, in-memory stage narrows the nested collections so that a listing
filtered by kind never leaks artifacts of another kind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ReleaseHub.errors import StoreQueryError
from ReleaseHub.models import Artifact, ArtifactKind, Build, newest_first_key
from ReleaseHub.signing import TokenAuthority
from ReleaseHub.store.base import BuildQuery, EntityStore

LOGGER = logging.getLogger(__name__)

__all__ = ["BuildListing", "QueryLayer"]


@dataclass(frozen=True)
class BuildListing:
    builds: List[Build]
    db_stats: Optional[Dict[str, int]] = field(default=None)

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "builds": [build.to_public_dict() for build in self.builds],
            "db_stats": self.db_stats,
        }


class QueryLayer:
    """Read-only view over the entity store."""

    def __init__(
        self,
        store: EntityStore,
        authority: TokenAuthority,
        *,
        api_prefix: str = "/api",
        max_results: int = 300,
    ) -> None:
        self.store = store
        self.authority = authority
        self.api_prefix = api_prefix.rstrip("/")
        self.max_results = max_results

    def download_path(self, artifact_id: str) -> str:
        return f"{self.api_prefix}/artifact-download/{artifact_id}"

    def manifest_path(self, artifact_id: str) -> str:
        return f"{self.api_prefix}/artifact-manifest/{artifact_id}"

    def sign_artifact(self, artifact: Artifact) -> Artifact:
        return artifact.with_signed_url(
            self.authority.signed_path("GET", self.download_path(artifact.id))
        )

    def list_builds(self, artifact_kind: Optional[ArtifactKind] = None) -> BuildListing:
        """List builds, optionally restricted to those owning ``artifact_kind``.

        Raises:
            StoreQueryError: If the store fails to answer
        """
        query = BuildQuery(artifact_kind=artifact_kind, limit=self.max_results)
        try:
            builds = self.store.query_builds(query)
        except StoreQueryError as e:
            raise StoreQueryError(f"build listing failed: {e}") from e

        stats: Optional[Dict[str, int]]
        try:
            stats = self.store.stats()
        except StoreQueryError as e:
            LOGGER.warning(
                "store stats unavailable: %s", e, extra={"extra_fields": {"error": str(e)}}
            )
            stats = None

        results = []
        for build in builds:
            artifacts = build.artifacts
            if query.has_kind_filter:
                artifacts = tuple(a for a in artifacts if a.kind == artifact_kind)
            results.append(build.with_artifacts(tuple(self.sign_artifact(a) for a in artifacts)))
        results.sort(key=newest_first_key)

        LOGGER.debug(
            "build listing served",
            extra={
                "extra_fields": {
                    "artifact_kind": artifact_kind.name if artifact_kind is not None else None,
                    "builds": len(results),
                }
            },
        )
        return BuildListing(builds=results, db_stats=stats)

    def get_artifact(self, artifact_id: str) -> Artifact:
        """Raises ArtifactNotFoundError for unknown ids."""
        return self.store.get_artifact(artifact_id)
