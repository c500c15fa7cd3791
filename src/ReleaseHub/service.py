# === NAVMAP v1 ===
# {
#   "module": "ReleaseHub.service",
#   "purpose": "Wire store, sync engines, token authority, query layer and dispatcher from configuration.",
#   "sections": [
#     {"id": "service", "name": "Service", "anchor": "class-service", "kind": "class"},
#     {"id": "build-service", "name": "build_service", "anchor": "function-build-service", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""
Service facade.

One :class:`Service` instance owns every long-lived component of a process:
the entity store, one sync engine (with its own :class:`SyncState`) per
configured upstream source, the scheduler, the token authority, the query
layer and the artifact dispatcher. The HTTP surface and the CLI only talk to
this facade.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from ReleaseHub.config.models import ReleaseHubConfig
from ReleaseHub.dispatch import ArtifactDispatcher, ArtifactSink, ArtifactStream
from ReleaseHub.errors import ConfigError, DriverNotConfiguredError, StoreQueryError
from ReleaseHub.manifest import release_manifest
from ReleaseHub.models import Artifact, ArtifactKind, Build, newest_first_key
from ReleaseHub.query import BuildListing, QueryLayer
from ReleaseHub.signing import TokenAuthority, TokenGate
from ReleaseHub.store import EntityStore, build_store
from ReleaseHub.sync import SyncEngine, SyncScheduler, SyncState
from ReleaseHub.upstream import BintrayClient, BuildkiteClient, CircleCIClient, build_http_client
from ReleaseHub.upstream.base import BuildSource

LOGGER = logging.getLogger(__name__)

__all__ = ["Service", "build_service"]


class Service:
    """Facade over the release aggregation core."""

    def __init__(
        self,
        config: ReleaseHubConfig,
        *,
        store: EntityStore,
        authority: TokenAuthority,
        engines: List[SyncEngine],
        dispatcher: ArtifactDispatcher,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.config = config
        self.store = store
        self.authority = authority
        self.engines = engines
        self.dispatcher = dispatcher
        self.scheduler = SyncScheduler(engines, interval_s=config.sync.interval_s)
        self.query = QueryLayer(
            store,
            authority,
            api_prefix=config.server.api_prefix,
            max_results=config.query.max_results,
        )
        self.gate = TokenGate(config.auth.token_path_prefixes, authority)
        self._http_client = http_client
        self._started = time.monotonic()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self.config.sync.enabled and self.engines:
            self.scheduler.start()

    def close(self) -> None:
        self.scheduler.stop(timeout=5.0)
        if self._http_client is not None:
            self._http_client.close()
        self.store.close()

    def refresh(self) -> Dict[str, Optional[int]]:
        """Run one sync cycle over every source in the calling thread."""
        return self.scheduler.run_once()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def ping(self) -> Dict[str, Any]:
        return {}

    def status(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"uptime_seconds": round(time.monotonic() - self._started, 3)}
        try:
            payload["db"] = self.store.stats()
        except StoreQueryError as e:
            payload["db_error"] = str(e)
        payload["sync"] = [
            {"source": engine.name, **engine.state.describe()} for engine in self.engines
        ]
        return payload

    def list_builds(self, artifact_kind: Optional[ArtifactKind] = None) -> BuildListing:
        return self.query.list_builds(artifact_kind)

    def get_artifact(self, artifact_id: str) -> Artifact:
        return self.query.get_artifact(artifact_id)

    def manifest(self, artifact_id: str, base_url: str) -> bytes:
        """Installer manifest pointing at a signed download URL of ``artifact_id``.

        The signature covers the path only; ``base_url`` is prepended afterwards.
        """
        artifact = self.get_artifact(artifact_id)
        signed = self.authority.signed_path("GET", self.query.download_path(artifact.id))
        manifest = self.config.manifest
        return release_manifest(
            manifest.bundle_id, manifest.version, manifest.title, base_url.rstrip("/") + signed
        )

    def open_download(self, artifact_id: str) -> ArtifactStream:
        return self.dispatcher.stream(self.get_artifact(artifact_id))

    def download(self, artifact_id: str, sink: ArtifactSink) -> int:
        return self.dispatcher.download(self.get_artifact(artifact_id), sink)

    def recent_builds(self) -> List[Build]:
        """Builds held by the sync engines, newest first."""
        builds: List[Build] = []
        for engine in self.engines:
            builds.extend(engine.state.sorted_builds())
        return sorted(builds, key=newest_first_key)


def _build_sources(config: ReleaseHubConfig, client: httpx.Client) -> List[BuildSource]:
    sources: List[BuildSource] = []
    for name in config.sync.sources:
        if name == "circleci":
            sources.append(CircleCIClient(config.circleci, config.http, client))
        elif name == "buildkite":
            try:
                sources.append(BuildkiteClient(config.buildkite, config.http, client))
            except DriverNotConfiguredError as e:
                raise ConfigError(f"sync source 'buildkite': {e}") from e
    return sources


def build_service(config: ReleaseHubConfig, **client_overrides: Any) -> Service:
    """Create a :class:`Service` from ``config``.

    ``client_overrides`` are forwarded to the shared ``httpx.Client`` (tests
    pass a ``transport``).

    Raises:
        ConfigError: If a configured sync source lacks its credentials
    """
    client = build_http_client(config.http, **client_overrides)
    store = build_store(config.store)
    authority = TokenAuthority(config.auth.salt)

    sources = _build_sources(config, client)
    engines = [
        SyncEngine(
            source,
            SyncState(),
            store,
            page_size=config.sync.page_size,
            max_pages=config.sync.max_pages,
        )
        for source in sources
    ]

    buildkite: Optional[BuildkiteClient] = None
    if config.buildkite.token and config.buildkite.organization:
        buildkite = BuildkiteClient(config.buildkite, config.http, client)
    dispatcher = ArtifactDispatcher(
        buildkite=buildkite,
        bintray=BintrayClient(config.bintray, client),
    )

    LOGGER.info(
        "service configured",
        extra={
            "extra_fields": {
                "store": config.store.backend,
                "sources": [source.name for source in sources],
                "config_hash": config.config_hash()[:12],
            }
        },
    )
    return Service(
        config,
        store=store,
        authority=authority,
        engines=engines,
        dispatcher=dispatcher,
        http_client=client,
    )
