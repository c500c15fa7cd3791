"""Buildkite REST client: build listing, artifact listing and artifact download."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Sequence

import httpx

from ReleaseHub.config.models import BuildkiteConfig, HttpConfig
from ReleaseHub.errors import DriverNotConfiguredError, UpstreamFetchError
from ReleaseHub.models import (
    Artifact,
    Build,
    BuildState,
    Driver,
    kind_from_path,
    parse_timestamp,
)
from ReleaseHub.upstream.http import fetch_json, open_stream

LOGGER = logging.getLogger(__name__)

_FINISHED_STATES = {BuildState.PASSED, BuildState.FAILED, BuildState.CANCELED}


class BuildkiteClient:
    """Buildkite client acting as both a build source and a download backend.

    Buildkite pages are 1-based; offsets are converted assuming they are
    multiples of ``limit``, which is how the sync engine pages.
    """

    driver = Driver.BUILDKITE
    name = "buildkite"

    def __init__(self, config: BuildkiteConfig, http_config: HttpConfig, client: httpx.Client):
        if not config.token:
            raise DriverNotConfiguredError(Driver.BUILDKITE, "buildkite token required")
        if not config.organization:
            raise DriverNotConfiguredError(Driver.BUILDKITE, "buildkite organization required")
        self.config = config
        self.http_config = http_config
        self.client = client

    @property
    def _api(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/v2/organizations/{self.config.organization}"

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.config.token}"}

    def list_builds(self, *, limit: int, offset: int) -> List[Build]:
        url = f"{self._api}/builds"
        payload = fetch_json(
            self.client,
            url,
            provider=self.name,
            config=self.http_config,
            params={"page": offset // limit + 1, "per_page": limit},
            headers=self._headers(),
        )
        if not isinstance(payload, list):
            raise UpstreamFetchError(
                "buildkite: unexpected payload shape", provider=self.name, url=url
            )
        return [build_from_buildkite(record) for record in payload]

    def attach_artifacts(self, builds: Sequence[Build]) -> List[Build]:
        """Load artifacts for the finished builds in ``builds``."""

        if not self.config.fetch_artifacts:
            return list(builds)
        return [
            build.with_artifacts(tuple(self.list_artifacts(build)))
            if build.state in _FINISHED_STATES
            else build
            for build in builds
        ]

    def list_artifacts(self, build: Build) -> List[Artifact]:
        url = f"{self._api}/pipelines/{build.project}/builds/{build.number}/artifacts"
        payload = fetch_json(
            self.client,
            url,
            provider=self.name,
            config=self.http_config,
            headers=self._headers(),
        )
        if not isinstance(payload, list):
            raise UpstreamFetchError(
                "buildkite: unexpected artifact payload", provider=self.name, url=url
            )
        return [artifact_from_buildkite(item, build.id) for item in payload]

    def open_artifact(self, download_url: str) -> httpx.Response:
        """Open the artifact byte stream.

        Buildkite answers with a redirect to object storage; httpx drops the
        ``Authorization`` header when the redirect leaves the API origin.
        """
        return open_stream(self.client, download_url, provider=self.name, headers=self._headers())


def build_from_buildkite(record: Mapping[str, Any]) -> Build:
    """Normalise one Buildkite build record."""

    pipeline = record.get("pipeline") or {}
    project = pipeline.get("slug")
    return Build(
        id=f"buildkite:{record.get('id')}",
        driver=Driver.BUILDKITE,
        created_at=parse_timestamp(record.get("created_at")),
        started_at=parse_timestamp(record.get("started_at")),
        finished_at=parse_timestamp(record.get("finished_at")),
        state=BuildState.from_wire(record.get("state")),
        project=project,
        number=record.get("number"),
        branch=record.get("branch"),
        commit=record.get("commit"),
        message=record.get("message"),
        url=record.get("web_url"),
    )


def artifact_from_buildkite(item: Mapping[str, Any], build_id: str) -> Artifact:
    path = item.get("path") or item.get("filename")
    return Artifact(
        id=f"buildkite:{item.get('id')}",
        build_id=build_id,
        kind=kind_from_path(path),
        driver=Driver.BUILDKITE,
        download_url=item.get("download_url"),
        local_path=path,
        file_size=int(item.get("file_size") or 0),
        mime_type=item.get("mime_type"),
    )
