"""CircleCI v1.1 build listing."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Sequence

import httpx

from ReleaseHub.config.models import CircleCIConfig, HttpConfig
from ReleaseHub.errors import UpstreamFetchError
from ReleaseHub.models import Build, BuildState, Driver, parse_timestamp
from ReleaseHub.upstream.http import fetch_json

LOGGER = logging.getLogger(__name__)


class CircleCIClient:
    """Reads ``/recent-builds`` across every project followed by the token owner.

    CircleCI artifacts are not downloadable through ReleaseHub, so builds are
    listed shallow and carry no artifacts.
    """

    driver = Driver.CIRCLECI
    name = "circleci"

    def __init__(self, config: CircleCIConfig, http_config: HttpConfig, client: httpx.Client):
        self.config = config
        self.http_config = http_config
        self.client = client

    def _headers(self) -> dict:
        if self.config.token:
            return {"Circle-Token": self.config.token}
        return {}

    def list_builds(self, *, limit: int, offset: int) -> List[Build]:
        url = f"{self.config.base_url.rstrip('/')}/recent-builds"
        payload = fetch_json(
            self.client,
            url,
            provider=self.name,
            config=self.http_config,
            params={"limit": limit, "offset": offset, "shallow": "true"},
            headers=self._headers(),
        )
        if not isinstance(payload, list):
            raise UpstreamFetchError(
                "circleci: unexpected payload shape", provider=self.name, url=url
            )
        return [build_from_circleci(record) for record in payload]

    def attach_artifacts(self, builds: Sequence[Build]) -> List[Build]:
        return list(builds)


def _project(record: Mapping[str, Any]) -> Optional[str]:
    username = record.get("username")
    reponame = record.get("reponame")
    if username and reponame:
        return f"{username}/{reponame}"
    return reponame or None


def build_from_circleci(record: Mapping[str, Any]) -> Build:
    """Normalise one CircleCI build record."""

    number = record.get("build_num")
    project = _project(record)
    started_at = parse_timestamp(record.get("start_time"))
    created_at = parse_timestamp(record.get("queued_at")) or started_at
    return Build(
        id=f"circleci:{project}:{number}",
        driver=Driver.CIRCLECI,
        created_at=created_at,
        started_at=started_at,
        finished_at=parse_timestamp(record.get("stop_time")),
        state=BuildState.from_wire(record.get("status") or record.get("lifecycle")),
        project=project,
        number=number,
        branch=record.get("branch"),
        commit=record.get("vcs_revision"),
        message=record.get("subject"),
        url=record.get("build_url"),
    )
