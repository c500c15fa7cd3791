"""Upstream CI and hosting backends."""

from ReleaseHub.upstream.base import BuildSource
from ReleaseHub.upstream.bintray import BintrayClient
from ReleaseHub.upstream.buildkite import BuildkiteClient
from ReleaseHub.upstream.circleci import CircleCIClient
from ReleaseHub.upstream.http import build_http_client, fetch_json, open_stream

__all__ = [
    "BintrayClient",
    "BuildSource",
    "BuildkiteClient",
    "CircleCIClient",
    "build_http_client",
    "fetch_json",
    "open_stream",
]
