# === NAVMAP v1 ===
# {
#   "module": "ReleaseHub.dispatch",
#   "purpose": "Route artifact downloads to their upstream backend and stream the bytes.",
#   "sections": [
#     {"id": "driver-strategies", "name": "DRIVER_STRATEGIES", "anchor": "const-driver-strategies", "kind": "constant"},
#     {"id": "artifactsink", "name": "ArtifactSink", "anchor": "class-artifactsink", "kind": "class"},
#     {"id": "artifactstream", "name": "ArtifactStream", "anchor": "class-artifactstream", "kind": "class"},
#     {"id": "artifactdispatcher", "name": "ArtifactDispatcher", "anchor": "class-artifactdispatcher", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""
Artifact dispatcher.

Responsibilities
----------------
- Resolve the backend of an artifact from its :class:`~ReleaseHub.models.Driver`
  tag. The driver set is closed and every member maps to exactly one
  strategy; the table is checked when a dispatcher is built.
- Open the upstream byte stream *before* handing anything to the caller, so
  that configuration and upstream status errors surface as a clean failure
  rather than a truncated body.
- Derive best-effort response headers from the artifact record.

Failure modes
-------------
``DriverNotConfiguredError``
    The driver is supported but its client was not set up (e.g. no
    Buildkite token).
``UnsupportedDriverError``
    The driver has no download strategy at all (CircleCI, unknown).
``EmptyArtifactError``
    The upstream stream ended without a single byte although the recorded
    file size is positive.

Transport errors raised while the body is being streamed propagate as-is;
nothing is retried at this layer.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterator, Mapping, Optional, Protocol
from urllib.parse import quote

import httpx

from ReleaseHub.errors import (
    DispatchError,
    DriverNotConfiguredError,
    EmptyArtifactError,
    UnsupportedDriverError,
    UpstreamFetchError,
)
from ReleaseHub.models import Artifact, Driver
from ReleaseHub.upstream.bintray import BintrayClient
from ReleaseHub.upstream.buildkite import BuildkiteClient

LOGGER = logging.getLogger(__name__)

__all__ = [
    "DRIVER_STRATEGIES",
    "ArtifactDispatcher",
    "ArtifactSink",
    "ArtifactStream",
    "artifact_headers",
]

# Strategy name per driver; ``None`` marks a driver without download support.
DRIVER_STRATEGIES: Mapping[Driver, Optional[str]] = {
    Driver.UNKNOWN: None,
    Driver.BUILDKITE: "buildkite",
    Driver.CIRCLECI: None,
    Driver.BINTRAY: "bintray",
}

DEFAULT_CHUNK_SIZE = 64 * 1024


class ArtifactSink(Protocol):
    """Destination of a download: receives headers, then body chunks."""

    def set_header(self, name: str, value: str) -> None: ...

    def write(self, chunk: bytes) -> None: ...


def content_disposition(filename: str) -> str:
    """Inline disposition with an ASCII fallback name and an RFC 5987 ``filename*``."""

    fallback = "".join(c if " " <= c <= "~" and c not in "\\\"" else "_" for c in filename)
    return f"inline; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def artifact_headers(artifact: Artifact) -> Dict[str, str]:
    headers = {"Content-Disposition": content_disposition(artifact.filename)}
    if artifact.file_size > 0:
        headers["Content-Length"] = str(artifact.file_size)
    if artifact.mime_type:
        headers["Content-Type"] = artifact.mime_type
    return headers


class ArtifactStream:
    """An opened upstream artifact body.

    Iterate :meth:`iter_bytes` exactly once; the upstream response is closed
    when iteration ends, fails, or :meth:`close` is called.
    """

    def __init__(
        self,
        artifact: Artifact,
        response: httpx.Response,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.artifact = artifact
        self.headers = artifact_headers(artifact)
        self._response = response
        self._chunk_size = chunk_size
        self.bytes_sent = 0

    def iter_bytes(self) -> Iterator[bytes]:
        try:
            for chunk in self._response.iter_bytes(self._chunk_size):
                if not chunk:
                    continue
                self.bytes_sent += len(chunk)
                yield chunk
        finally:
            self.close()
        if self.bytes_sent == 0 and self.artifact.file_size > 0:
            raise EmptyArtifactError(
                f"upstream returned no data for {self.artifact.id} "
                f"(expected {self.artifact.file_size} bytes)"
            )

    def close(self) -> None:
        self._response.close()


class ArtifactDispatcher:
    """Maps each driver to its download backend and streams artifact bytes."""

    def __init__(
        self,
        *,
        buildkite: Optional[BuildkiteClient] = None,
        bintray: Optional[BintrayClient] = None,
        strategies: Mapping[Driver, Optional[str]] = DRIVER_STRATEGIES,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        missing = [driver.name for driver in Driver if driver not in strategies]
        if missing:
            raise RuntimeError(f"no download strategy declared for drivers: {missing}")
        self.buildkite = buildkite
        self.bintray = bintray
        self.chunk_size = chunk_size
        self._strategies = dict(strategies)
        self._openers = {
            "buildkite": self._open_buildkite,
            "bintray": self._open_bintray,
        }

    def _open_buildkite(self, artifact: Artifact) -> httpx.Response:
        if self.buildkite is None:
            raise DriverNotConfiguredError(Driver.BUILDKITE, "buildkite token required")
        return self.buildkite.open_artifact(artifact.download_url)

    def _open_bintray(self, artifact: Artifact) -> httpx.Response:
        if self.bintray is None:
            raise DriverNotConfiguredError(Driver.BINTRAY)
        return self.bintray.open_content(artifact.download_url)

    def stream(self, artifact: Artifact) -> ArtifactStream:
        """Open the upstream body of ``artifact``.

        Raises:
            UnsupportedDriverError: If the driver has no download strategy
            DriverNotConfiguredError: If the backend client is not set up
            DispatchError: If the upstream request fails before streaming
        """
        strategy = self._strategies.get(artifact.driver)
        if strategy is None:
            LOGGER.warning(
                "download unsupported",
                extra={"extra_fields": {"artifact_id": artifact.id, "driver": artifact.driver.label}},
            )
            raise UnsupportedDriverError(artifact.driver)
        if not artifact.download_url:
            raise DispatchError(f"artifact {artifact.id} has no download reference")

        try:
            response = self._openers[strategy](artifact)
        except DriverNotConfiguredError:
            LOGGER.error(
                "download backend not configured",
                extra={"extra_fields": {"artifact_id": artifact.id, "driver": artifact.driver.label}},
            )
            raise
        except UpstreamFetchError as e:
            raise DispatchError(f"download of {artifact.id} failed: {e}") from e

        LOGGER.info(
            "artifact stream opened",
            extra={
                "extra_fields": {
                    "artifact_id": artifact.id,
                    "driver": artifact.driver.label,
                    "file_size": artifact.file_size,
                }
            },
        )
        return ArtifactStream(artifact, response, chunk_size=self.chunk_size)

    def download(self, artifact: Artifact, sink: ArtifactSink) -> int:
        """Stream ``artifact`` into ``sink`` and return the number of bytes written."""
        opened = self.stream(artifact)
        for name, value in opened.headers.items():
            sink.set_header(name, value)
        for chunk in opened.iter_bytes():
            sink.write(chunk)
        return opened.bytes_sent
