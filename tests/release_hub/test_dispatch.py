"""Tests for the artifact dispatcher."""

from __future__ import annotations

import posixpath
from typing import Dict, List

import httpx
import pytest

from ReleaseHub.config.models import BintrayConfig, BuildkiteConfig, HttpConfig
from ReleaseHub.dispatch import (
    DRIVER_STRATEGIES,
    ArtifactDispatcher,
    artifact_headers,
    content_disposition,
)
from ReleaseHub.errors import (
    DispatchError,
    DriverNotConfiguredError,
    EmptyArtifactError,
    UnsupportedDriverError,
)
from ReleaseHub.models import ArtifactKind, Driver
from ReleaseHub.upstream import BintrayClient, BuildkiteClient, build_http_client

PAYLOAD = b"0123456789" * 1000


class RecordingSink:
    def __init__(self) -> None:
        self.headers: Dict[str, str] = {}
        self.chunks: List[bytes] = []

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    def write(self, chunk: bytes) -> None:
        self.chunks.append(chunk)

    @property
    def body(self) -> bytes:
        return b"".join(self.chunks)


class FailingStream(httpx.SyncByteStream):
    def __iter__(self):
        yield b"x" * 2048
        raise httpx.ReadError("connection reset")


def _dispatcher(handler, *, with_buildkite: bool = True) -> ArtifactDispatcher:
    client = build_http_client(HttpConfig(), transport=httpx.MockTransport(handler))
    buildkite = None
    if with_buildkite:
        buildkite = BuildkiteClient(
            BuildkiteConfig(token="bk-token", organization="acme"), HttpConfig(), client
        )
    return ArtifactDispatcher(
        buildkite=buildkite,
        bintray=BintrayClient(BintrayConfig(base_url="https://dl.example"), client),
        chunk_size=1024,
    )


def test_every_driver_has_a_strategy():
    assert set(DRIVER_STRATEGIES) == set(Driver)


def test_incomplete_strategy_table_is_rejected():
    partial = {driver: None for driver in Driver if driver is not Driver.BINTRAY}
    with pytest.raises(RuntimeError, match="BINTRAY"):
        ArtifactDispatcher(strategies=partial)


def test_headers(make_artifact):
    artifact = make_artifact(
        "a", "b", local_path="dist/App.ipa", file_size=10, mime_type="application/octet-stream"
    )
    assert artifact_headers(artifact) == {
        "Content-Disposition": "inline; filename=\"App.ipa\"; filename*=UTF-8''App.ipa",
        "Content-Length": "10",
        "Content-Type": "application/octet-stream",
    }
    bare = make_artifact("b", "b", local_path="dist/App.apk")
    assert artifact_headers(bare) == {
        "Content-Disposition": "inline; filename=\"App.apk\"; filename*=UTF-8''App.apk"
    }


@pytest.mark.parametrize(
    ("local_path", "expected"),
    [
        (
            "dist/My App; v2.ipa",
            "inline; filename=\"My App; v2.ipa\"; filename*=UTF-8''My%20App%3B%20v2.ipa",
        ),
        (
            "dist/Приложение.apk",
            "inline; filename=\"__________.apk\"; filename*=UTF-8''"
            "%D0%9F%D1%80%D0%B8%D0%BB%D0%BE%D0%B6%D0%B5%D0%BD%D0%B8%D0%B5.apk",
        ),
        ('dist/a"b\\c.dmg', "inline; filename=\"a_b_c.dmg\"; filename*=UTF-8''a%22b%5Cc.dmg"),
    ],
)
def test_content_disposition_is_quoted(local_path, expected):
    header = content_disposition(posixpath.basename(local_path))
    assert header == expected
    header.encode("latin-1")


def test_buildkite_download_follows_redirect_without_leaking_token(make_artifact):
    seen = []

    def handler(request):
        seen.append((request.url.host, request.headers.get("authorization")))
        if request.url.host == "api.buildkite.com":
            return httpx.Response(302, headers={"Location": "https://storage.example/App.ipa"})
        return httpx.Response(200, content=PAYLOAD)

    artifact = make_artifact("a", "b", local_path="dist/App.ipa", file_size=len(PAYLOAD))
    sink = RecordingSink()

    written = _dispatcher(handler).download(artifact, sink)

    assert written == len(PAYLOAD)
    assert sink.body == PAYLOAD
    assert len(sink.chunks) > 1
    assert sink.headers["Content-Length"] == str(len(PAYLOAD))
    assert seen == [("api.buildkite.com", "Bearer bk-token"), ("storage.example", None)]


def test_bintray_download(make_artifact):
    def handler(request):
        assert str(request.url) == "https://dl.example/acme/App.dmg"
        return httpx.Response(200, content=b"dmg")

    artifact = make_artifact(
        "d", "b", ArtifactKind.DMG, driver=Driver.BINTRAY, download_url="acme/App.dmg"
    )
    sink = RecordingSink()
    assert _dispatcher(handler).download(artifact, sink) == 3
    assert sink.body == b"dmg"


def test_buildkite_not_configured(make_artifact):
    dispatcher = _dispatcher(lambda request: httpx.Response(200), with_buildkite=False)
    with pytest.raises(DriverNotConfiguredError):
        dispatcher.download(make_artifact("a", "b"), RecordingSink())


@pytest.mark.parametrize("driver", [Driver.CIRCLECI, Driver.UNKNOWN])
def test_unsupported_drivers(make_artifact, driver):
    calls = []
    dispatcher = _dispatcher(lambda request: calls.append(request) or httpx.Response(200))
    sink = RecordingSink()
    with pytest.raises(UnsupportedDriverError):
        dispatcher.download(make_artifact("a", "b", driver=driver), sink)
    assert calls == []
    assert sink.headers == {}


def test_upstream_error_before_streaming(make_artifact):
    sink = RecordingSink()
    with pytest.raises(DispatchError) as excinfo:
        _dispatcher(lambda request: httpx.Response(404)).download(make_artifact("a", "b"), sink)
    assert type(excinfo.value) is DispatchError
    assert sink.chunks == []


def test_empty_body_with_known_size_fails(make_artifact):
    dispatcher = _dispatcher(lambda request: httpx.Response(200, content=b""))
    with pytest.raises(EmptyArtifactError):
        dispatcher.download(make_artifact("a", "b", file_size=100), RecordingSink())


def test_empty_body_with_unknown_size_is_fine(make_artifact):
    dispatcher = _dispatcher(lambda request: httpx.Response(200, content=b""))
    assert dispatcher.download(make_artifact("a", "b"), RecordingSink()) == 0


def test_mid_stream_failure_propagates(make_artifact):
    dispatcher = _dispatcher(lambda request: httpx.Response(200, stream=FailingStream()))
    sink = RecordingSink()
    with pytest.raises(httpx.ReadError):
        dispatcher.download(make_artifact("a", "b"), sink)
    assert sink.body == b"x" * 2048


def test_missing_download_reference(make_artifact):
    from dataclasses import replace

    artifact = replace(make_artifact("a", "b"), download_url=None)
    with pytest.raises(DispatchError, match="no download reference"):
        _dispatcher(lambda request: httpx.Response(200)).download(artifact, RecordingSink())
