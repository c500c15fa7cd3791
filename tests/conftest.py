"""Shared fixtures for ReleaseHub tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

import pytest

from ReleaseHub.errors import UpstreamFetchError
from ReleaseHub.models import Artifact, ArtifactKind, Build, BuildState, Driver
from ReleaseHub.signing import TokenAuthority
from ReleaseHub.store import InMemoryEntityStore
from ReleaseHub.sync import SyncEngine, SyncState

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeBuildSource:
    """Newest-first build listing served from a Python list."""

    driver = Driver.BUILDKITE

    def __init__(self, builds: Sequence[Build] = (), name: str = "fake") -> None:
        self.builds: List[Build] = list(builds)
        self.name = name
        self.calls: List[tuple] = []
        self.error: Optional[Exception] = None
        self.fail_on_call: Optional[int] = None
        self.on_call: Optional[Callable[[int, int], None]] = None
        self.attached: List[List[str]] = []

    def list_builds(self, *, limit: int, offset: int) -> List[Build]:
        self.calls.append((limit, offset))
        if self.on_call is not None:
            self.on_call(limit, offset)
        if self.error is not None:
            raise self.error
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise UpstreamFetchError("boom", provider=self.name)
        return self.builds[offset : offset + limit]

    def attach_artifacts(self, builds: Sequence[Build]) -> List[Build]:
        self.attached.append([build.id for build in builds])
        return list(builds)


def at(minutes: float) -> datetime:
    return T0 + timedelta(minutes=minutes)


@pytest.fixture
def make_artifact() -> Callable[..., Artifact]:
    def _make(
        artifact_id: str,
        build_id: str,
        kind: ArtifactKind = ArtifactKind.IPA,
        *,
        driver: Driver = Driver.BUILDKITE,
        file_size: int = 0,
        local_path: Optional[str] = None,
        download_url: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> Artifact:
        ext = kind.name.lower() if kind != ArtifactKind.UNKNOWN else "bin"
        return Artifact(
            id=artifact_id,
            build_id=build_id,
            kind=kind,
            driver=driver,
            download_url=download_url or f"https://api.buildkite.com/artifacts/{artifact_id}/download",
            local_path=local_path or f"out/{artifact_id}.{ext}",
            file_size=file_size,
            mime_type=mime_type,
        )

    return _make


@pytest.fixture
def make_build() -> Callable[..., Build]:
    def _make(
        build_id: str,
        *,
        created: Optional[float] = None,
        started: Optional[float] = None,
        finished: Optional[float] = None,
        artifacts: Sequence[Artifact] = (),
        state: BuildState = BuildState.PASSED,
    ) -> Build:
        return Build(
            id=build_id,
            driver=Driver.BUILDKITE,
            created_at=at(created) if created is not None else None,
            started_at=at(started) if started is not None else None,
            finished_at=at(finished) if finished is not None else None,
            state=state,
            artifacts=tuple(artifacts),
        )

    return _make


@pytest.fixture
def history(make_build) -> List[Build]:
    """240 finished builds, newest first; build ``b{i}`` finished at minute ``239 - i``."""
    return [
        make_build(f"b{i}", created=239 - i, started=239 - i, finished=239 - i)
        for i in range(240)
    ]


@pytest.fixture
def fake_source(history) -> FakeBuildSource:
    return FakeBuildSource(history)


@pytest.fixture
def store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest.fixture
def engine(fake_source, store) -> SyncEngine:
    return SyncEngine(fake_source, SyncState(), store, page_size=100, max_pages=20)


@pytest.fixture
def authority() -> TokenAuthority:
    return TokenAuthority("test-salt")


@pytest.fixture
def source_factory() -> Callable[..., FakeBuildSource]:
    return FakeBuildSource


@pytest.fixture(name="at")
def at_fixture() -> Callable[[float], datetime]:
    return at
