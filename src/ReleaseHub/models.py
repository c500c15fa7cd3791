# === NAVMAP v1 ===
# {
#   "module": "ReleaseHub.models",
#   "purpose": "Canonical Build/Artifact entities and the closed driver/kind vocabularies.",
#   "sections": [
#     {"id": "driver", "name": "Driver", "anchor": "class-driver", "kind": "class"},
#     {"id": "artifactkind", "name": "ArtifactKind", "anchor": "class-artifactkind", "kind": "class"},
#     {"id": "buildstate", "name": "BuildState", "anchor": "class-buildstate", "kind": "class"},
#     {"id": "artifact", "name": "Artifact", "anchor": "class-artifact", "kind": "class"},
#     {"id": "build", "name": "Build", "anchor": "class-build", "kind": "class"},
#     {"id": "parse-timestamp", "name": "parse_timestamp", "anchor": "function-parse-timestamp", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""
Canonical entities shared by the sync engine, stores, query layer and dispatcher.

Entities are frozen dataclasses with slots. Updates go through
``dataclasses.replace`` so that readers holding a reference never observe a
half-applied merge.

Timestamps are always timezone-aware UTC; :func:`parse_timestamp` normalises
the ISO-8601 strings returned by the upstream CI APIs.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Tuple

__all__ = [
    "Driver",
    "ArtifactKind",
    "BuildState",
    "Artifact",
    "Build",
    "kind_from_path",
    "newest_first_key",
    "parse_timestamp",
    "isoformat",
]


class Driver(IntEnum):
    """Upstream backend that produced or hosts an entity."""

    UNKNOWN = 0
    BUILDKITE = 1
    CIRCLECI = 2
    BINTRAY = 3

    @classmethod
    def from_wire(cls, value: Any) -> "Driver":
        if isinstance(value, Driver):
            return value
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            normalized = value.strip().upper()
            if normalized in cls.__members__:
                return cls[normalized]
        return cls.UNKNOWN

    @property
    def label(self) -> str:
        return self.name.lower()


class ArtifactKind(IntEnum):
    """Classification used to filter artifacts (installer package, archive...)."""

    UNKNOWN = 0
    IPA = 1
    APK = 2
    DMG = 3

    @classmethod
    def from_wire(cls, value: Any) -> "ArtifactKind":
        if isinstance(value, ArtifactKind):
            return value
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            normalized = value.strip().upper()
            if normalized.isdigit():
                return cls(int(normalized))
            if normalized in cls.__members__:
                return cls[normalized]
        raise ValueError(f"Unknown artifact kind: {value!r}")


_KIND_BY_EXTENSION = {
    ".ipa": ArtifactKind.IPA,
    ".apk": ArtifactKind.APK,
    ".dmg": ArtifactKind.DMG,
}


def kind_from_path(path: Optional[str]) -> ArtifactKind:
    """Infer the artifact kind from a file name extension."""

    if not path:
        return ArtifactKind.UNKNOWN
    _, ext = posixpath.splitext(path.lower())
    return _KIND_BY_EXTENSION.get(ext, ArtifactKind.UNKNOWN)


class BuildState(str, Enum):
    """Normalised build status across CI vocabularies."""

    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    CANCELED = "canceled"
    SCHEDULED = "scheduled"
    SKIPPED = "skipped"
    UNKNOWN = "unknown"

    @classmethod
    def from_wire(cls, value: Optional[str]) -> "BuildState":
        if not value:
            return cls.UNKNOWN
        normalized = value.strip().lower()
        return _STATE_ALIASES.get(normalized, cls.UNKNOWN)


_STATE_ALIASES = {
    # buildkite
    "running": BuildState.RUNNING,
    "passed": BuildState.PASSED,
    "failed": BuildState.FAILED,
    "canceled": BuildState.CANCELED,
    "canceling": BuildState.CANCELED,
    "scheduled": BuildState.SCHEDULED,
    "skipped": BuildState.SKIPPED,
    "blocked": BuildState.SCHEDULED,
    "not_run": BuildState.SKIPPED,
    # circleci
    "success": BuildState.PASSED,
    "fixed": BuildState.PASSED,
    "infrastructure_fail": BuildState.FAILED,
    "timedout": BuildState.FAILED,
    "cancelled": BuildState.CANCELED,
    "queued": BuildState.SCHEDULED,
    "not_running": BuildState.SCHEDULED,
    "retried": BuildState.SKIPPED,
    "no_tests": BuildState.PASSED,
}


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an upstream timestamp into an aware UTC datetime (``None`` if absent)."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise TypeError(f"Unsupported timestamp type: {type(value).__name__}")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def newest_first_key(build: "Build") -> Tuple[int, float]:
    """Sort key: creation time descending, builds without one first."""

    if build.created_at is None:
        return (0, 0.0)
    return (1, -build.created_at.timestamp())


def isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class Artifact:
    """One downloadable output of a build.

    ``download_url`` is the upstream reference used by the dispatcher and is
    never part of the public representation. ``signed_url`` is only filled in
    by the query layer.
    """

    id: str
    build_id: str
    kind: ArtifactKind = ArtifactKind.UNKNOWN
    driver: Driver = Driver.UNKNOWN
    download_url: Optional[str] = None
    local_path: Optional[str] = None
    file_size: int = 0
    mime_type: Optional[str] = None
    signed_url: Optional[str] = None

    @property
    def filename(self) -> str:
        return posixpath.basename(self.local_path or "") or self.id

    def with_signed_url(self, signed_url: str) -> "Artifact":
        return replace(self, signed_url=signed_url)

    def to_public_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "build_id": self.build_id,
            "kind": self.kind.name,
            "driver": self.driver.label,
            "local_path": self.local_path,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
        }
        if self.signed_url:
            payload["signed_url"] = self.signed_url
        return payload


@dataclass(frozen=True, slots=True)
class Build:
    """One upstream CI run owning zero or more artifacts."""

    id: str
    driver: Driver = Driver.UNKNOWN
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    state: BuildState = BuildState.UNKNOWN
    project: Optional[str] = None
    number: Optional[int] = None
    branch: Optional[str] = None
    commit: Optional[str] = None
    message: Optional[str] = None
    url: Optional[str] = None
    artifacts: Tuple[Artifact, ...] = field(default_factory=tuple)

    @property
    def update_time(self) -> Optional[datetime]:
        """Stop time when known, otherwise start time."""
        return self.finished_at or self.started_at

    def merged_into(self, previous: Optional["Build"]) -> "Build":
        """Return this record as an update of ``previous``.

        ``created_at`` is fixed by the first ingestion and survives every
        later update. A record listed without artifacts keeps the artifacts
        already known for the build.
        """
        if previous is None:
            return self
        changes: Dict[str, Any] = {}
        if previous.created_at is not None and self.created_at != previous.created_at:
            changes["created_at"] = previous.created_at
        if not self.artifacts and previous.artifacts:
            changes["artifacts"] = previous.artifacts
        return replace(self, **changes) if changes else self

    def with_artifacts(self, artifacts: Tuple[Artifact, ...]) -> "Build":
        return replace(self, artifacts=tuple(artifacts))

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "driver": self.driver.label,
            "created_at": isoformat(self.created_at),
            "started_at": isoformat(self.started_at),
            "finished_at": isoformat(self.finished_at),
            "state": self.state.value,
            "project": self.project,
            "number": self.number,
            "branch": self.branch,
            "commit": self.commit,
            "message": self.message,
            "url": self.url,
            "artifacts": [artifact.to_public_dict() for artifact in self.artifacts],
        }
