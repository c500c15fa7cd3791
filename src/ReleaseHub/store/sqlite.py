"""SQLite-based implementation of the entity store."""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from ReleaseHub.errors import ArtifactNotFoundError, StoreQueryError
from ReleaseHub.models import (
    Artifact,
    ArtifactKind,
    Build,
    BuildState,
    Driver,
    isoformat,
    parse_timestamp,
)
from ReleaseHub.store.base import BuildQuery, EntityStore

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS builds (
    id TEXT PRIMARY KEY,
    driver INTEGER NOT NULL,
    created_at TEXT,
    started_at TEXT,
    finished_at TEXT,
    state TEXT NOT NULL,
    project TEXT,
    number INTEGER,
    branch TEXT,
    commit_sha TEXT,
    message TEXT,
    url TEXT,
    seq INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS artifacts (
    id TEXT PRIMARY KEY,
    build_id TEXT NOT NULL REFERENCES builds(id) ON DELETE CASCADE,
    position INTEGER NOT NULL,
    kind INTEGER NOT NULL,
    driver INTEGER NOT NULL,
    download_url TEXT,
    local_path TEXT,
    file_size INTEGER NOT NULL DEFAULT 0,
    mime_type TEXT
);

CREATE INDEX IF NOT EXISTS idx_artifacts_build ON artifacts(build_id);
CREATE INDEX IF NOT EXISTS idx_artifacts_kind ON artifacts(kind, build_id);
"""

_BUILD_COLUMNS = (
    "id, driver, created_at, started_at, finished_at, state, project, number, "
    "branch, commit_sha, message, url"
)
_ARTIFACT_COLUMNS = (
    "id, build_id, kind, driver, download_url, local_path, file_size, mime_type"
)


class SQLiteEntityStore(EntityStore):
    """SQLite-backed entity store.

    Provides thread-safe upserts that keep the first ``created_at`` of a
    build, and a relationship-aware query using an ``EXISTS`` sub-select on
    the artifact table. Builds are returned in first-ingestion order.
    """

    def __init__(self, path: str, wal_mode: bool = True):
        """Initialize SQLite entity store.

        Args:
            path: Path to SQLite database file (``":memory:"`` is accepted)
            wal_mode: If True, enable WAL mode for better concurrency

        Raises:
            StoreQueryError: If database initialization fails
        """
        self.path = path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

        try:
            self.conn = sqlite3.connect(path, check_same_thread=False, timeout=30.0)
            self.conn.row_factory = sqlite3.Row
            if wal_mode and path != ":memory:":
                self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA foreign_keys=ON")
            self.conn.executescript(SCHEMA)
            self.conn.commit()
        except sqlite3.Error as e:
            raise StoreQueryError(f"Failed to initialise store at {path}: {e}") from e
        logger.info("Initialized SQLite entity store at %s", path)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_builds(self, builds: Iterable[Build]) -> int:
        written = 0
        with self._lock:
            try:
                for build in builds:
                    self._upsert_one(build)
                    written += 1
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                logger.error("Failed to upsert builds: %s", e)
                raise StoreQueryError(f"Failed to upsert builds: {e}") from e
        return written

    def _upsert_one(self, build: Build) -> None:
        seq_row = self.conn.execute("SELECT COALESCE(MAX(seq), 0) + 1 FROM builds").fetchone()
        self.conn.execute(
            """
            INSERT INTO builds
            (id, driver, created_at, started_at, finished_at, state, project, number,
             branch, commit_sha, message, url, seq)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                driver = excluded.driver,
                created_at = COALESCE(builds.created_at, excluded.created_at),
                started_at = excluded.started_at,
                finished_at = excluded.finished_at,
                state = excluded.state,
                project = excluded.project,
                number = excluded.number,
                branch = excluded.branch,
                commit_sha = excluded.commit_sha,
                message = excluded.message,
                url = excluded.url
            """,
            (
                build.id,
                int(build.driver),
                isoformat(build.created_at),
                isoformat(build.started_at),
                isoformat(build.finished_at),
                build.state.value,
                build.project,
                build.number,
                build.branch,
                build.commit,
                build.message,
                build.url,
                seq_row[0],
            ),
        )
        if not build.artifacts:
            return
        self.conn.execute("DELETE FROM artifacts WHERE build_id = ?", (build.id,))
        self.conn.executemany(
            """
            INSERT OR REPLACE INTO artifacts
            (id, build_id, position, kind, driver, download_url, local_path, file_size, mime_type)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    artifact.id,
                    build.id,
                    position,
                    int(artifact.kind),
                    int(artifact.driver),
                    artifact.download_url,
                    artifact.local_path,
                    artifact.file_size,
                    artifact.mime_type,
                )
                for position, artifact in enumerate(build.artifacts)
            ],
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query_builds(self, query: BuildQuery) -> List[Build]:
        sql = f"SELECT {_BUILD_COLUMNS} FROM builds b"
        params: list = []
        if query.has_kind_filter:
            sql += (
                " WHERE EXISTS (SELECT 1 FROM artifacts a"
                " WHERE a.build_id = b.id AND a.kind = ?)"
            )
            params.append(int(query.artifact_kind))
        sql += (
            " ORDER BY b.created_at IS NOT NULL, julianday(b.created_at) DESC, b.seq"
            " LIMIT ?"
        )
        params.append(query.limit)

        with self._lock:
            try:
                rows = self.conn.execute(sql, params).fetchall()
                return self._load_to_depth(rows)
            except sqlite3.Error as e:
                raise StoreQueryError(f"load builds: {e}") from e

    def get_build(self, build_id: str) -> Optional[Build]:
        with self._lock:
            try:
                rows = self.conn.execute(
                    f"SELECT {_BUILD_COLUMNS} FROM builds WHERE id = ?", (build_id,)
                ).fetchall()
                builds = self._load_to_depth(rows)
            except sqlite3.Error as e:
                raise StoreQueryError(f"load build {build_id}: {e}") from e
        return builds[0] if builds else None

    def get_artifact(self, artifact_id: str) -> Artifact:
        with self._lock:
            try:
                row = self.conn.execute(
                    f"SELECT {_ARTIFACT_COLUMNS} FROM artifacts WHERE id = ?", (artifact_id,)
                ).fetchone()
            except sqlite3.Error as e:
                raise StoreQueryError(f"load artifact {artifact_id}: {e}") from e
        if row is None:
            raise ArtifactNotFoundError(artifact_id)
        return self._row_to_artifact(row)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            try:
                builds = self.conn.execute("SELECT COUNT(*) FROM builds").fetchone()[0]
                artifacts = self.conn.execute("SELECT COUNT(*) FROM artifacts").fetchone()[0]
            except sqlite3.Error as e:
                raise StoreQueryError(f"stats: {e}") from e
        return {"builds": builds, "artifacts": artifacts}

    def close(self) -> None:
        with self._lock:
            self.conn.close()
        logger.debug("SQLite entity store closed")

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def _load_to_depth(self, rows: Sequence[sqlite3.Row]) -> List[Build]:
        if not rows:
            return []
        ids = [row["id"] for row in rows]
        placeholders = ",".join("?" for _ in ids)
        artifact_rows = self.conn.execute(
            f"SELECT {_ARTIFACT_COLUMNS} FROM artifacts"
            f" WHERE build_id IN ({placeholders}) ORDER BY build_id, position",
            ids,
        ).fetchall()
        by_build: Dict[str, List[Artifact]] = {}
        for artifact_row in artifact_rows:
            by_build.setdefault(artifact_row["build_id"], []).append(
                self._row_to_artifact(artifact_row)
            )
        return [self._row_to_build(row, by_build.get(row["id"], [])) for row in rows]

    @staticmethod
    def _row_to_build(row: sqlite3.Row, artifacts: List[Artifact]) -> Build:
        return Build(
            id=row["id"],
            driver=Driver.from_wire(row["driver"]),
            created_at=parse_timestamp(row["created_at"]),
            started_at=parse_timestamp(row["started_at"]),
            finished_at=parse_timestamp(row["finished_at"]),
            state=BuildState(row["state"]),
            project=row["project"],
            number=row["number"],
            branch=row["branch"],
            commit=row["commit_sha"],
            message=row["message"],
            url=row["url"],
            artifacts=tuple(artifacts),
        )

    @staticmethod
    def _row_to_artifact(row: sqlite3.Row) -> Artifact:
        return Artifact(
            id=row["id"],
            build_id=row["build_id"],
            kind=ArtifactKind(row["kind"]),
            driver=Driver.from_wire(row["driver"]),
            download_url=row["download_url"],
            local_path=row["local_path"],
            file_size=row["file_size"] or 0,
            mime_type=row["mime_type"],
        )
