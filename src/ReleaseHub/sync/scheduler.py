"""Background scheduler driving the sync engines."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Optional, Sequence

from ReleaseHub.errors import ReleaseHubError
from ReleaseHub.sync.engine import SyncEngine

LOGGER = logging.getLogger(__name__)

__all__ = ["SyncScheduler"]


class SyncScheduler:
    """Runs every engine serially on one daemon thread.

    The next tick is armed only once the previous cycle has returned, so
    cycles never overlap. ``run_once`` is guarded against re-entrant calls
    (e.g. a CLI-triggered refresh racing the background thread).
    """

    def __init__(self, engines: Sequence[SyncEngine], interval_s: float = 10.0) -> None:
        self.engines = list(engines)
        self.interval_s = interval_s
        self._stop = threading.Event()
        self._cycle_guard = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> Dict[str, Optional[int]]:
        """Refresh every engine once.

        Returns a mapping of engine name to changed count, ``None`` for engines
        whose cycle failed, or an empty mapping when a cycle is already running.
        """
        if not self._cycle_guard.acquire(blocking=False):
            LOGGER.debug("sync cycle already in progress; skipping")
            return {}
        try:
            results: Dict[str, Optional[int]] = {}
            for engine in self.engines:
                results[engine.name] = self._refresh(engine)
            return results
        finally:
            self._cycle_guard.release()

    @staticmethod
    def _refresh(engine: SyncEngine) -> Optional[int]:
        try:
            changed = engine.refresh()
        except ReleaseHubError as e:
            engine.state.record_cycle(error=str(e))
            LOGGER.error(
                "refresh failed: %s",
                e,
                extra={"extra_fields": {"source": engine.name, "error_code": e.code}},
            )
            return None
        except Exception as e:  # keep the loop alive on unexpected failures
            engine.state.record_cycle(error=str(e))
            LOGGER.exception("refresh crashed", extra={"extra_fields": {"source": engine.name}})
            return None
        engine.state.record_cycle()
        return changed

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self.interval_s)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="releasehub-sync", daemon=True)
        self._thread.start()
        LOGGER.info(
            "sync scheduler started",
            extra={
                "extra_fields": {
                    "interval_s": self.interval_s,
                    "sources": [engine.name for engine in self.engines],
                }
            },
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
