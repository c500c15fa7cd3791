"""Incremental synchronization of upstream builds."""

from ReleaseHub.sync.engine import SyncEngine
from ReleaseHub.sync.scheduler import SyncScheduler
from ReleaseHub.sync.state import SyncSnapshot, SyncState

__all__ = ["SyncEngine", "SyncScheduler", "SyncSnapshot", "SyncState"]
