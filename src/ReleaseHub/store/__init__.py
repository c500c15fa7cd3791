"""
Entity store for ReleaseHub.

Holds Build and Artifact entities with the Build → Artifact relationship and
answers bounded, relationship-aware queries. Two implementations are shipped:
an in-memory store for tests and ephemeral deployments, and a SQLite store.
"""

from __future__ import annotations

from ReleaseHub.config.models import StoreConfig
from ReleaseHub.store.base import BuildQuery, EntityStore
from ReleaseHub.store.memory import InMemoryEntityStore
from ReleaseHub.store.sqlite import SQLiteEntityStore

__all__ = [
    "BuildQuery",
    "EntityStore",
    "InMemoryEntityStore",
    "SQLiteEntityStore",
    "build_store",
]


def build_store(config: StoreConfig) -> EntityStore:
    """Instantiate the store selected by ``config.backend``."""

    if config.backend == "sqlite":
        return SQLiteEntityStore(config.path, wal_mode=config.wal_mode)
    return InMemoryEntityStore()
