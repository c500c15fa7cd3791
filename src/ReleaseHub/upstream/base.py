"""Shared upstream primitives."""

from __future__ import annotations

from typing import List, Protocol, Sequence

from ReleaseHub.models import Build, Driver


class BuildSource(Protocol):
    """Paginated, newest-first listing of upstream builds."""

    driver: Driver

    @property
    def name(self) -> str: ...

    def list_builds(self, *, limit: int, offset: int) -> List[Build]:
        """Return at most ``limit`` builds starting ``offset`` records from the newest.

        Listed builds carry no artifacts; see :meth:`attach_artifacts`.

        Raises:
            UpstreamFetchError: If the backend cannot be reached or answers
                with an error
        """
        ...

    def attach_artifacts(self, builds: Sequence[Build]) -> List[Build]:
        """Return ``builds`` with their artifact lists loaded.

        The sync engine passes only builds it is about to merge.

        Raises:
            UpstreamFetchError: If an artifact listing fails
        """
        ...
