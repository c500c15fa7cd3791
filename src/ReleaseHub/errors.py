# === NAVMAP v1 ===
# {
#   "module": "ReleaseHub.errors",
#   "purpose": "Error taxonomy for sync, store, dispatch and signature failures.",
#   "sections": [
#     {"id": "releasehuberror", "name": "ReleaseHubError", "anchor": "class-releasehuberror", "kind": "class"},
#     {"id": "upstreamfetcherror", "name": "UpstreamFetchError", "anchor": "class-upstreamfetcherror", "kind": "class"},
#     {"id": "storequeryerror", "name": "StoreQueryError", "anchor": "class-storequeryerror", "kind": "class"},
#     {"id": "dispatcherror", "name": "DispatchError", "anchor": "class-dispatcherror", "kind": "class"},
#     {"id": "signaturemismatcherror", "name": "SignatureMismatchError", "anchor": "class-signaturemismatcherror", "kind": "class"},
#     {"id": "error-payload", "name": "error_payload", "anchor": "function-error-payload", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Error taxonomy for ReleaseHub.

Responsibilities
----------------
- Distinguish upstream failures (self-healing on the next sync tick) from
  request-scoped failures (store queries, downloads, manifests).
- Keep the two dispatcher failure modes apart: a backend whose client is not
  configured versus a driver with no download strategy at all.
- Provide :func:`error_payload` so query endpoints return a structured error
  that cannot be confused with an empty result set.

Design Notes
------------
- :class:`SignatureMismatchError` carries no detail. Callers must not learn
  whether the resource exists or why validation failed.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = (
    "ReleaseHubError",
    "ConfigError",
    "UpstreamFetchError",
    "StoreQueryError",
    "ArtifactNotFoundError",
    "DispatchError",
    "UnsupportedDriverError",
    "DriverNotConfiguredError",
    "EmptyArtifactError",
    "SignatureMismatchError",
    "error_payload",
)


class ReleaseHubError(Exception):
    """Base class for every error raised by ReleaseHub."""

    code = "releasehub_error"


class ConfigError(ReleaseHubError):
    code = "config_error"


class UpstreamFetchError(ReleaseHubError):
    """Raised when talking to a CI or hosting backend fails."""

    code = "upstream_fetch_error"

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        url: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.url = url
        self.status = status


class StoreQueryError(ReleaseHubError):
    """Raised when the entity store cannot answer a query or load."""

    code = "store_query_error"


class ArtifactNotFoundError(StoreQueryError):
    code = "artifact_not_found"

    def __init__(self, artifact_id: str) -> None:
        super().__init__(f"artifact not found: {artifact_id}")
        self.artifact_id = artifact_id


class DispatchError(ReleaseHubError):
    """Raised when an artifact cannot be streamed to the caller."""

    code = "dispatch_error"


class UnsupportedDriverError(DispatchError):
    code = "unsupported_driver"

    def __init__(self, driver: Any) -> None:
        label = getattr(driver, "label", str(driver))
        super().__init__(f"download not supported for driver {label!r}")
        self.driver = driver


class DriverNotConfiguredError(DispatchError):
    code = "driver_not_configured"

    def __init__(self, driver: Any, hint: str = "") -> None:
        label = getattr(driver, "label", str(driver))
        message = f"{label} client is not configured"
        if hint:
            message = f"{message} ({hint})"
        super().__init__(message)
        self.driver = driver


class EmptyArtifactError(DispatchError):
    code = "empty_artifact"


class SignatureMismatchError(ReleaseHubError):
    code = "unauthorized"

    def __init__(self) -> None:
        super().__init__("unauthorized")


def error_payload(exc: BaseException) -> Dict[str, Any]:
    """Render ``exc`` as the structured error body used by query endpoints."""

    code = getattr(exc, "code", "internal_error")
    return {"error": {"code": code, "message": str(exc)}}
