"""
ReleaseHub HTTP surface.

Routes (``api_prefix`` defaults to ``/api``):
- GET {prefix}/ping
- GET {prefix}/status
- GET {prefix}/builds?artifact_kind=K
- GET {prefix}/releases/{ios|android|mac}.json
- GET {prefix}/artifact-manifest/{artifact_id}
- GET {prefix}/artifact-download/{artifact_id}?signature=...
- GET /auth/{ipa|apk|dmg}/build/{token}/{artifact_id}
- GET /auth/itms/release/{token}/{artifact_id}
- GET / (redirects to the release listing matching the User-Agent)

Usage:
    releasehub serve --config releasehub.yaml
"""

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from typing import Callable, Iterator, Optional

from fastapi import APIRouter, FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, StreamingResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ReleaseHub.errors import (
    ArtifactNotFoundError,
    DispatchError,
    DriverNotConfiguredError,
    EmptyArtifactError,
    ReleaseHubError,
    SignatureMismatchError,
    StoreQueryError,
    UnsupportedDriverError,
    error_payload,
)
from ReleaseHub.models import ArtifactKind
from ReleaseHub.service import Service
from ReleaseHub.signing import TokenGate

LOGGER = logging.getLogger(__name__)

__all__ = ["create_app", "TokenGateMiddleware"]

_ANDROID_AGENT = re.compile(r"(?i)android")

PLATFORM_KINDS = {
    "ios": ArtifactKind.IPA,
    "android": ArtifactKind.APK,
    "mac": ArtifactKind.DMG,
}

GATED_DOWNLOAD_KINDS = {
    "ipa": ArtifactKind.IPA,
    "apk": ArtifactKind.APK,
    "dmg": ArtifactKind.DMG,
}


class TokenGateMiddleware(BaseHTTPMiddleware):
    """Rejects requests on token-gated prefixes whose path token is invalid."""

    def __init__(self, app, gate: TokenGate):
        super().__init__(app)
        self.gate = gate

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        decision = self.gate.check(request.url.path)
        if not decision.allowed:
            LOGGER.info("rejected token-gated request")
            return PlainTextResponse("unauthorized", status_code=401)
        return await call_next(request)


def _error_status(exc: ReleaseHubError) -> int:
    if isinstance(exc, SignatureMismatchError):
        return 401
    if isinstance(exc, ArtifactNotFoundError):
        return 404
    if isinstance(exc, UnsupportedDriverError):
        return 501
    if isinstance(exc, DriverNotConfiguredError):
        return 503
    if isinstance(exc, DispatchError):
        return 502
    return 500


def _error_response(exc: ReleaseHubError) -> PlainTextResponse:
    status = _error_status(exc)
    if status == 401:
        return PlainTextResponse("unauthorized", status_code=401)
    return PlainTextResponse(f"err: {exc}", status_code=status)


def _request_base_url(request: Request, configured: Optional[str]) -> str:
    if configured:
        return configured
    scheme = request.headers.get("x-forwarded-proto") or request.url.scheme or "http"
    host = request.headers.get("host") or request.url.netloc
    return f"{scheme}://{host}"


def _listing_response(service: Service, kind: Optional[ArtifactKind]) -> JSONResponse:
    try:
        listing = service.list_builds(kind)
    except StoreQueryError as e:
        LOGGER.error("build listing failed: %s", e)
        return JSONResponse(error_payload(e), status_code=500)
    return JSONResponse(listing.to_public_dict())


def _stream_response(service: Service, artifact_id: str, expected_kind: Optional[ArtifactKind] = None) -> Response:
    try:
        if expected_kind is not None and service.get_artifact(artifact_id).kind != expected_kind:
            raise ArtifactNotFoundError(artifact_id)
        opened = service.open_download(artifact_id)
        chunks = opened.iter_bytes()
        first = next(chunks, b"")
    except EmptyArtifactError as e:
        LOGGER.error("empty artifact body: %s", e)
        return _error_response(e)
    except ReleaseHubError as e:
        LOGGER.warning(
            "download failed: %s",
            e,
            extra={"extra_fields": {"artifact_id": artifact_id, "error_code": e.code}},
        )
        return _error_response(e)

    def body() -> Iterator[bytes]:
        if first:
            yield first
        yield from chunks

    return StreamingResponse(body(), headers=opened.headers)


def create_app(service: Service, *, manage_lifecycle: bool = True) -> FastAPI:
    """Build the FastAPI application around ``service``.

    With ``manage_lifecycle`` the sync scheduler is started on startup and the
    service is closed on shutdown.
    """

    config = service.config
    prefix = config.server.api_prefix

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_lifecycle:
            service.start()
        yield
        if manage_lifecycle:
            service.close()

    app = FastAPI(title="ReleaseHub", version="0.1.0", lifespan=lifespan)
    app.add_middleware(TokenGateMiddleware, gate=service.gate)
    app.state.service = service

    api = APIRouter(prefix=prefix)

    @api.get("/ping")
    def ping():
        return service.ping()

    @api.get("/status")
    def status():
        return service.status()

    @api.get("/builds")
    def builds(artifact_kind: Optional[str] = Query(default=None)):
        kind = None
        if artifact_kind:
            try:
                kind = ArtifactKind.from_wire(artifact_kind)
            except ValueError as e:
                return JSONResponse(
                    {"error": {"code": "invalid_argument", "message": str(e)}}, status_code=400
                )
        return _listing_response(service, kind)

    @api.get("/releases/{platform}.json")
    def releases(platform: str):
        kind = PLATFORM_KINDS.get(platform)
        if kind is None:
            return PlainTextResponse(f"unknown platform: {platform}", status_code=404)
        return _listing_response(service, kind)

    @api.get("/artifact-manifest/{artifact_id}")
    def artifact_manifest(artifact_id: str, request: Request):
        base_url = _request_base_url(request, config.server.base_url)
        try:
            content = service.manifest(artifact_id, base_url)
        except ReleaseHubError as e:
            return _error_response(e)
        return Response(content, media_type="application/x-plist")

    @api.get("/artifact-download/{artifact_id}")
    def artifact_download(artifact_id: str, request: Request, signature: Optional[str] = None):
        try:
            service.authority.check_signature("GET", request.url.path, signature)
        except SignatureMismatchError as e:
            return _error_response(e)
        return _stream_response(service, artifact_id)

    app.include_router(api)

    auth = APIRouter(prefix="/auth")

    @auth.head("/ipa/build/{token}/{artifact_id}")
    def gated_ipa_head(token: str, artifact_id: str):
        return PlainTextResponse("405", status_code=405)

    @auth.get("/{kind}/build/{token}/{artifact_id}")
    def gated_download(kind: str, token: str, artifact_id: str):
        expected = GATED_DOWNLOAD_KINDS.get(kind)
        if expected is None:
            return PlainTextResponse("not found", status_code=404)
        return _stream_response(service, artifact_id, expected)

    @auth.get("/itms/release/{token}/{artifact_id}")
    def gated_manifest(token: str, artifact_id: str, request: Request):
        base_url = _request_base_url(request, config.server.base_url)
        try:
            content = service.manifest(artifact_id, base_url)
        except ReleaseHubError as e:
            return _error_response(e)
        return Response(content, media_type="application/x-plist")

    app.include_router(auth)

    @app.get("/")
    def index(request: Request):
        agent = request.headers.get("user-agent", "")
        platform = "android" if _ANDROID_AGENT.search(agent) else "ios"
        return RedirectResponse(f"{prefix}/releases/{platform}.json", status_code=307)

    return app
