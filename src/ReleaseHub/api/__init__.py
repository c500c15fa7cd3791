"""FastAPI surface over the ReleaseHub service."""

from ReleaseHub.api.app import TokenGateMiddleware, create_app

__all__ = ["TokenGateMiddleware", "create_app"]
