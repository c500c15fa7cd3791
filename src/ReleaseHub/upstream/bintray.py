"""Bintray-style public content download."""

from __future__ import annotations

import httpx

from ReleaseHub.config.models import BintrayConfig
from ReleaseHub.upstream.http import open_stream


class BintrayClient:
    """Downloads public content; relative references resolve against ``base_url``."""

    name = "bintray"

    def __init__(self, config: BintrayConfig, client: httpx.Client):
        self.config = config
        self.client = client

    def resolve(self, download_url: str) -> str:
        if download_url.startswith(("http://", "https://")):
            return download_url
        return f"{self.config.base_url.rstrip('/')}/{download_url.lstrip('/')}"

    def open_content(self, download_url: str) -> httpx.Response:
        return open_stream(self.client, self.resolve(download_url), provider=self.name)
