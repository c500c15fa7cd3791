"""Tests for itms-services installer manifests."""

from __future__ import annotations

import plistlib
from urllib.parse import parse_qs, urlsplit

from ReleaseHub.manifest import itms_services_url, release_manifest


def test_release_manifest_structure():
    content = release_manifest(
        "tech.berty.ios", "v1.2.3", "Nightly", "https://hub.example/api/artifact-download/a?signature=x"
    )
    assert content.startswith(b"<?xml")
    item = plistlib.loads(content)["items"][0]
    assert item["assets"] == [
        {"kind": "software-package", "url": "https://hub.example/api/artifact-download/a?signature=x"}
    ]
    assert item["metadata"] == {
        "bundle-identifier": "tech.berty.ios",
        "bundle-version": "v1.2.3",
        "kind": "software",
        "title": "Nightly",
    }


def test_itms_services_url_encodes_manifest_url():
    manifest_url = "https://hub.example/auth/itms/release/tok/a?x=1&y=2"
    link = itms_services_url(manifest_url)
    assert link.startswith("itms-services://?action=download-manifest&url=https%3A%2F%2F")
    query = parse_qs(urlsplit(link).query)
    assert query["action"] == ["download-manifest"]
    assert query["url"] == [manifest_url]
