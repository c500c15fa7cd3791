"""itms-services installer manifests for over-the-air iOS installs."""

from __future__ import annotations

import plistlib
from urllib.parse import quote

__all__ = ["release_manifest", "itms_services_url"]


def release_manifest(bundle_id: str, version: str, title: str, url: str) -> bytes:
    """Render the property list an iOS device reads before installing ``url``."""

    payload = {
        "items": [
            {
                "assets": [{"kind": "software-package", "url": url}],
                "metadata": {
                    "bundle-identifier": bundle_id,
                    "bundle-version": version,
                    "kind": "software",
                    "title": title,
                },
            }
        ]
    }
    return plistlib.dumps(payload, fmt=plistlib.FMT_XML)


def itms_services_url(manifest_url: str) -> str:
    return "itms-services://?action=download-manifest&url=" + quote(manifest_url, safe="")
