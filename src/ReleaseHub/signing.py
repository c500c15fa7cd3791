# === NAVMAP v1 ===
# {
#   "module": "ReleaseHub.signing",
#   "purpose": "Stateless HMAC signatures for artifact URLs and path-scoped bearer tokens.",
#   "sections": [
#     {"id": "canonical-request", "name": "canonical_request", "anchor": "function-canonical-request", "kind": "function"},
#     {"id": "tokenauthority", "name": "TokenAuthority", "anchor": "class-tokenauthority", "kind": "class"},
#     {"id": "tokengate", "name": "TokenGate", "anchor": "class-tokengate", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Signed-token authority.

A signature is ``HMAC-SHA256(salt, METHOD + "\\n" + path)`` rendered as hex,
where ``path`` has its query string removed. Nothing is stored: verification
recomputes the signature and compares in constant time. Tokens carry no
expiry and no identity; rotating the salt is the only revocation and
invalidates every outstanding token at once.

Path-scoped bearer tokens use the same primitive over the sub-path that
follows the token segment (``/<prefix>/<token>/<sub-path>``).
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from ReleaseHub.errors import SignatureMismatchError

LOGGER = logging.getLogger(__name__)

__all__ = ["TokenAuthority", "TokenGate", "GateDecision", "canonical_request"]

SIGNATURE_PARAM = "signature"
_PATH_TOKEN_METHOD = "TOKEN"


def _strip_query(path: str) -> str:
    return path.split("?", 1)[0].split("#", 1)[0]


def _digest_equal(expected: str, supplied: str) -> bool:
    # compare_digest only accepts ASCII str; client input is compared as bytes.
    return hmac.compare_digest(expected.encode("ascii"), supplied.encode("utf-8", "replace"))


def canonical_request(method: str, path: str) -> str:
    """Return the string that gets signed for ``method`` on ``path``."""

    return f"{method.upper()}\n{_strip_query(path)}"


class TokenAuthority:
    """Issues and verifies signatures with a process-wide secret salt."""

    def __init__(self, salt: Optional[str] = None) -> None:
        if not salt:
            salt = secrets.token_urlsafe(16)
            LOGGER.warning("no auth salt configured; signed URLs will not survive a restart")
        self._key = salt.encode("utf-8")

    def sign(self, method: str, path: str) -> str:
        message = canonical_request(method, path).encode("utf-8")
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()

    def signed_path(self, method: str, path: str) -> str:
        """Return ``path?signature=...`` for ``method``."""
        bare_path = _strip_query(path)
        return f"{bare_path}?{SIGNATURE_PARAM}={self.sign(method, bare_path)}"

    def verify(self, method: str, path: str, signature: Optional[str]) -> bool:
        if not signature:
            return False
        return _digest_equal(self.sign(method, path), signature)

    def check_signature(self, method: str, path: str, signature: Optional[str]) -> None:
        """Like :meth:`verify` but raises.

        Raises:
            SignatureMismatchError: If the signature is missing or wrong
        """
        if not self.verify(method, path, signature):
            raise SignatureMismatchError()

    def path_token(self, subpath: str) -> str:
        """Bearer token authorising ``subpath`` under a token-gated prefix."""
        return self.sign(_PATH_TOKEN_METHOD, "/" + subpath.lstrip("/"))

    def verify_path_token(self, subpath: str, token: Optional[str]) -> bool:
        if not token:
            return False
        return _digest_equal(self.path_token(subpath), token)


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    gated: bool
    subpath: Optional[str] = None


class TokenGate:
    """Inbound gate for path-scoped bearer tokens.

    Any path under one of ``prefixes`` must look like
    ``<prefix>/<token>/<sub-path>`` where ``token`` is the path token of
    ``sub-path``. Paths outside the prefixes pass through untouched.
    """

    def __init__(self, prefixes: Iterable[str], authority: TokenAuthority) -> None:
        self.prefixes: Tuple[str, ...] = tuple(prefix.rstrip("/") for prefix in prefixes)
        self.authority = authority

    def _match(self, path: str) -> Optional[str]:
        for prefix in self.prefixes:
            if path.startswith(prefix + "/"):
                return path[len(prefix) + 1 :]
        return None

    def check(self, path: str) -> GateDecision:
        remainder = self._match(path)
        if remainder is None:
            return GateDecision(allowed=True, gated=False)
        token, _, subpath = remainder.partition("/")
        if not token or not subpath:
            return GateDecision(allowed=False, gated=True)
        if not self.authority.verify_path_token(subpath, token):
            return GateDecision(allowed=False, gated=True)
        return GateDecision(allowed=True, gated=True, subpath=subpath)

    def gated_path(self, prefix: str, subpath: str) -> str:
        """Build a token-carrying path for ``subpath`` under ``prefix``."""
        subpath = subpath.lstrip("/")
        return f"{prefix.rstrip('/')}/{self.authority.path_token(subpath)}/{subpath}"
