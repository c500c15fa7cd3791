"""
HTTPX client construction and retrying upstream calls.

Architecture:
1. build_http_client(http_config) → configured httpx.Client
2. fetch_json() → listing calls, retried by tenacity on transport errors and
   retryable statuses, surfaced as UpstreamFetchError once attempts run out
3. open_stream() → single-shot streaming GET for artifact bytes; a non-2xx
   status fails before any byte reaches the caller

Downloads are never retried here: a transport failure in the middle of a
stream propagates to the caller as-is.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Mapping, Optional

import httpx
import tenacity
from tenacity import retry_if_exception, stop_after_attempt, wait_exponential

from ReleaseHub.config.models import HttpConfig
from ReleaseHub.errors import UpstreamFetchError

LOGGER = logging.getLogger(__name__)

__all__ = ["build_http_client", "fetch_json", "open_stream"]


class _RetryableStatus(Exception):
    """Internal marker carrying a response whose status deserves a retry."""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


def build_http_client(config: HttpConfig, **overrides: Any) -> httpx.Client:
    """Build an ``httpx.Client`` for upstream calls.

    ``overrides`` are passed to the client constructor (tests inject a
    ``transport`` here).
    """

    options: dict[str, Any] = {
        "timeout": httpx.Timeout(config.timeout_connect_s, read=config.timeout_read_s),
        "headers": {"User-Agent": config.user_agent, "Accept": "application/json"},
        "follow_redirects": True,
    }
    options.update(overrides)
    client = httpx.Client(**options)
    LOGGER.debug("HTTPX client created for upstream calls")
    return client


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, _RetryableStatus):
        return True
    return isinstance(exc, (httpx.ConnectError, httpx.ReadError, httpx.WriteError, httpx.TimeoutException))


def _log_retry(provider: str, url: str):
    def _before_sleep(retry_state: tenacity.RetryCallState) -> None:
        outcome = retry_state.outcome
        reason = outcome.exception() if outcome is not None else None
        LOGGER.warning(
            "Retrying %s request",
            provider,
            extra={
                "extra_fields": {
                    "provider": provider,
                    "url": url,
                    "attempt": retry_state.attempt_number,
                    "reason": str(reason),
                }
            },
        )

    return _before_sleep


def fetch_json(
    client: httpx.Client,
    url: str,
    *,
    provider: str,
    config: HttpConfig,
    params: Optional[Mapping[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
) -> Any:
    """GET ``url`` and decode its JSON body, retrying transient failures.

    Raises:
        UpstreamFetchError: On a non-retryable status, exhausted retries,
            or an undecodable body
    """

    def _attempt() -> httpx.Response:
        response = client.get(url, params=params, headers=headers)
        if response.status_code in config.retry_statuses:
            raise _RetryableStatus(response)
        return response

    retrying = tenacity.Retrying(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(multiplier=config.backoff_base_s, max=config.backoff_max_s),
        before_sleep=_log_retry(provider, url),
        reraise=True,
    )

    started = time.perf_counter()
    try:
        response = retrying(_attempt)
    except _RetryableStatus as e:
        raise UpstreamFetchError(
            f"{provider}: HTTP {e.response.status_code} after {config.max_attempts} attempts",
            provider=provider,
            url=url,
            status=e.response.status_code,
        ) from e
    except httpx.HTTPError as e:
        raise UpstreamFetchError(f"{provider}: {e}", provider=provider, url=url) from e

    if response.is_error:
        raise UpstreamFetchError(
            f"{provider}: HTTP {response.status_code}",
            provider=provider,
            url=url,
            status=response.status_code,
        )
    try:
        payload = response.json()
    except ValueError as e:
        raise UpstreamFetchError(
            f"{provider}: invalid JSON body", provider=provider, url=url, status=response.status_code
        ) from e

    LOGGER.debug(
        "%s listing fetched",
        provider,
        extra={
            "extra_fields": {
                "provider": provider,
                "url": url,
                "elapsed_ms": round((time.perf_counter() - started) * 1000.0, 1),
            }
        },
    )
    return payload


def open_stream(
    client: httpx.Client,
    url: str,
    *,
    provider: str,
    headers: Optional[Mapping[str, str]] = None,
) -> httpx.Response:
    """Send a streaming GET; the caller owns (and must close) the response.

    Raises:
        UpstreamFetchError: If the request fails or the status is not 2xx
    """

    request = client.build_request("GET", url, headers=headers)
    try:
        response = client.send(request, stream=True)
    except httpx.HTTPError as e:
        raise UpstreamFetchError(f"{provider}: {e}", provider=provider, url=url) from e

    if response.is_error:
        status = response.status_code
        response.close()
        raise UpstreamFetchError(
            f"{provider}: HTTP {status}", provider=provider, url=url, status=status
        )
    return response
