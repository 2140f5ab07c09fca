"""
Shared httpx plumbing for HTTP providers.

Every HTTP provider goes through :meth:`HttpSource.request_json`, which
waits on the provider's token bucket, performs the request and turns
every failure into the error taxonomy the substrate's retry policy
understands:

    ============================  =========================
    upstream outcome              raised
    ============================  =========================
    transport failure / timeout   NetworkError (retryable)
    HTTP 429                      RateLimitError (retryable, retry_after)
    HTTP 5xx                      SourceUnavailableError (retryable)
    HTTP 404                      SourceNotFoundError
    other HTTP 4xx                SourceError
    undecodable JSON body         ParseError
    ============================  =========================
"""

from __future__ import annotations

from typing import Any

import httpx

from rotation_spine.core.errors import (
    NetworkError,
    ParseError,
    RateLimitError,
    SourceError,
    SourceNotFoundError,
    SourceUnavailableError,
)
from rotation_spine.core.logging import get_logger
from rotation_spine.execution.rate_limit import TokenBucketLimiter

logger = get_logger(__name__)


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def classify_response(response: httpx.Response, source_name: str) -> None:
    """Raise the taxonomy error for a non-2xx *response*; return on success."""
    status = response.status_code
    if status < 400:
        return
    url = str(response.request.url) if response.request is not None else None
    context = {"source_name": source_name, "url": url, "http_status": status}
    if status == 429:
        raise RateLimitError(f"{source_name} throttled the request", retry_after=_retry_after(response)).with_context(
            **context
        )
    if status >= 500:
        raise SourceUnavailableError(f"{source_name} returned HTTP {status}").with_context(**context)
    if status == 404:
        raise SourceNotFoundError(f"{source_name} returned HTTP 404").with_context(**context)
    raise SourceError(f"{source_name} rejected the request with HTTP {status}").with_context(**context)


class HttpSource:
    """Base for providers backed by one ``httpx.Client``."""

    name = "http"

    def __init__(self, client: httpx.Client, limiter: TokenBucketLimiter):
        self.client = client
        self.limiter = limiter

    def request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        self.limiter.acquire()
        try:
            response = self.client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise NetworkError(f"{self.name} request failed: {exc}", cause=exc).with_context(
                source_name=self.name, url=url
            ) from exc
        classify_response(response, self.name)
        try:
            return response.json()
        except ValueError as exc:
            raise ParseError(f"{self.name} returned a non-JSON body", cause=exc).with_context(
                source_name=self.name, url=url, http_status=response.status_code
            ) from exc

    def close(self) -> None:
        self.client.close()


__all__ = ["HttpSource", "classify_response"]
