"""Shared httpx plumbing for upstream clients.

Transient failures (network errors, 5xx) are retried with linear backoff.
429 raises RateLimitedError straight away unless the client was built with
``retry_rate_limited``; then it is retried like a 5xx and raises
RateLimitedError only once the attempts run out. Any other 4xx is an
UpstreamError without retries, as is a request httpx refuses to send.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Tuple

import httpx

from slabtracker.core.errors import RateLimitedError, UpstreamError
from slabtracker.core.logging import get_logger

log = get_logger("ingestion.http")


class JsonHttpClient:
    def __init__(
        self,
        source: str,
        base_url: str = "",
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 15.0,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_rate_limited: bool = False,
    ):
        self.source = source
        self.base_url = base_url
        self.headers = headers or {}
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.transport = transport
        self.retry_rate_limited = retry_rate_limited

    async def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Tuple[Any, httpx.Response]:
        """GET and decode JSON. Returns (body, response) so callers can read headers."""
        last_error = "no attempt made"
        rate_limited = False

        for attempt in range(1, self.max_attempts + 1):
            try:
                async with httpx.AsyncClient(
                    base_url=self.base_url,
                    headers=self.headers,
                    timeout=timeout or self.timeout,
                    transport=self.transport,
                ) as client:
                    resp = await client.get(url, params=params)
            except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
                # The request never left; retrying cannot help
                raise UpstreamError(self.source, f"{type(exc).__name__}: {exc}") from exc
            except httpx.TransportError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                rate_limited = False
                log.warning(f"{self.source} attempt {attempt}/{self.max_attempts} failed: {last_error}")
            else:
                if resp.status_code == 429:
                    log.warning(f"{self.source} rate limited on {url}")
                    if not self.retry_rate_limited:
                        raise RateLimitedError(self.source)
                    last_error = "HTTP 429"
                    rate_limited = True
                elif resp.status_code >= 500:
                    last_error = f"HTTP {resp.status_code}"
                    rate_limited = False
                    log.warning(f"{self.source} attempt {attempt}/{self.max_attempts}: {last_error}")
                elif resp.status_code >= 400:
                    raise UpstreamError(self.source, f"HTTP {resp.status_code} for {url}", resp.status_code)
                else:
                    try:
                        return resp.json(), resp
                    except ValueError as exc:
                        raise UpstreamError(self.source, f"invalid JSON from {url}: {exc}") from exc

            if attempt < self.max_attempts:
                await asyncio.sleep(self.backoff_seconds * attempt)

        log.error(f"{self.source} failed after {self.max_attempts} attempts: {last_error}")
        if rate_limited:
            raise RateLimitedError(self.source, f"still rate limited after {self.max_attempts} attempts")
        raise UpstreamError(self.source, f"failed after {self.max_attempts} attempts: {last_error}")
