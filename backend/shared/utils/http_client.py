"""
Rate-limited async HTTP client shared by every upstream source.
Throttles per source, retries a 429 exactly once after the server's Retry-After,
and converts httpx failures into the TransportError / RateLimited taxonomy.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx

from shared.config import Settings, get_settings
from shared.errors import RateLimited, ShapeError, TransportError
from shared.utils.logging import get_logger
from shared.utils.metrics import RATE_LIMIT_HITS, SOURCE_LATENCY, SOURCE_REQUESTS
from shared.utils.rate_limiter import SleepFn, SourceRateLimiter

logger = get_logger(__name__)


def parse_retry_after(value: Optional[str], default_s: float) -> float:
    """Seconds from a Retry-After header; non-numeric or missing values fall back to the default."""
    if not value:
        return default_s
    try:
        seconds = float(value.strip())
    except ValueError:
        return default_s
    return seconds if seconds >= 0 else default_s


class RateLimitedFetcher:
    """
    Async HTTP client with per-source minimum-interval throttling.

    No persistent state: safe to construct once per process (or per test).
    """

    def __init__(
        self,
        settings: Settings | None = None,
        limiter: SourceRateLimiter | None = None,
        timeout_s: float | None = None,
        sleep: SleepFn = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._sleep = sleep
        self._limiter = limiter or SourceRateLimiter(
            {
                name: self._settings.min_interval_for(name)
                for name in ("catalog", "community", "scrape")
            },
            sleep=sleep,
        )
        self._timeout = timeout_s or self._settings.request_timeout_s
        self._default_retry_after = self._settings.default_retry_after_s
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RateLimitedFetcher":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def limiter(self) -> SourceRateLimiter:
        return self._limiter

    async def fetch(
        self,
        source: str,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """
        Perform one request against `source`, honouring its minimum interval.

        Raises:
            RateLimited: upstream answered 429 again after the single retry.
            TransportError: timeout, connection failure, or non-2xx status.
        """
        if not self._client:
            raise RuntimeError("RateLimitedFetcher not started. Call start() first.")

        for attempt in (1, 2):
            await self._limiter.wait_for_slot(source)
            start_time = time.perf_counter()
            status = "error"
            try:
                resp = await self._client.request(method, url, json=json, params=params, headers=headers)
                status = str(resp.status_code)
            except httpx.TimeoutException as exc:
                status = "timeout"
                logger.warning("source_timeout", source=source, url=url, attempt=attempt)
                raise TransportError(source, f"timeout after {self._timeout}s") from exc
            except httpx.HTTPError as exc:
                logger.warning("source_request_error", source=source, url=url, error=str(exc))
                raise TransportError(source, str(exc) or exc.__class__.__name__) from exc
            finally:
                SOURCE_LATENCY.labels(source=source).observe(time.perf_counter() - start_time)
                SOURCE_REQUESTS.labels(source=source, status=status).inc()

            if resp.status_code == 429:
                RATE_LIMIT_HITS.labels(source=source).inc()
                retry_after = parse_retry_after(resp.headers.get("Retry-After"), self._default_retry_after)
                if attempt == 1:
                    logger.warning("rate_limited_retry", source=source, url=url, retry_after_s=retry_after)
                    await self._sleep(retry_after)
                    continue
                raise RateLimited(source, retry_after)

            if resp.status_code >= 400:
                raise TransportError(source, f"HTTP {resp.status_code}", status_code=resp.status_code)

            logger.debug(
                "source_request_success",
                source=source,
                url=url,
                status=resp.status_code,
                latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            return resp

        raise AssertionError("unreachable")  # pragma: no cover

    async def fetch_json(
        self,
        source: str,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> Any:
        """fetch() and decode the JSON body; an undecodable body is a ShapeError."""
        resp = await self.fetch(source, method, url, **kwargs)
        try:
            return resp.json()
        except ValueError as exc:
            raise ShapeError(source, f"invalid JSON body: {exc}") from exc
