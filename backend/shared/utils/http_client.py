"""
Async HTTP client wrapper for fixture sources.
One attempt per request: falling back to the next source is the orchestrator's job.
"""
from __future__ import annotations

import time
from typing import Any, Optional

import httpx

from shared.utils.logging import get_logger
from shared.utils.metrics import SOURCE_LATENCY

logger = get_logger(__name__)

DEFAULT_USER_AGENT = "fixture-calendar/1.0 (+https://github.com/fixture-calendar)"


class SourceHTTPClient:
    """Thin httpx.AsyncClient wrapper that logs and times each request."""

    def __init__(
        self,
        source_name: str,
        timeout_s: float = 20.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._source = source_name
        self._timeout = timeout_s
        self._headers = {"User-Agent": DEFAULT_USER_AGENT, "Accept": "application/json", **(headers or {})}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self._headers,
                timeout=httpx.Timeout(self._timeout, connect=5.0),
                follow_redirects=True,
                transport=self._transport,
            )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        """
        GET a URL and decode its JSON body.

        Raises:
            httpx.HTTPStatusError: on any non-2xx response.
            httpx.TimeoutException: when the request times out.
            ValueError: when the body is not valid JSON.
        """
        if self._client is None:
            await self.start()
        assert self._client is not None

        start = time.perf_counter()
        try:
            resp = await self._client.get(url, params=params)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "source_http_error",
                source=self._source,
                url=url,
                status=exc.response.status_code,
            )
            raise
        except httpx.TransportError as exc:
            logger.warning("source_transport_error", source=self._source, url=url, error=str(exc))
            raise
        finally:
            SOURCE_LATENCY.labels(source=self._source).observe(time.perf_counter() - start)

        logger.debug(
            "source_request_success",
            source=self._source,
            url=url,
            latency_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return resp.json()
