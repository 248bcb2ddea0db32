"""HTTP client for the single upstream backend."""

from __future__ import annotations

import asyncio
import time
from typing import Optional

import httpx

from .config import ProxySettings
from .errors import UpstreamUnavailable
from .models import HOP_BY_HOP_HEADERS, UpstreamReply, UpstreamRequest, without_headers

_NOT_FORWARDED = HOP_BY_HOP_HEADERS | {"host", "content-length"}


class UpstreamClient:
    """Send requests to the upstream backend; never retries.

    Each call is bounded by the httpx timeouts and an overall
    ``asyncio.wait_for`` so a hung backend cannot hold a request forever.
    """

    def __init__(
        self,
        settings: ProxySettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = settings.upstream_base_url
        self.timeout_seconds = float(settings.config.upstream_timeout_seconds)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(
                self.timeout_seconds,
                connect=float(settings.config.connect_timeout_seconds),
            ),
            transport=transport,
            follow_redirects=False,
        )

    async def send(self, request: UpstreamRequest) -> UpstreamReply:
        start = time.perf_counter()
        outgoing = self._client.build_request(
            request.method,
            request.target,
            headers=without_headers(request.headers, _NOT_FORWARDED),
            content=request.content if request.content else None,
        )
        try:
            response = await asyncio.wait_for(
                self._client.send(outgoing), timeout=self.timeout_seconds
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise UpstreamUnavailable(
                self.base_url, f"timed out after {self.timeout_seconds:g}s", timeout=True
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(self.base_url, str(exc) or type(exc).__name__) from exc
        return UpstreamReply(
            status_code=response.status_code,
            headers=list(response.headers.multi_items()),
            content=response.content,
            elapsed_ms=int((time.perf_counter() - start) * 1000),
        )

    async def aclose(self) -> None:
        await self._client.aclose()
