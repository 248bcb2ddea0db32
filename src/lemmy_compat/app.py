"""FastAPI application for the compatibility proxy."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.requests import ClientDisconnect

from . import __version__
from .config import ProxySettings
from .errors import RequestBodyUnreadable, build_error_body
from .mapping.operations import MappingTable
from .mapping.table import DEFAULT_MAPPING_TABLE, build_mapping_table
from .metrics import ProxyMetricsCollector
from .models import HealthStatus, LegacyRequest, ProxyResponse
from .orchestrator import ProxyOrchestrator
from .upstream import UpstreamClient
from .utils.middleware import current_correlation_id
from .utils.logging import configure_logging
from .utils.middleware import CorrelationMiddleware

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROXIED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]

# Status returned when the client went away before the reply was ready
CLIENT_CLOSED_REQUEST = 499


async def run_until_disconnected(
    coro: Awaitable[T],
    is_disconnected: Callable[[], Awaitable[bool]],
    interval: float,
) -> Optional[T]:
    """Await ``coro`` unless the client disconnects first.

    Returns ``None`` after cancelling the pending work when
    ``is_disconnected`` reports that the client is gone.
    """

    task = asyncio.ensure_future(coro)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=interval)
            if done:
                return task.result()
            if await is_disconnected():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
                return None
    finally:
        if not task.done():
            task.cancel()


def to_http_response(proxied: ProxyResponse) -> Response:
    """Render a ``ProxyResponse`` keeping repeated headers such as ``set-cookie``."""
    response = Response(status_code=proxied.status_code)
    raw_headers = [
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in proxied.headers
    ]
    if (
        proxied.status_code >= 200
        and proxied.status_code not in (204, 304)
        and proxied.header("content-length") is None
    ):
        raw_headers.append((b"content-length", str(len(proxied.content)).encode("latin-1")))
    response.body = proxied.content
    response.raw_headers = raw_headers
    return response


async def read_legacy_request(request: Request) -> LegacyRequest:
    try:
        body = await request.body()
    except ClientDisconnect as exc:
        raise RequestBodyUnreadable() from exc
    raw_path = request.scope.get("raw_path") or b""
    return LegacyRequest(
        method=request.method,
        path=request.url.path,
        raw_path=raw_path.decode("latin-1") or request.url.path,
        query_string=request.scope.get("query_string", b"").decode("latin-1"),
        headers=[(k.decode("latin-1"), v.decode("latin-1")) for k, v in request.headers.raw],
        body=body,
    )


class ProxyAppBuilder:
    """Builder for the proxy FastAPI application."""

    def __init__(
        self,
        settings: ProxySettings,
        table: Optional[MappingTable] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional[ProxyMetricsCollector] = None,
    ):
        self.settings = settings
        if table is None:
            table = (
                DEFAULT_MAPPING_TABLE
                if settings.config.lift_legacy_auth
                else build_mapping_table(lift_legacy_auth=False)
            )
        self.table = table
        self.metrics = metrics or ProxyMetricsCollector()
        self.upstream = UpstreamClient(settings, transport=transport)
        self.orchestrator = ProxyOrchestrator(settings, table, self.upstream, self.metrics)
        self.app: Optional[FastAPI] = None

    def _create_lifespan_handler(self) -> Callable:
        @asynccontextmanager
        async def lifespan(_app: FastAPI):
            logger.info(
                "Proxying legacy API to %s (%d operations translated)",
                self.settings.upstream_base_url,
                len(self.table),
            )
            try:
                yield
            finally:
                await self.upstream.aclose()

        return lifespan

    def _add_middleware(self, app: FastAPI) -> None:
        app.add_middleware(CorrelationMiddleware)

    def _add_internal_endpoints(self, app: FastAPI) -> None:
        prefix = self.settings.internal_prefix.rstrip("/")

        @app.get(f"{prefix}/health", response_model=HealthStatus)
        async def health() -> HealthStatus:
            return HealthStatus(
                status="healthy",
                version=__version__,
                environment=self.settings.environment,
                upstream=self.settings.upstream_base_url,
                operations=len(self.table),
            )

        @app.get(f"{prefix}/metrics")
        async def metrics() -> Response:
            return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    def _add_proxy_route(self, app: FastAPI) -> None:
        interval = self.settings.config.disconnect_poll_interval_ms / 1000

        @app.api_route("/{full_path:path}", methods=PROXIED_METHODS, include_in_schema=False)
        async def proxy(request: Request, full_path: str) -> Response:
            request_id = current_correlation_id()
            try:
                legacy = await read_legacy_request(request)
            except RequestBodyUnreadable as exc:
                body = build_error_body(request_id, exc.error_code, exc.message)
                return to_http_response(ProxyResponse.error(exc.http_status, body))

            proxied = await run_until_disconnected(
                self.orchestrator.handle(legacy, request_id),
                request.is_disconnected,
                interval,
            )
            if proxied is None:
                self.metrics.record_disconnect()
                logger.info("Client disconnected from %s %s", legacy.method, legacy.path)
                return Response(status_code=CLIENT_CLOSED_REQUEST)
            return to_http_response(proxied)

    def build(self) -> FastAPI:
        """Build the complete FastAPI application."""
        configure_logging("lemmy-compat", self.settings.log_level)

        self.app = FastAPI(
            title="Lemmy API compatibility proxy",
            version=__version__,
            lifespan=self._create_lifespan_handler(),
            docs_url=None,
            redoc_url=None,
            openapi_url=None,
        )
        self._add_middleware(self.app)
        self._add_internal_endpoints(self.app)
        self._add_proxy_route(self.app)
        return self.app


def create_app(
    settings: Optional[ProxySettings] = None,
    table: Optional[MappingTable] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Factory function to build the proxy FastAPI application."""
    if settings is None:
        settings = ProxySettings()
    return ProxyAppBuilder(settings, table=table, transport=transport).build()
