"""Per-request proxy flow: route, translate, forward, translate back."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple

from .config import ProxySettings
from .errors import (
    CompatProxyError,
    TranslationAborted,
    UpstreamUnexpectedShape,
    build_error_body,
)
from .mapping.context import TranslationContext
from .mapping.operations import MappingTable
from .mapping.pagination import walk_to_page
from .mapping.payload import encode_payload
from .metrics import ProxyMetricsCollector
from .models import (
    ExchangeState,
    LegacyRequest,
    ProxyResponse,
    UpstreamReply,
    UpstreamRequest,
)
from .request_transformer import RequestTransformer
from .response_transformer import ResponseTransformer
from .router import PathRouter, RouteMatch
from .upstream import UpstreamClient
from .utils.middleware import current_correlation_id
from .utils.logging import get_logger

logger = get_logger(__name__)

_TRANSITIONS: Dict[ExchangeState, Tuple[ExchangeState, ...]] = {
    ExchangeState.RECEIVED: (ExchangeState.ROUTED,),
    ExchangeState.ROUTED: (ExchangeState.REQUEST_TRANSFORMED, ExchangeState.FORWARDED),
    ExchangeState.REQUEST_TRANSFORMED: (ExchangeState.FORWARDED,),
    ExchangeState.FORWARDED: (ExchangeState.RESPONSE_TRANSFORMED, ExchangeState.SENT),
    ExchangeState.RESPONSE_TRANSFORMED: (ExchangeState.SENT,),
    ExchangeState.SENT: (),
    ExchangeState.ERRORED: (),
}

TERMINAL_STATES = frozenset({ExchangeState.SENT, ExchangeState.ERRORED})


class ProxyExchange:
    """Lifecycle of one proxied request.

    ``ERRORED`` is reachable from every non-terminal state; any other move
    not listed in the transition table raises ``RuntimeError``.
    """

    def __init__(self, request: LegacyRequest, request_id: str):
        self.request = request
        self.request_id = request_id
        self.state = ExchangeState.RECEIVED
        self.history: List[ExchangeState] = [ExchangeState.RECEIVED]
        self.match: Optional[RouteMatch] = None
        self.error: Optional[CompatProxyError] = None
        self.outcome = "pending"
        self.started = time.perf_counter()

    @property
    def operation_id(self) -> str:
        return self.match.operation_id if self.match else "passthrough"

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, target: ExchangeState) -> None:
        allowed = _TRANSITIONS[self.state]
        if target is ExchangeState.ERRORED and not self.is_terminal:
            allowed = allowed + (ExchangeState.ERRORED,)
        if target not in allowed:
            raise RuntimeError(
                f"illegal exchange transition {self.state.value} -> {target.value}"
            )
        self.state = target
        self.history.append(target)

    def fail(self, error: Optional[CompatProxyError], outcome: str) -> None:
        self.error = error
        self.outcome = outcome
        if not self.is_terminal:
            self.advance(ExchangeState.ERRORED)

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started) * 1000


class ProxyOrchestrator:
    """Tie router, transformers and upstream client together for one request."""

    def __init__(
        self,
        settings: ProxySettings,
        table: MappingTable,
        upstream: UpstreamClient,
        metrics: Optional[ProxyMetricsCollector] = None,
    ):
        self.settings = settings
        self.table = table
        self.upstream = upstream
        self.metrics = metrics or ProxyMetricsCollector()
        self.router = PathRouter(table, settings.legacy_prefix)
        self.request_transformer = RequestTransformer(settings.upstream_prefix)
        self.response_transformer = ResponseTransformer()

    async def handle(
        self, request: LegacyRequest, request_id: Optional[str] = None
    ) -> ProxyResponse:
        exchange = ProxyExchange(request, request_id or current_correlation_id())
        try:
            response = await self._run(exchange)
        except CompatProxyError as exc:
            response = self._error_response(exchange, exc)
        except asyncio.CancelledError:
            interrupted = exchange.state
            exchange.fail(None, "cancelled")
            logger.info(
                "exchange_cancelled",
                operation_id=exchange.operation_id,
                state=interrupted.value,
            )
            self.metrics.record_request(exchange.operation_id, "cancelled", exchange.elapsed_ms())
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "exchange_failed", operation_id=exchange.operation_id, error=str(exc)
            )
            response = self._error_response(
                exchange, CompatProxyError("internal proxy error")
            )
        self.metrics.record_request(exchange.operation_id, exchange.outcome, exchange.elapsed_ms())
        return response

    async def _run(self, exchange: ProxyExchange) -> ProxyResponse:
        request = exchange.request
        exchange.match = self.router.match(request.method, request.path)
        exchange.advance(ExchangeState.ROUTED)
        if exchange.match is None:
            return await self._passthrough(exchange, "passthrough")

        try:
            body = request.json_body()
        except ValueError:
            logger.info(
                "request_body_not_json",
                operation_id=exchange.operation_id,
                content_type=request.header("content-type"),
            )
            return await self._passthrough(exchange, "passthrough_body")

        op = exchange.match.operation
        ctx = TranslationContext(op, max_page_walk=self.settings.config.max_page_walk)
        upstream_request = self.request_transformer.transform(exchange.match, request, body, ctx)
        self._apply_policy(ctx)
        exchange.advance(ExchangeState.REQUEST_TRANSFORMED)

        reply: Optional[UpstreamReply] = None
        payload: Any = None
        descriptor = op.pagination
        if descriptor is not None and ctx.page is not None and descriptor.needs_walk(ctx.page):
            try:
                walk = await walk_to_page(descriptor, ctx.page, upstream_request, self._send)
            except ValueError as exc:
                raise UpstreamUnexpectedShape(op.operation_id, "$", str(exc)) from exc
            logger.debug(
                "cursor_walk", operation_id=op.operation_id, page=ctx.page.page, steps=walk.steps
            )
            if walk.failed is not None:
                reply = walk.failed
            elif walk.exhausted is not None:
                reply, payload = walk.last, walk.exhausted
            else:
                upstream_request = upstream_request.with_query(
                    **{descriptor.cursor_param: walk.cursor}
                )
        if reply is None:
            reply = await self._send(upstream_request)
        exchange.advance(ExchangeState.FORWARDED)

        if not reply.is_success:
            exchange.outcome = "upstream_status"
            exchange.advance(ExchangeState.SENT)
            return ProxyResponse.relay(reply)

        if payload is None:
            try:
                payload = reply.json()
            except ValueError as exc:
                raise UpstreamUnexpectedShape(op.operation_id, "$", "reply is not JSON") from exc
        translated = self.response_transformer.transform(op, payload, ctx)
        for field_path, value in ctx.enum_fallbacks:
            logger.warning(
                "enum_fallback_applied",
                operation_id=op.operation_id,
                field=field_path,
                upstream_value=value,
            )
            self.metrics.record_enum_fallback(op.operation_id, field_path)
        exchange.advance(ExchangeState.RESPONSE_TRANSFORMED)

        response = ProxyResponse.translated(reply, encode_payload(translated))
        exchange.outcome = "translated"
        exchange.advance(ExchangeState.SENT)
        return response

    async def _passthrough(self, exchange: ProxyExchange, outcome: str) -> ProxyResponse:
        request = exchange.request
        headers = list(request.headers)
        if self.settings.config.lift_legacy_auth and request.header("authorization") is None:
            token = legacy_auth_token(request)
            if token:
                headers.append(("authorization", f"Bearer {token}"))
        reply = await self._send(
            UpstreamRequest(
                method=request.method,
                path=request.raw_path,
                query_string=request.query_string,
                headers=headers,
                content=request.body,
            )
        )
        exchange.advance(ExchangeState.FORWARDED)
        exchange.outcome = outcome
        exchange.advance(ExchangeState.SENT)
        return ProxyResponse.relay(reply, keep_length=request.method == "HEAD")

    async def _send(self, request: UpstreamRequest) -> UpstreamReply:
        reply = await self.upstream.send(request)
        self.metrics.record_upstream(reply.status_code, reply.elapsed_ms)
        return reply

    def _apply_policy(self, ctx: TranslationContext) -> None:
        policy = self.settings.config.translation
        blocking = []
        for err in ctx.errors:
            self.metrics.record_translation_error(ctx.operation_id, err.field, err.severity)
            if policy.abort_on_required if err.required else policy.abort_on_optional:
                blocking.append(err)
        if blocking:
            raise TranslationAborted(ctx.operation_id, blocking)
        for err in ctx.errors:
            logger.warning(
                "translation_field_forwarded_raw",
                operation_id=ctx.operation_id,
                field=err.field,
                reason=err.reason,
                severity=err.severity,
            )

    def _error_response(self, exchange: ProxyExchange, exc: CompatProxyError) -> ProxyResponse:
        exchange.fail(exc, exc.error_code)
        if isinstance(exc, UpstreamUnexpectedShape):
            logger.error(
                "upstream_unexpected_shape",
                operation_id=exc.operation_id,
                field=exc.field,
                reason=exc.reason,
            )
            self.metrics.record_unexpected_shape(exc.operation_id, exc.field)
        else:
            logger.warning(
                "exchange_errored",
                operation_id=exchange.operation_id,
                error_code=exc.error_code,
                message=exc.message,
            )
        body = build_error_body(exchange.request_id, exc.error_code, exc.message)
        return ProxyResponse.error(exc.http_status, body)


def legacy_auth_token(request: LegacyRequest) -> Optional[str]:
    """The legacy ``auth`` token from the query string or an ``application/json`` body."""
    token = request.query_params().get("auth")
    if token:
        return token
    if not request.is_json:
        return None
    try:
        body = request.json_body()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("auth"), str) and body["auth"]:
        return body["auth"]
    return None
