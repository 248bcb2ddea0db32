"""Request correlation for the proxy application."""

import uuid
from contextvars import ContextVar, Token
from typing import Optional

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def current_correlation_id() -> str:
    """The id bound to the running request; one is bound on first use outside a request."""
    value = _correlation_id.get()
    if value is None:
        value = uuid.uuid4().hex
        _correlation_id.set(value)
    return value


def bind_correlation_id(value: Optional[str] = None) -> Token:
    """Bind ``value`` (or a fresh id) and return the token that undoes it."""
    return _correlation_id.set(value or uuid.uuid4().hex)


def reset_correlation_id(token: Token) -> None:
    _correlation_id.reset(token)


class CorrelationMiddleware:
    """Bind a correlation ID for every HTTP request.

    Reads ``X-Correlation-ID`` or generates one. Implemented as plain ASGI so
    request bodies stream through untouched; response headers are not
    modified, relayed replies must stay byte-identical.
    """

    header_name = "x-correlation-id"

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        token = bind_correlation_id(Headers(scope=scope).get(self.header_name))
        scope.setdefault("state", {})["correlation_id"] = _correlation_id.get()
        try:
            await self.app(scope, receive, send)
        finally:
            reset_correlation_id(token)
