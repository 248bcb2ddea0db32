"""Old-style request -> new-style request."""

from __future__ import annotations

import copy
from typing import Any, Dict, Optional

from .mapping.context import Direction, TranslationContext
from .mapping.payload import FieldPath, encode_payload
from .mapping.rules import Stage
from .models import HOP_BY_HOP_HEADERS, Headers, LegacyRequest, UpstreamRequest, encode_query
from .router import RouteMatch

_MISSING = object()

# Recomputed by the HTTP client for the outgoing request
_NOT_FORWARDED = HOP_BY_HOP_HEADERS | {"host", "content-length"}


def build_envelope(match: RouteMatch, request: LegacyRequest, body: Any) -> Dict[str, Any]:
    """The document request-side rules operate on."""
    headers: Dict[str, str] = {}
    for name, value in request.headers:
        headers.setdefault(name.lower(), value)
    return {
        "path": dict(match.params),
        "query": dict(request.query_params()),
        "body": copy.deepcopy(body),
        "headers": headers,
    }


def merge_headers(original: Headers, before: Dict[str, Any], after: Dict[str, Any]) -> Headers:
    """Apply the header edits made by rules to the original header list."""
    changed = {
        name
        for name in set(before) | set(after)
        if before.get(name, _MISSING) != after.get(name, _MISSING)
    }
    merged = [
        (name, value)
        for name, value in original
        if name.lower() not in _NOT_FORWARDED and name.lower() not in changed
    ]
    for name in sorted(changed):
        value = after.get(name)
        if value is not None:
            merged.append((name, str(value)))
    return merged


class RequestTransformer:
    """Apply an operation's request rules to a legacy request.

    Parameter moves run first, then the page number is translated, then the
    remaining stages. Conversion failures are recorded on the context and
    the offending value is left as it was.
    """

    def __init__(self, upstream_prefix: str = "/api/v3"):
        self.upstream_prefix = upstream_prefix.rstrip("/")

    def transform(
        self,
        match: RouteMatch,
        request: LegacyRequest,
        body: Any,
        ctx: TranslationContext,
    ) -> UpstreamRequest:
        op = match.operation
        envelope = build_envelope(match, request, body)
        original_headers = dict(envelope["headers"])

        for capture in op.captures:
            value = FieldPath(capture).first(envelope, _MISSING)
            if value is not _MISSING:
                ctx.captured[capture] = copy.deepcopy(value)

        for rule in op.request_rules:
            if rule.stage is Stage.PARAMS:
                rule.apply(envelope, Direction.REQUEST, ctx)
        if op.pagination is not None:
            self._paginate(envelope, ctx)
        for rule in op.request_rules:
            if rule.stage is not Stage.PARAMS:
                rule.apply(envelope, Direction.REQUEST, ctx)

        path = self._render_path(match, request, envelope, ctx)
        query = envelope.get("query")
        query_string = encode_query(query) if isinstance(query, dict) else request.query_string
        content: Optional[bytes] = request.body
        if body is not None:
            content = encode_payload(envelope.get("body"))
        after = envelope.get("headers")
        headers = merge_headers(
            request.headers, original_headers, after if isinstance(after, dict) else {}
        )
        return UpstreamRequest(
            method=op.upstream_method,
            path=path,
            query_string=query_string,
            headers=headers,
            content=content,
        )

    def _paginate(self, envelope: Dict[str, Any], ctx: TranslationContext) -> None:
        descriptor = ctx.operation.pagination
        query = envelope.get("query")
        if descriptor is None or not isinstance(query, dict):
            return
        try:
            state = descriptor.capture(query)
            descriptor.rewrite_request(query, state, ctx.max_page_walk)
        except ValueError as exc:
            ctx.fail(Direction.REQUEST, f"query.{descriptor.page_param}", str(exc))
            return
        ctx.page = state

    def _render_path(
        self,
        match: RouteMatch,
        request: LegacyRequest,
        envelope: Dict[str, Any],
        ctx: TranslationContext,
    ) -> str:
        """Render the new route; the legacy path is kept when a parameter is missing."""
        params = envelope.get("path")
        try:
            rendered = match.operation.new_template.render(params if isinstance(params, dict) else {})
        except KeyError as exc:
            ctx.fail(
                Direction.REQUEST, f"path.{exc.args[0]}", "route parameter is missing", required=True
            )
            return request.path
        if rendered == "/":
            return self.upstream_prefix or "/"
        return f"{self.upstream_prefix}{rendered}"
