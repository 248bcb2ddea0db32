"""New-style response -> old-style response."""

from __future__ import annotations

import copy
from typing import Any, Dict

from .errors import UpstreamUnexpectedShape
from .mapping.context import Direction, TranslationContext
from .mapping.operations import LogicalOperation


class ResponseTransformer:
    """Undo an operation's field differences on an upstream reply.

    The input payload is never modified. Pagination metadata is restored
    first, then the response rules run in stage order. Unknown enum values
    become the rule's fallback; any other mismatch raises
    ``UpstreamUnexpectedShape``.
    """

    def transform(
        self, operation: LogicalOperation, payload: Any, ctx: TranslationContext
    ) -> Dict[str, Any]:
        if not isinstance(payload, dict):
            raise UpstreamUnexpectedShape(
                operation.operation_id, "$", f"expected an object, found {type(payload).__name__}"
            )
        doc = copy.deepcopy(payload)
        if operation.pagination is not None:
            try:
                operation.pagination.restore_response(doc, ctx.page)
            except ValueError as exc:
                raise UpstreamUnexpectedShape(
                    operation.operation_id, operation.pagination.items_field, str(exc)
                ) from exc
        for rule in operation.response_rules:
            rule.apply(doc, Direction.RESPONSE, ctx)
        return doc
