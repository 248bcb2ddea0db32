"""Pagination conventions.

Legacy clients page with ``page`` (1-based) and ``limit``. Upstream pages
either by ``offset`` or by opaque cursor tokens. The old-style ``page`` of a
request is captured in a ``PageState`` so that the response can carry an
integer ``next_page`` the legacy client can send back.

Cursor pages are resolved without proxy-side state: page ``N`` is reached by
following ``N - 1`` upstream cursors with the same filters and limit.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from ..models import UpstreamReply, UpstreamRequest
from .payload import FieldPath
from .rules import to_int


class PaginationStyle(str, Enum):
    OFFSET = "offset"
    CURSOR = "cursor"


@dataclass(frozen=True)
class PageState:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class PaginationDescriptor:
    style: PaginationStyle
    items_field: str
    page_param: str = "page"
    limit_param: str = "limit"
    offset_param: str = "offset"
    cursor_param: str = "page_cursor"
    next_cursor_field: str = "next_page"
    old_next_field: str = "next_page"
    default_limit: int = 10

    def capture(self, params: Dict[str, Any]) -> PageState:
        """Read the legacy page state; raises ``ValueError`` when it is invalid."""
        page = to_int(params.get(self.page_param, 1))
        limit = to_int(params.get(self.limit_param, self.default_limit))
        if page < 1:
            raise ValueError(f"page must be at least 1, got {page}")
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        return PageState(page=page, limit=limit)

    def rewrite_request(self, params: Dict[str, Any], state: PageState, max_walk: int) -> None:
        if self.style is PaginationStyle.CURSOR and state.page - 1 > max_walk:
            raise ValueError(f"page {state.page} is deeper than the {max_walk} page walk limit")
        params.pop(self.page_param, None)
        params[self.limit_param] = state.limit
        if self.style is PaginationStyle.OFFSET:
            params[self.offset_param] = state.offset

    def needs_walk(self, state: Optional[PageState]) -> bool:
        return self.style is PaginationStyle.CURSOR and state is not None and state.page > 1

    def items(self, payload: Dict[str, Any]) -> list:
        items = FieldPath(self.items_field).first(payload, [])
        if items is None:
            return []
        if not isinstance(items, list):
            raise ValueError(f"'{self.items_field}' is not an array")
        return items

    def next_page(self, payload: Dict[str, Any], state: PageState) -> Optional[int]:
        items = self.items(payload)
        if self.style is PaginationStyle.OFFSET:
            return state.page + 1 if len(items) >= state.limit else None
        cursor = payload.get(self.next_cursor_field)
        return state.page + 1 if cursor and items else None

    def restore_response(self, payload: Dict[str, Any], state: Optional[PageState]) -> None:
        """Replace the new-style cursor with the old-style ``next_page`` number."""
        next_page = self.next_page(payload, state) if state is not None else None
        if self.next_cursor_field != self.old_next_field:
            payload.pop(self.next_cursor_field, None)
        payload[self.old_next_field] = next_page

    def exhausted_page(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """An empty page shaped like ``payload``, used past the end of a cursor chain."""
        empty = copy.deepcopy(payload)
        items_path = FieldPath(self.items_field)
        for container in items_path.containers(empty):
            container[items_path.name] = []
        empty[self.next_cursor_field] = None
        return empty


@dataclass
class CursorWalk:
    """Outcome of following cursors to a legacy page.

    ``last`` is the last upstream reply seen; when it is not a success the
    walk stopped there. ``exhausted`` is set when the chain ended early.
    """

    cursor: Optional[str] = None
    exhausted: Optional[Dict[str, Any]] = None
    last: Optional[UpstreamReply] = None
    steps: int = 0

    @property
    def failed(self) -> Optional[UpstreamReply]:
        if self.last is not None and not self.last.is_success:
            return self.last
        return None


async def walk_to_page(
    descriptor: PaginationDescriptor,
    state: PageState,
    request: UpstreamRequest,
    send: Callable[[UpstreamRequest], Awaitable[UpstreamReply]],
) -> CursorWalk:
    """Follow upstream cursors until the one that starts ``state.page``.

    Raises ``ValueError`` when an intermediate page is not a JSON object.
    """

    walk = CursorWalk()
    for _ in range(state.page - 1):
        step = request.with_query(**{descriptor.cursor_param: walk.cursor})
        reply = await send(step)
        walk.last = reply
        walk.steps += 1
        if not reply.is_success:
            return walk
        payload = reply.json()
        if not isinstance(payload, dict):
            raise ValueError("intermediate page is not a JSON object")
        cursor = payload.get(descriptor.next_cursor_field)
        if not cursor or not descriptor.items(payload):
            walk.cursor = None
            walk.exhausted = descriptor.exhausted_page(payload)
            return walk
        walk.cursor = cursor
    return walk
