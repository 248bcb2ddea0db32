"""Tests for page-number translation and the stateless cursor walk."""

import httpx
import pytest

from lemmy_compat.mapping.pagination import (
    PageState,
    PaginationDescriptor,
    PaginationStyle,
    walk_to_page,
)
from lemmy_compat.mapping.payload import decode_payload
from lemmy_compat.models import UpstreamReply, UpstreamRequest, parse_query

from tests.fixtures.upstream import FakeLemmy

CURSOR = PaginationDescriptor(PaginationStyle.CURSOR, items_field="posts")
OFFSET = PaginationDescriptor(PaginationStyle.OFFSET, items_field="comments")


class TestPaginationDescriptor:
    def test_capture_defaults(self):
        assert CURSOR.capture({}) == PageState(page=1, limit=10)
        assert CURSOR.capture({"page": "3", "limit": "5"}) == PageState(page=3, limit=5)

    @pytest.mark.parametrize("params", [{"page": "0"}, {"page": "x"}, {"limit": "-1"}])
    def test_capture_rejects_invalid(self, params):
        with pytest.raises(ValueError):
            CURSOR.capture(params)

    def test_offset_rewrite(self):
        params = {"page": "3", "limit": "20", "sort": "New"}

        OFFSET.rewrite_request(params, OFFSET.capture(params), max_walk=10)

        assert params == {"limit": 20, "sort": "New", "offset": 40}

    def test_cursor_rewrite_respects_walk_limit(self):
        params = {"page": "12"}

        with pytest.raises(ValueError):
            CURSOR.rewrite_request(params, CURSOR.capture(params), max_walk=10)

    def test_offset_next_page_only_when_full(self):
        state = PageState(page=2, limit=2)

        assert OFFSET.next_page({"comments": [1, 2]}, state) == 3
        assert OFFSET.next_page({"comments": [1]}, state) is None

    def test_restore_replaces_cursor_with_page_number(self):
        """Test the opaque cursor becomes an integer next page."""
        payload = {"posts": [{"id": 1}], "next_page": "Pa0001"}

        CURSOR.restore_response(payload, PageState(page=4, limit=1))

        assert payload == {"posts": [{"id": 1}], "next_page": 5}

    def test_restore_end_of_chain(self):
        payload = {"posts": [{"id": 1}], "next_page": None}

        CURSOR.restore_response(payload, PageState(page=4, limit=10))

        assert payload["next_page"] is None

    def test_items_must_be_array(self):
        with pytest.raises(ValueError):
            CURSOR.items({"posts": {"id": 1}})

    def test_exhausted_page(self):
        empty = CURSOR.exhausted_page({"posts": [{"id": 1}], "next_page": None, "extra": 1})

        assert empty == {"posts": [], "next_page": None, "extra": 1}


class TestCursorWalk:
    async def test_walk_follows_cursors(self):
        """Test page N is reached by N-1 upstream calls."""
        fake = FakeLemmy(post_count=23)
        sent = []

        async def send(request: UpstreamRequest) -> UpstreamReply:
            sent.append(request)
            response = fake.handle(_to_httpx(request))
            return UpstreamReply(response.status_code, list(response.headers.items()), response.content)

        base = UpstreamRequest("GET", "/api/v3/post/list", "limit=5&sort=New")
        walk = await walk_to_page(CURSOR, PageState(page=3, limit=5), base, send)

        assert walk.steps == 2
        assert walk.cursor == FakeLemmy.cursor_for(10)
        assert walk.failed is None and walk.exhausted is None
        assert "page_cursor" not in parse_query(sent[0].query_string)
        assert parse_query(sent[1].query_string) == {
            "limit": "5",
            "sort": "New",
            "page_cursor": FakeLemmy.cursor_for(5),
        }

    async def test_walk_past_the_end(self):
        """Test a chain that ends early yields an empty page."""
        fake = FakeLemmy(post_count=4)

        async def send(request: UpstreamRequest) -> UpstreamReply:
            response = fake.handle(_to_httpx(request))
            return UpstreamReply(response.status_code, [], response.content)

        base = UpstreamRequest("GET", "/api/v3/post/list", "limit=5")
        walk = await walk_to_page(CURSOR, PageState(page=3, limit=5), base, send)

        assert walk.steps == 1
        assert walk.exhausted == {"posts": [], "next_page": None}
        assert decode_payload(walk.last.content)["posts"]

    async def test_walk_stops_on_upstream_error(self):
        async def send(request: UpstreamRequest) -> UpstreamReply:
            return UpstreamReply(500, [], b'{"error":"db"}')

        walk = await walk_to_page(
            CURSOR, PageState(page=2, limit=5), UpstreamRequest("GET", "/api/v3/post/list"), send
        )

        assert walk.failed is not None
        assert walk.failed.status_code == 500


def _to_httpx(request: UpstreamRequest) -> httpx.Request:
    return httpx.Request(request.method, f"http://lemmy.test{request.target}", content=request.content)
