"""Tests for the legacy path router."""

import pytest

from lemmy_compat.errors import RouteNotFound
from lemmy_compat.mapping.operations import LogicalOperation, MappingTable
from lemmy_compat.mapping.table import DEFAULT_MAPPING_TABLE
from lemmy_compat.router import PathRouter


@pytest.fixture
def router() -> PathRouter:
    return PathRouter(DEFAULT_MAPPING_TABLE, "/api/v3")


class TestPathRouter:
    def test_numeric_id_routes_to_get_post(self, router):
        """Test the typed parameter captures an integer."""
        matched = router.resolve("GET", "/api/v3/post/5")

        assert matched.operation_id == "GetPost"
        assert matched.params == {"id": 5}

    def test_literal_beats_parameter(self, router):
        """Test ``/post/list`` is never captured as a post id."""
        assert router.resolve("GET", "/api/v3/post/list").operation_id == "ListPosts"
        assert router.resolve("GET", "/api/v3/community/list").operation_id == "ListCommunities"

    def test_typed_beats_untyped(self, router):
        by_id = router.resolve("GET", "/api/v3/community/12")
        by_name = router.resolve("GET", "/api/v3/community/rust")

        assert (by_id.operation_id, by_id.params) == ("GetCommunity", {"id": 12})
        assert (by_name.operation_id, by_name.params) == ("GetCommunityByName", {"name": "rust"})

    def test_method_must_match(self, router):
        assert router.resolve("get", "/api/v3/post/5").operation_id == "GetPost"
        assert router.resolve("POST", "/api/v3/post").operation_id == "CreatePost"
        assert router.resolve("PUT", "/api/v3/post").operation_id == "EditPost"
        assert router.match("DELETE", "/api/v3/post/5") is None

    def test_trailing_slash_ignored(self, router):
        assert router.resolve("GET", "/api/v3/site/").operation_id == "GetSite"

    def test_unknown_paths_do_not_match(self, router):
        """Test unmatched requests are left for passthrough."""
        assert router.match("GET", "/api/v3/federated_instances") is None
        assert router.match("GET", "/api/v3/post/5/extra") is None
        assert router.match("GET", "/post/5") is None
        assert router.match("GET", "/api/v3x/post/5") is None

    @pytest.mark.parametrize(
        "path",
        [
            "/api/v3/user/mention",
            "/api/v3/user/replies",
            "/api/v3/user/unread_count",
            "/api/v3/user/report_count",
            "/api/v3/user/get_captcha",
            "/api/v3/user/banned",
        ],
    )
    def test_reserved_user_routes_not_captured(self, router, path):
        """Test legacy ``/user/*`` endpoints are never read as a username."""
        assert router.match("GET", path) is None

    def test_usernames_still_route(self, router):
        matched = router.resolve("GET", "/api/v3/user/alice")

        assert (matched.operation_id, matched.params) == ("GetPersonDetails", {"username": "alice"})
        assert router.resolve("GET", "/api/v3/user/unread_counts").operation_id == "GetPersonDetails"

    def test_reserved_route_is_method_independent(self):
        table = MappingTable(
            (LogicalOperation("User", "GET", "/user/{username}", "/user"),),
            reserved_routes=("/user/banned",),
        )
        router = PathRouter(table, "/api/v3")

        assert router.match("GET", "/api/v3/user/banned") is None
        assert router.match("POST", "/api/v3/user/banned") is None
        assert router.match("GET", "/api/v3/user/bob").operation_id == "User"

    def test_resolve_raises_route_not_found(self, router):
        with pytest.raises(RouteNotFound) as exc_info:
            router.resolve("GET", "/api/v3/modlog")

        assert exc_info.value.error_code == "route_not_found"
        assert exc_info.value.path == "/api/v3/modlog"

    def test_first_differing_segment_decides(self):
        """Test specificity is compared position by position."""
        table = MappingTable(
            (
                LogicalOperation("ByUser", "GET", "/user/{name}/posts", "/a"),
                LogicalOperation("ByAny", "GET", "/{kind}/{name}/posts", "/b"),
                LogicalOperation("Tail", "GET", "/user/{name}/{what}", "/c"),
            )
        )
        router = PathRouter(table, "")

        assert router.resolve("GET", "/user/alice/posts").operation_id == "ByUser"
        assert router.resolve("GET", "/user/alice/comments").operation_id == "Tail"
        assert router.resolve("GET", "/site/alice/posts").operation_id == "ByAny"

    def test_empty_prefix(self):
        router = PathRouter(DEFAULT_MAPPING_TABLE, "")

        assert router.resolve("GET", "/post/7").params == {"id": 7}
