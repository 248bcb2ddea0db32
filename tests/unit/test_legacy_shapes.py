"""Every declared operation, end to end: a legacy request in, a legacy reply out."""

import json

import httpx
import pytest

from lemmy_compat.config import ProxySettings
from lemmy_compat.mapping.table import DEFAULT_MAPPING_TABLE
from lemmy_compat.orchestrator import ProxyOrchestrator
from lemmy_compat.upstream import UpstreamClient

from tests.fixtures.upstream import (
    PUBLISHED,
    PUBLISHED_OLD,
    new_comment_view,
    new_community_view,
    new_person_view,
    new_post_view,
    old_comment_view,
    old_community_view,
    old_person_view,
    old_post_view,
)

COMMUNITY_NEW = {"id": 3, "name": "python", "published": "2022-12-01T08:30:00Z"}
COMMUNITY_OLD = {"id": 3, "name": "python", "published": "2022-12-01T08:30:00"}
MODERATOR_NEW = {"id": 7, "name": "alice", "published": "2023-01-01T00:00:00Z"}
MODERATOR_OLD = {"id": 7, "name": "alice", "published": "2023-01-01T00:00:00"}

# operation id -> (legacy request, expected upstream request, 0.19 reply, 0.18 reply)
CASES = {
    "GetSite": (
        ("GET", "/api/v3/site", "auth=jwt", None),
        ("GET", "/api/v3/site", {}, None),
        {
            "site_view": {
                "site": {"id": 1, "name": "lemmy", "published": PUBLISHED, "updated": None},
                "local_site": {
                    "registration_mode": "Open",
                    "federation_signed_fetch": False,
                    "published": PUBLISHED,
                },
                "counts": {"users": 3},
            },
            "admins": [new_person_view(is_admin=True)],
            "version": "0.19.3",
            "taglines": [{"id": 4, "content": "hello", "published": PUBLISHED}],
        },
        {
            "site_view": {
                "site": {"id": 1, "name": "lemmy", "published": PUBLISHED_OLD, "updated": None},
                "local_site": {"registration_mode": "Open", "published": PUBLISHED_OLD},
                "counts": {"users": 3},
            },
            "admins": [old_person_view(admin=True)],
            "version": "0.19.3",
            "taglines": [{"id": 4, "content": "hello", "published": PUBLISHED_OLD}],
        },
    ),
    "ListPosts": (
        ("GET", "/api/v3/post/list", "sort=New&limit=2", None),
        ("GET", "/api/v3/post/list", {"sort": "New", "limit": "2"}, None),
        {"posts": [new_post_view(1), new_post_view(2)], "next_page": "Pa0002"},
        {"posts": [old_post_view(1), old_post_view(2)], "next_page": 2},
    ),
    "GetPost": (
        ("GET", "/api/v3/post/5", "", None),
        ("GET", "/api/v3/post/5", {}, None),
        {
            "post_view": new_post_view(5),
            "community_view": new_community_view(),
            "moderators": [],
            "cross_posts": [new_post_view(6)],
        },
        {
            "post_view": old_post_view(5),
            "community_view": old_community_view(),
            "moderators": [],
            "cross_posts": [old_post_view(6)],
        },
    ),
    "CreatePost": (
        ("POST", "/api/v3/post", "", {"name": "Hello", "community_id": "3", "auth": "jwt"}),
        ("POST", "/api/v3/post", {}, {"name": "Hello", "community_id": 3, "nsfw": False}),
        {"post_view": new_post_view(24)},
        {"post_view": old_post_view(24)},
    ),
    "EditPost": (
        ("PUT", "/api/v3/post", "", {"post_id": "4", "name": "Renamed"}),
        ("PUT", "/api/v3/post", {}, {"post_id": 4, "name": "Renamed"}),
        {"post_view": new_post_view(4)},
        {"post_view": old_post_view(4)},
    ),
    "ListComments": (
        ("GET", "/api/v3/comment/list", "post_id=1&page=2&limit=1", None),
        ("GET", "/api/v3/comment/list", {"post_id": "1", "page": "2", "limit": "1"}, None),
        {"comments": [new_comment_view(2)]},
        {"comments": [old_comment_view(2)]},
    ),
    "GetComment": (
        ("GET", "/api/v3/comment/2", "", None),
        ("GET", "/api/v3/comment/2", {}, None),
        {"comment_view": new_comment_view(2), "recipient_ids": []},
        {"comment_view": old_comment_view(2), "recipient_ids": []},
    ),
    "CreateComment": (
        ("POST", "/api/v3/comment", "", {"content": "hi", "post_id": "1", "form_id": "f-1"}),
        ("POST", "/api/v3/comment", {}, {"content": "hi", "post_id": 1}),
        {"comment_view": new_comment_view(99)},
        {"comment_view": old_comment_view(99), "recipient_ids": [], "form_id": "f-1"},
    ),
    "ListCommunities": (
        ("GET", "/api/v3/community/list", "type_=Local", None),
        ("GET", "/api/v3/community/list", {"type_": "Local"}, None),
        {"communities": [new_community_view(), new_community_view(4, "rust")]},
        {"communities": [old_community_view(), old_community_view(4, "rust")]},
    ),
    "FollowCommunity": (
        ("POST", "/api/v3/community/follow", "", {"community_id": "3", "follow": True}),
        ("POST", "/api/v3/community/follow", {}, {"community_id": 3, "follow": True}),
        {"community_view": new_community_view()},
        {"community_view": old_community_view()},
    ),
    "GetCommunity": (
        ("GET", "/api/v3/community/3", "", None),
        ("GET", "/api/v3/community", {"id": "3"}, None),
        {
            "community_view": new_community_view(),
            "moderators": [{"community": COMMUNITY_NEW, "moderator": MODERATOR_NEW}],
        },
        {
            "community_view": old_community_view(),
            "moderators": [{"community": COMMUNITY_OLD, "moderator": MODERATOR_OLD}],
        },
    ),
    "GetCommunityByName": (
        ("GET", "/api/v3/community/python", "", None),
        ("GET", "/api/v3/community", {"name": "python"}, None),
        {"community_view": new_community_view(), "moderators": []},
        {"community_view": old_community_view(), "moderators": []},
    ),
    "CreateCommunity": (
        ("POST", "/api/v3/community", "", {"name": "rust", "title": "Rust"}),
        ("POST", "/api/v3/community", {}, {"name": "rust", "title": "Rust", "visibility": "Public"}),
        {"community_view": new_community_view(4, "rust"), "discussion_languages": []},
        {"community_view": old_community_view(4, "rust"), "discussion_languages": []},
    ),
    "GetPersonDetails": (
        ("GET", "/api/v3/user/alice", "auth=jwt", None),
        ("GET", "/api/v3/user", {"username": "alice"}, None),
        {
            "person_view": new_person_view(),
            "comments": [new_comment_view(1)],
            "posts": [new_post_view(1)],
            "moderates": [{"community": COMMUNITY_NEW, "moderator": {"id": 7}}],
        },
        {
            "person_view": old_person_view(),
            "comments": [old_comment_view(1)],
            "posts": [old_post_view(1)],
            "moderates": [{"community": COMMUNITY_OLD, "moderator": {"id": 7}}],
        },
    ),
}

OPERATION_IDS = [op.operation_id for op in DEFAULT_MAPPING_TABLE]


def test_every_operation_has_a_case():
    assert sorted(CASES) == sorted(OPERATION_IDS)


class TestLegacyShapes:
    @pytest.mark.parametrize("operation_id", OPERATION_IDS)
    async def test_reply_matches_legacy_serialisation(self, operation_id, make_request):
        """Test each operation rewrites the request and serves the 0.18 reply shape."""
        legacy, expected, new_reply, old_reply = CASES[operation_id]
        method, path, query, body = legacy
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=new_reply)

        settings = ProxySettings(upstream="lemmy.test:8536")
        orchestrator = ProxyOrchestrator(
            settings,
            DEFAULT_MAPPING_TABLE,
            UpstreamClient(settings, transport=httpx.MockTransport(handler)),
        )

        response = await orchestrator.handle(make_request(method, path, query=query, body=body))

        assert response.status_code == 200
        assert json.loads(response.content) == old_reply
        assert orchestrator.metrics.get_outcome_count("translated") == 1
        upstream_method, upstream_path, upstream_params, upstream_body = expected
        assert len(seen) == 1
        assert seen[0].method == upstream_method
        assert seen[0].url.path == upstream_path
        assert dict(seen[0].url.params) == upstream_params
        if upstream_body is None:
            assert seen[0].content == b""
        else:
            assert json.loads(seen[0].content) == upstream_body
        if "auth=" in query or "auth" in (body or {}):
            assert seen[0].headers["authorization"] == "Bearer jwt"
        else:
            assert "authorization" not in seen[0].headers
