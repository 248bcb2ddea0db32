"""The declared old (0.18, API v3) <-> new (0.19) rule set.

Only the differences are declared; every other field passes through as is.
Operations not listed here are forwarded verbatim.
"""

from __future__ import annotations

from typing import List, Tuple

from .operations import LogicalOperation, MappingTable
from .pagination import PaginationDescriptor, PaginationStyle
from .rules import (
    BEARER,
    BOOL,
    INT,
    TIMESTAMP,
    Coerce,
    Default,
    Drop,
    EnumRemap,
    FieldRule,
    Move,
    Rename,
)

SUBSCRIBED_TYPES = ("Subscribed", "NotSubscribed", "Pending")
REGISTRATION_MODES = ("Closed", "RequireApplication", "Open")
LISTING_TYPES = ("All", "Local", "Subscribed")
SORT_TYPES = (
    "Active",
    "Hot",
    "New",
    "Old",
    "TopDay",
    "TopWeek",
    "TopMonth",
    "TopYear",
    "TopAll",
    "MostComments",
    "NewComments",
    "TopHour",
    "TopSixHour",
    "TopTwelveHour",
    "TopThreeMonths",
    "TopSixMonths",
    "TopNineMonths",
)
COMMENT_SORT_TYPES = ("Hot", "Top", "New", "Old")

# Legacy endpoints that share a prefix with a parameterised route and are
# forwarded untouched
LEGACY_LITERAL_ROUTES = (
    "/user/mention",
    "/user/replies",
    "/user/unread_count",
    "/user/report_count",
    "/user/get_captcha",
    "/user/banned",
)

# Fields added by the new API that legacy deserialisers reject
NEW_ONLY_CREATOR_FLAGS = ("creator_banned_from_community", "creator_is_moderator", "creator_is_admin")


def _timestamps(prefix: str, *fields: str) -> List[FieldRule]:
    return [Coerce(f"{prefix}.{name}", f"{prefix}.{name}", TIMESTAMP) for name in fields]


def legacy_auth_rules() -> Tuple[FieldRule, ...]:
    """Lift the legacy ``auth`` parameter into the ``Authorization`` header."""
    return (
        Move("query.auth", "headers.authorization", BEARER, overwrite=False),
        Move("body.auth", "headers.authorization", BEARER, overwrite=False),
    )


def post_view_rules(view: str) -> List[FieldRule]:
    rules: List[FieldRule] = [Rename(f"{view}.creator_name", f"{view}.creator_display_name")]
    rules += _timestamps(f"{view}.post", "published", "updated")
    rules += _timestamps(f"{view}.creator", "published", "updated")
    rules += _timestamps(f"{view}.community", "published", "updated")
    rules += _timestamps(f"{view}.counts", "published", "newest_comment_time")
    rules.append(EnumRemap(f"{view}.subscribed", SUBSCRIBED_TYPES, fallback="NotSubscribed"))
    rules.append(Default(f"{view}.creator_blocked", False))
    rules.append(Drop(f"{view}.image_details"))
    rules += [Drop(f"{view}.{flag}") for flag in NEW_ONLY_CREATOR_FLAGS]
    return rules


def comment_view_rules(view: str) -> List[FieldRule]:
    rules: List[FieldRule] = [Rename(f"{view}.creator_name", f"{view}.creator_display_name")]
    rules += _timestamps(f"{view}.comment", "published", "updated")
    rules += _timestamps(f"{view}.creator", "published", "updated")
    rules += _timestamps(f"{view}.post", "published", "updated")
    rules += _timestamps(f"{view}.counts", "published")
    rules.append(EnumRemap(f"{view}.subscribed", SUBSCRIBED_TYPES, fallback="NotSubscribed"))
    rules.append(Default(f"{view}.creator_blocked", False))
    rules += [Drop(f"{view}.{flag}") for flag in NEW_ONLY_CREATOR_FLAGS]
    return rules


def community_view_rules(view: str) -> List[FieldRule]:
    rules: List[FieldRule] = _timestamps(f"{view}.community", "published", "updated")
    rules += _timestamps(f"{view}.counts", "published")
    rules.append(EnumRemap(f"{view}.subscribed", SUBSCRIBED_TYPES, fallback="NotSubscribed"))
    rules.append(Default(f"{view}.blocked", False))
    rules.append(Drop(f"{view}.community.visibility"))
    rules.append(Drop(f"{view}.banned_from_community"))
    return rules


def person_view_rules(view: str) -> List[FieldRule]:
    rules: List[FieldRule] = [Move(f"{view}.person.admin", f"{view}.is_admin")]
    rules += _timestamps(f"{view}.person", "published", "updated")
    return rules


def build_mapping_table(lift_legacy_auth: bool = True) -> MappingTable:
    auth = legacy_auth_rules() if lift_legacy_auth else ()

    def op(operation_id: str, method: str, old: str, new: str, **kwargs) -> LogicalOperation:
        request_rules = auth + tuple(kwargs.pop("request_rules", ()))
        return LogicalOperation(operation_id, method, old, new, request_rules=request_rules, **kwargs)

    operations = (
        op(
            "GetSite",
            "GET",
            "/site",
            "/site",
            response_rules=(
                *_timestamps("site_view.site", "published", "updated"),
                *_timestamps("site_view.local_site", "published", "updated"),
                EnumRemap(
                    "site_view.local_site.registration_mode",
                    REGISTRATION_MODES,
                    fallback="Closed",
                ),
                *_timestamps("taglines[]", "published", "updated"),
                *person_view_rules("admins[]"),
                Drop("site_view.local_site.federation_signed_fetch"),
            ),
            description="Site information, admins and taglines",
        ),
        op(
            "ListPosts",
            "GET",
            "/post/list",
            "/post/list",
            request_rules=(
                EnumRemap("query.sort", SORT_TYPES, fallback="Active"),
                EnumRemap("query.type_", LISTING_TYPES, fallback="All"),
            ),
            response_rules=tuple(post_view_rules("posts[]")),
            pagination=PaginationDescriptor(PaginationStyle.CURSOR, items_field="posts"),
            description="Page-numbered post listing over the cursor-paginated endpoint",
        ),
        op(
            "GetPost",
            "GET",
            "/post/{id:int}",
            "/post/{id}",
            response_rules=(
                *post_view_rules("post_view"),
                *community_view_rules("community_view"),
                *post_view_rules("cross_posts[]"),
            ),
            description="Single post with its community",
        ),
        op(
            "CreatePost",
            "POST",
            "/post",
            "/post",
            request_rules=(
                Coerce("body.community_id", "body.community_id", INT, required=True),
                Coerce("body.language_id", "body.language_id", INT),
                Default("body.nsfw", False),
                Drop("body.honeypot"),
            ),
            response_rules=tuple(post_view_rules("post_view")),
        ),
        op(
            "EditPost",
            "PUT",
            "/post",
            "/post",
            request_rules=(
                Coerce("body.post_id", "body.post_id", INT, required=True),
                Coerce("body.nsfw", "body.nsfw", BOOL),
            ),
            response_rules=tuple(post_view_rules("post_view")),
        ),
        op(
            "ListComments",
            "GET",
            "/comment/list",
            "/comment/list",
            request_rules=(
                EnumRemap("query.sort", COMMENT_SORT_TYPES, fallback="Hot"),
                EnumRemap("query.type_", LISTING_TYPES, fallback="All"),
            ),
            response_rules=tuple(comment_view_rules("comments[]")),
            description="Comments still page by number upstream, page and limit pass through",
        ),
        op(
            "GetComment",
            "GET",
            "/comment/{id:int}",
            "/comment/{id}",
            response_rules=tuple(comment_view_rules("comment_view")),
        ),
        op(
            "CreateComment",
            "POST",
            "/comment",
            "/comment",
            request_rules=(
                Coerce("body.post_id", "body.post_id", INT, required=True),
                Coerce("body.parent_id", "body.parent_id", INT),
                Drop("body.form_id"),
            ),
            response_rules=(
                *comment_view_rules("comment_view"),
                Default("recipient_ids", []),
                Default("form_id", from_capture="body.form_id"),
            ),
            captures=("body.form_id",),
            description="The client form id is echoed back, the new API no longer does",
        ),
        op(
            "ListCommunities",
            "GET",
            "/community/list",
            "/community/list",
            request_rules=(
                EnumRemap("query.sort", SORT_TYPES, fallback="Active"),
                EnumRemap("query.type_", LISTING_TYPES, fallback="All"),
            ),
            response_rules=tuple(community_view_rules("communities[]")),
        ),
        op(
            "FollowCommunity",
            "POST",
            "/community/follow",
            "/community/follow",
            request_rules=(
                Coerce("body.community_id", "body.community_id", INT, required=True),
                Coerce("body.follow", "body.follow", BOOL, required=True),
            ),
            response_rules=tuple(community_view_rules("community_view")),
        ),
        op(
            "GetCommunity",
            "GET",
            "/community/{id:int}",
            "/community",
            request_rules=(Move("path.id", "query.id"),),
            response_rules=(
                *community_view_rules("community_view"),
                *_timestamps("moderators[].community", "published", "updated"),
                *_timestamps("moderators[].moderator", "published", "updated"),
            ),
        ),
        op(
            "GetCommunityByName",
            "GET",
            "/community/{name}",
            "/community",
            request_rules=(Move("path.name", "query.name"),),
            response_rules=(
                *community_view_rules("community_view"),
                *_timestamps("moderators[].community", "published", "updated"),
                *_timestamps("moderators[].moderator", "published", "updated"),
            ),
        ),
        op(
            "CreateCommunity",
            "POST",
            "/community",
            "/community",
            request_rules=(Default("body.visibility", "Public"),),
            response_rules=tuple(community_view_rules("community_view")),
        ),
        op(
            "GetPersonDetails",
            "GET",
            "/user/{username}",
            "/user",
            request_rules=(Move("path.username", "query.username"),),
            response_rules=(
                *person_view_rules("person_view"),
                *post_view_rules("posts[]"),
                *comment_view_rules("comments[]"),
                *_timestamps("moderates[].community", "published", "updated"),
            ),
        ),
    )
    return MappingTable(operations, reserved_routes=LEGACY_LITERAL_ROUTES)


DEFAULT_MAPPING_TABLE = build_mapping_table()
