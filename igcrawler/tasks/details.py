"""Detail extractor: one metadata record per page, straight from the client state."""

from __future__ import annotations

from typing import Any, Dict, List

from ..consts import BASE_URL, PageType, ScrapeType
from ..context import PageContext
from ..identity import TargetIdentity
from ..reliability import ParsingError
from .base import _log, edge_count, listing_from_connection
from .comments import comments_connection, format_comment
from .posts import format_post

# How many embedded posts and comments a detail record carries
LATEST_ITEMS = 12


def _graphql(entry_data: Dict[str, Any], page_key: str, subject_key: str) -> Dict[str, Any]:
    try:
        return entry_data[page_key][0]["graphql"][subject_key]
    except (KeyError, IndexError, TypeError) as e:
        raise ParsingError(f"{page_key} has no {subject_key} data") from e


def _latest_posts(subject: Dict[str, Any], connection_key: str) -> List[Dict[str, Any]]:
    connection = subject.get(connection_key)
    if not isinstance(connection, dict):
        return []
    return [format_post(node) for node in listing_from_connection(connection).items[:LATEST_ITEMS]]


def format_profile(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": user.get("id"),
        "username": user.get("username"),
        "fullName": user.get("full_name"),
        "biography": user.get("biography"),
        "externalUrl": user.get("external_url"),
        "url": f"{BASE_URL}/{user.get('username')}/",
        "followersCount": edge_count(user, "edge_followed_by"),
        "followsCount": edge_count(user, "edge_follow"),
        "postsCount": edge_count(user, "edge_owner_to_timeline_media"),
        "isBusinessAccount": user.get("is_business_account"),
        "businessCategoryName": user.get("business_category_name"),
        "verified": user.get("is_verified"),
        "private": user.get("is_private"),
        "profilePicUrl": user.get("profile_pic_url"),
        "profilePicUrlHD": user.get("profile_pic_url_hd"),
        "latestPosts": _latest_posts(user, "edge_owner_to_timeline_media"),
    }


def format_hashtag(hashtag: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": hashtag.get("id"),
        "name": hashtag.get("name"),
        "url": f"{BASE_URL}/explore/tags/{hashtag.get('name')}/",
        "profilePicUrl": hashtag.get("profile_pic_url"),
        "postsCount": edge_count(hashtag, "edge_hashtag_to_media"),
        "topPosts": _latest_posts(hashtag, "edge_hashtag_to_top_posts"),
        "latestPosts": _latest_posts(hashtag, "edge_hashtag_to_media"),
    }


def format_place(location: Dict[str, Any]) -> Dict[str, Any]:
    address = location.get("address_json")
    return {
        "id": location.get("id"),
        "name": location.get("name"),
        "slug": location.get("slug"),
        "url": f"{BASE_URL}/explore/locations/{location.get('id')}/{location.get('slug') or ''}",
        "lat": location.get("lat"),
        "lng": location.get("lng"),
        "address": address,
        "phone": location.get("phone"),
        "website": location.get("website"),
        "postsCount": edge_count(location, "edge_location_to_media"),
        "topPosts": _latest_posts(location, "edge_location_to_top_posts"),
        "latestPosts": _latest_posts(location, "edge_location_to_media"),
    }


def format_single_post(media: Dict[str, Any]) -> Dict[str, Any]:
    record = format_post(media)
    comments = comments_connection(media)
    latest: List[Dict[str, Any]] = []
    if isinstance(comments, dict):
        latest = [format_comment(node) for node in listing_from_connection(comments).items[:LATEST_ITEMS]]
    record.update({
        "commentsDisabled": bool(media.get("comments_disabled", False)),
        "isVideo": bool(media.get("is_video", False)),
        "videoDuration": media.get("video_duration"),
        "latestComments": latest,
    })
    return record


class DetailsExtractor:
    """Emits exactly one record per page. No network pagination is involved."""

    results_type = ScrapeType.DETAILS
    supported_pages = frozenset(PageType)

    def supports(self, identity: TargetIdentity) -> bool:
        return identity.subject_type in self.supported_pages

    def extract(self, identity: TargetIdentity, entry_data: Dict[str, Any]) -> Dict[str, Any]:
        if identity.subject_type == PageType.USER:
            record = format_profile(_graphql(entry_data, "ProfilePage", "user"))
        elif identity.subject_type == PageType.HASHTAG:
            record = format_hashtag(_graphql(entry_data, "TagPage", "hashtag"))
        elif identity.subject_type == PageType.LOCATION:
            record = format_place(_graphql(entry_data, "LocationsPage", "location"))
        else:
            record = format_single_post(_graphql(entry_data, "PostPage", "shortcode_media"))
        return {"#debug": identity.to_dict(), **record}

    async def run(self, ctx: PageContext, entry_data: Dict[str, Any]) -> None:
        record = self.extract(ctx.identity, entry_data)
        await ctx.emit(record)
        _log(ctx, "info", "Details record added, task finished")
