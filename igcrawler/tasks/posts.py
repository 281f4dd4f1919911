"""Posts listing extractor for profiles, hashtags and locations."""

from __future__ import annotations

import re
from typing import Any, Dict, Optional

from ..consts import BASE_URL, PageType, ScrapeType
from ..context import PageContext
from ..identity import TargetIdentity
from ..reliability import ParsingError, UnsupportedPageError
from .base import Extractor, ListingPage, edge_count, listing_from_connection, scroll_to_bottom, to_iso

# page type -> (entry_data page key, graphql subject key, timeline connection key)
TIMELINES = {
    PageType.USER: ("ProfilePage", "user", "edge_owner_to_timeline_media"),
    PageType.HASHTAG: ("TagPage", "hashtag", "edge_hashtag_to_media"),
    PageType.LOCATION: ("LocationsPage", "location", "edge_location_to_media"),
}

POST_TYPES = {
    "GraphImage": "Image",
    "GraphVideo": "Video",
    "GraphSidecar": "Sidecar",
}

HASHTAG_RE = re.compile(r"#(\w+)")
MENTION_RE = re.compile(r"@([\w.]+)")


def _caption(node: Dict[str, Any]) -> str:
    edges = (node.get("edge_media_to_caption") or {}).get("edges") or []
    if edges and isinstance(edges[0], dict):
        return (edges[0].get("node") or {}).get("text") or ""
    return ""


def format_post(node: Dict[str, Any], identity: Optional[TargetIdentity] = None, index: Optional[int] = None) -> Dict[str, Any]:
    """Flatten a GraphQL media node into an output record."""
    if "shortcode" not in node:
        raise ParsingError("Media node has no shortcode")
    caption = _caption(node)
    owner = node.get("owner") or {}
    location = node.get("location") or {}
    dimensions = node.get("dimensions") or {}

    record: Dict[str, Any] = {}
    if identity is not None:
        record["#debug"] = {
            "index": index,
            **identity.to_dict(),
            "shortcode": node["shortcode"],
            "postLocationId": location.get("id"),
            "postOwnerId": owner.get("id"),
        }
    record.update({
        "type": POST_TYPES.get(node.get("__typename"), node.get("__typename")),
        "shortCode": node["shortcode"],
        "caption": caption,
        "hashtags": HASHTAG_RE.findall(caption),
        "mentions": MENTION_RE.findall(caption),
        "url": f"{BASE_URL}/p/{node['shortcode']}/",
        "commentsCount": edge_count(node, "edge_media_to_comment", "edge_media_to_parent_comment"),
        "dimensionsHeight": dimensions.get("height"),
        "dimensionsWidth": dimensions.get("width"),
        "displayUrl": node.get("display_url"),
        "id": node.get("id"),
        "alt": node.get("accessibility_caption"),
        "videoUrl": node.get("video_url"),
        "likesCount": edge_count(node, "edge_liked_by", "edge_media_preview_like"),
        "videoViewCount": node.get("video_view_count"),
        "timestamp": to_iso(node.get("taken_at_timestamp")),
        "locationName": location.get("name"),
        "locationId": location.get("id"),
        "ownerUsername": owner.get("username"),
        "ownerId": owner.get("id"),
    })
    return record


class PostsExtractor(Extractor):
    results_type = ScrapeType.POSTS
    supported_pages = frozenset(TIMELINES)

    def _timeline_keys(self, identity: TargetIdentity):
        try:
            return TIMELINES[identity.subject_type]
        except KeyError:
            raise UnsupportedPageError(f"Posts cannot be listed for a {identity.subject_type.value} page")

    def parse_initial(self, identity: TargetIdentity, entry_data: Dict[str, Any]) -> ListingPage:
        page_key, subject_key, connection_key = self._timeline_keys(identity)
        try:
            subject = entry_data[page_key][0]["graphql"][subject_key]
        except (KeyError, IndexError, TypeError) as e:
            raise ParsingError(f"{page_key} has no {subject_key} timeline") from e
        return listing_from_connection(subject.get(connection_key))

    def parse_response(self, identity: TargetIdentity, payload: Any) -> ListingPage:
        _, subject_key, connection_key = self._timeline_keys(identity)
        try:
            subject = payload["data"][subject_key]
        except (KeyError, TypeError) as e:
            raise ParsingError(f"GraphQL payload has no data.{subject_key}") from e
        if not isinstance(subject, dict):
            raise ParsingError(f"GraphQL data.{subject_key} is empty")
        return listing_from_connection(subject.get(connection_key))

    def item_id(self, node: Dict[str, Any]) -> Optional[str]:
        value = node.get("id") or node.get("shortcode")
        return str(value) if value is not None else None

    def format_item(self, identity: TargetIdentity, node: Dict[str, Any], index: int) -> Dict[str, Any]:
        return format_post(node, identity, index)

    async def load_more(self, ctx: PageContext) -> None:
        await scroll_to_bottom(ctx.page)
