"""Comments listing extractor for single post pages."""

from __future__ import annotations

from typing import Any, Dict

from playwright.async_api import Error as PlaywrightError

from ..consts import PageType, ScrapeType
from ..context import PageContext
from ..identity import TargetIdentity
from ..reliability import ParsingError
from .base import Extractor, ListingPage, _log, edge_count, listing_from_connection, scroll_to_bottom, to_iso

LOAD_MORE_SELECTORS = [
    "[aria-label='Load more comments']",
    "button:has-text('Load more comments')",
    "button:has-text('View more comments')",
]


def comments_connection(media: Dict[str, Any]) -> Any:
    """Top-level comment connection of a shortcode_media node."""
    return media.get("edge_media_to_parent_comment") or media.get("edge_media_to_comment")


def format_comment(node: Dict[str, Any], identity: TargetIdentity = None, index: int = None) -> Dict[str, Any]:
    if "id" not in node:
        raise ParsingError("Comment node has no id")
    owner = node.get("owner") or {}
    record: Dict[str, Any] = {}
    if identity is not None:
        record["#debug"] = {"index": index, **identity.to_dict()}
    record.update({
        "id": str(node["id"]),
        "postId": identity.canonical_id if identity is not None else None,
        "text": node.get("text"),
        "timestamp": to_iso(node.get("created_at")),
        "ownerId": owner.get("id"),
        "ownerIsVerified": owner.get("is_verified"),
        "ownerUsername": owner.get("username"),
        "ownerProfilePicUrl": owner.get("profile_pic_url"),
        "likesCount": edge_count(node, "edge_liked_by"),
        "repliesCount": edge_count(node, "edge_threaded_comments"),
    })
    return record


class CommentsExtractor(Extractor):
    results_type = ScrapeType.COMMENTS
    supported_pages = frozenset({PageType.POST})

    async def start(self, ctx: PageContext, entry_data: Dict[str, Any]) -> None:
        if ctx.identity.attributes.get("postCommentsDisabled"):
            _log(ctx, "info", "Comments are disabled for this post, task finished")
            ctx.accumulator.finish("comments_disabled")
            return
        await super().start(ctx, entry_data)

    def parse_initial(self, identity: TargetIdentity, entry_data: Dict[str, Any]) -> ListingPage:
        try:
            media = entry_data["PostPage"][0]["graphql"]["shortcode_media"]
        except (KeyError, IndexError, TypeError) as e:
            raise ParsingError("PostPage has no shortcode_media") from e
        return listing_from_connection(comments_connection(media))

    def parse_response(self, identity: TargetIdentity, payload: Any) -> ListingPage:
        try:
            media = payload["data"]["shortcode_media"]
        except (KeyError, TypeError) as e:
            raise ParsingError("GraphQL payload has no data.shortcode_media") from e
        if not isinstance(media, dict):
            raise ParsingError("GraphQL data.shortcode_media is empty")
        return listing_from_connection(comments_connection(media))

    def format_item(self, identity: TargetIdentity, node: Dict[str, Any], index: int) -> Dict[str, Any]:
        return format_comment(node, identity, index)

    async def load_more(self, ctx: PageContext) -> None:
        """Click the first visible "load more" control; scroll when there is none."""
        page = ctx.page
        for selector in LOAD_MORE_SELECTORS:
            button = page.locator(selector).first
            try:
                if await button.count() and await button.is_visible():
                    await button.click(timeout=5000)
                    return
            except PlaywrightError as e:
                _log(ctx, "debug", f"Load more via {selector} failed: {e}")
        await scroll_to_bottom(ctx.page)
