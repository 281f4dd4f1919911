"""
Base utilities shared by the extractors.
"""
import json
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional, Set
from urllib.parse import parse_qs, urlsplit

from ..consts import ScrapeType
from ..context import PageContext
from ..identity import TargetIdentity
from ..reliability import ParsingError


def _log(ctx: PageContext, level: str, message: str):
    """Log a message prefixed with the page's identity."""
    ctx.log(getattr(logging, level.upper()), message)


def graphql_variables(url: str) -> Dict[str, Any]:
    """Decode the JSON ``variables`` query parameter of a GraphQL call."""
    raw = parse_qs(urlsplit(url).query).get("variables")
    if not raw:
        return {}
    try:
        variables = json.loads(raw[0])
    except ValueError:
        return {}
    return variables if isinstance(variables, dict) else {}


def to_iso(timestamp: Optional[int]) -> Optional[str]:
    if timestamp is None:
        return None
    try:
        return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).isoformat()
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def edge_count(node: Dict[str, Any], *keys: str) -> Optional[int]:
    """Count of the first ``edge_*`` connection present on the node."""
    for key in keys:
        value = node.get(key)
        if isinstance(value, dict) and "count" in value:
            return value["count"]
    return None


class ListingPage(NamedTuple):
    items: List[Dict[str, Any]]
    has_next_page: bool
    cursor: Optional[str]


def listing_from_connection(connection: Any) -> ListingPage:
    """Turn an ``{edges, page_info}`` connection into a ListingPage."""
    if not isinstance(connection, dict):
        raise ParsingError("Connection is missing from payload")
    edges = connection.get("edges")
    if not isinstance(edges, list):
        raise ParsingError("Connection has no edges list")
    page_info = connection.get("page_info") or {}
    items = [edge["node"] for edge in edges if isinstance(edge, dict) and isinstance(edge.get("node"), dict)]
    return ListingPage(
        items=items,
        has_next_page=bool(page_info.get("has_next_page", False)),
        cursor=page_info.get("end_cursor"),
    )


@dataclass
class ExtractionAccumulator:
    """Running state of one page's extraction."""
    limit: int
    count: int = 0
    seen_ids: Set[str] = field(default_factory=set)
    cursor: Optional[str] = None
    has_next_page: bool = True
    pages: int = 0
    finished: bool = False
    finish_reason: Optional[str] = None

    @property
    def limit_reached(self) -> bool:
        return self.count >= self.limit

    def claim(self, item_id: str) -> bool:
        """Reserve a slot for a new item. False for duplicates or once the limit is hit."""
        if self.finished or self.limit_reached or item_id in self.seen_ids:
            return False
        self.seen_ids.add(item_id)
        self.count += 1
        return True

    def finish(self, reason: str) -> None:
        if not self.finished:
            self.finished = True
            self.finish_reason = reason


class Extractor:
    """Paginated extractor: seeds from client state, then follows API responses."""

    results_type: ScrapeType
    supported_pages: frozenset = frozenset()

    def supports(self, identity: TargetIdentity) -> bool:
        return identity.subject_type in self.supported_pages

    def matches(self, identity: TargetIdentity, url: str) -> bool:
        """True when the API call is this subject's next listing page."""
        variables = graphql_variables(url)
        name, expected = identity.graphql_variable()
        if "first" not in variables or name not in variables:
            return False
        return expected is None or str(variables[name]) == str(expected)

    def parse_initial(self, identity: TargetIdentity, entry_data: Dict[str, Any]) -> ListingPage:
        raise NotImplementedError

    def parse_response(self, identity: TargetIdentity, payload: Any) -> ListingPage:
        raise NotImplementedError

    def item_id(self, node: Dict[str, Any]) -> Optional[str]:
        value = node.get("id")
        return str(value) if value is not None else None

    def format_item(self, identity: TargetIdentity, node: Dict[str, Any], index: int) -> Dict[str, Any]:
        raise NotImplementedError

    async def load_more(self, ctx: PageContext) -> None:
        raise NotImplementedError

    async def start(self, ctx: PageContext, entry_data: Dict[str, Any]) -> None:
        """Emit the first page embedded in the client state."""
        listing = self.parse_initial(ctx.identity, entry_data)
        await self.consume(ctx, listing)

    async def handle_response(self, ctx: PageContext, url: str, payload: Any) -> bool:
        """Process one matched response. Returns False when it belongs to another query."""
        if ctx.accumulator.finished or not self.matches(ctx.identity, url):
            return False
        listing = self.parse_response(ctx.identity, payload)
        await self.consume(ctx, listing)
        return True

    async def consume(self, ctx: PageContext, listing: ListingPage) -> None:
        acc = ctx.accumulator
        acc.pages += 1
        acc.cursor = listing.cursor
        acc.has_next_page = listing.has_next_page

        added = 0
        for node in listing.items:
            if acc.limit_reached:
                break
            item_id = self.item_id(node)
            if item_id is None or item_id in acc.seen_ids:
                continue
            # Build the record before claiming so a formatting error leaves no trace
            try:
                record = self.format_item(ctx.identity, node, acc.count)
            except ParsingError as e:
                _log(ctx, "warning", f"Skipping item {item_id}: {e.message}")
                continue
            if acc.claim(item_id):
                await ctx.emit(record)
                added += 1

        _log(ctx, "info", f"{added} items added, {acc.count} items total")

        if acc.limit_reached:
            acc.finish("limit")
            _log(ctx, "info", f"Limit of {acc.limit} reached, task finished")
        elif not listing.has_next_page:
            acc.finish("no_more_pages")
            _log(ctx, "info", "No more pages, task finished")
        else:
            await self.load_more(ctx)


async def scroll_to_bottom(page, wait_min_ms: int = 500, wait_jitter_ms: int = 700) -> None:
    """Nudge the page up, then jump to the bottom so the infinite list asks for more."""
    await page.evaluate("() => window.scrollBy(0, -300)")
    await page.evaluate("() => window.scrollTo(0, document.body.scrollHeight)")
    await page.wait_for_timeout(wait_min_ms + random.randint(0, wait_jitter_ms))
