"""Site constants shared by the crawler components."""

from __future__ import annotations

from enum import Enum

BASE_URL = "https://www.instagram.com"

# Paginated listing calls issued by the client bundle all go through this prefix
GRAPHQL_ENDPOINT = f"{BASE_URL}/graphql/query/"

SEARCH_ENDPOINT = f"{BASE_URL}/web/search/topsearch/"

ABORTED_RESOURCE_TYPES = frozenset({"image", "media", "font", "stylesheet"})

# Telemetry, logging and tile-rendering calls that are never needed for extraction
ABORTED_URL_FRAGMENTS = (
    "map_tile.php",
    "logging_client_events",
    "/ajax/bz",
    "/logging/falco",
    "/api/v1/web/fxcal/",
)


class ScrapeType(str, Enum):
    """Kind of records a run produces."""
    POSTS = "posts"
    COMMENTS = "comments"
    DETAILS = "details"


class PageType(str, Enum):
    """Subject a page is about."""
    USER = "user"
    HASHTAG = "hashtag"
    LOCATION = "location"
    POST = "post"


class SearchType(str, Enum):
    USER = "user"
    HASHTAG = "hashtag"
    PLACE = "place"


class RequestLabel(str, Enum):
    LISTING = "listing"
    DETAIL = "detail"
