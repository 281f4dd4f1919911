import json
import os
import tempfile
from urllib.parse import quote

import pytest

# Set test environment variables before any igcrawler config is built
_TMP = tempfile.mkdtemp(prefix="igcrawler-tests-")
os.environ.update({
    "DEPLOYMENT_ENVIRONMENT": "testing",
    "LOG_LEVEL": "DEBUG",
    "LOG_ROOT": os.path.join(_TMP, "logs"),
    "DATA_ROOT": os.path.join(_TMP, "datasets"),
    "FRONTIER_BACKEND": "memory",
    "API_KEY_REQUIRED": "false",
})

from igcrawler.consts import GRAPHQL_ENDPOINT  # noqa: E402
from igcrawler.hooks import _RUNNER  # noqa: E402
from igcrawler.identity import CLIENT_STATE_SCRIPT  # noqa: E402


# ----------------------------------------------------------------------------
# Payload builders
# ----------------------------------------------------------------------------

def media_node(i, prefix="p"):
    return {
        "__typename": "GraphImage",
        "id": f"{prefix}{i}",
        "shortcode": f"SC{prefix}{i}",
        "display_url": f"https://cdn.example/{prefix}{i}.jpg",
        "edge_media_to_caption": {"edges": [{"node": {"text": f"post {i} #tag{i} @friend{i}"}}]},
        "edge_media_to_comment": {"count": i},
        "edge_liked_by": {"count": 10 * i},
        "taken_at_timestamp": 1600000000 + i,
        "owner": {"id": "42", "username": "nasa"},
        "dimensions": {"height": 1080, "width": 1080},
    }


def comment_node(i, prefix="c"):
    return {
        "id": f"{prefix}{i}",
        "text": f"comment {i}",
        "created_at": 1600000000 + i,
        "owner": {"id": f"u{i}", "username": f"user{i}", "is_verified": False, "profile_pic_url": "x"},
        "edge_liked_by": {"count": i},
    }


def connection(nodes, has_next=True, cursor="CURSOR", count=None):
    return {
        "count": count if count is not None else len(nodes),
        "page_info": {"has_next_page": has_next, "end_cursor": cursor if has_next else None},
        "edges": [{"node": n} for n in nodes],
    }


def profile_entry_data(nodes=(), has_next=True, user_id="42", username="nasa"):
    return {
        "ProfilePage": [{
            "graphql": {
                "user": {
                    "id": user_id,
                    "username": username,
                    "full_name": "NASA",
                    "biography": "Exploring the universe",
                    "edge_followed_by": {"count": 1000},
                    "edge_follow": {"count": 10},
                    "is_verified": True,
                    "edge_owner_to_timeline_media": connection(list(nodes), has_next),
                }
            }
        }]
    }


def hashtag_entry_data(nodes=(), has_next=True, name="sunset"):
    return {
        "TagPage": [{
            "graphql": {
                "hashtag": {
                    "id": "17841",
                    "name": name,
                    "edge_hashtag_to_media": connection(list(nodes), has_next),
                    "edge_hashtag_to_top_posts": connection(list(nodes)[:3], False),
                }
            }
        }]
    }


def location_entry_data(nodes=(), has_next=True, location_id="213385402"):
    return {
        "LocationsPage": [{
            "graphql": {
                "location": {
                    "id": location_id,
                    "name": "Prague",
                    "slug": "prague",
                    "lat": 50.08,
                    "lng": 14.42,
                    "edge_location_to_media": connection(list(nodes), has_next),
                }
            }
        }]
    }


def post_entry_data(comments=(), has_next=True, shortcode="SCpost", comments_disabled=False):
    media = media_node(1)
    media.update({
        "shortcode": shortcode,
        "comments_disabled": comments_disabled,
        "is_video": False,
        "edge_media_to_parent_comment": connection(list(comments), has_next),
    })
    return {"PostPage": [{"graphql": {"shortcode_media": media}}]}


def graphql_url(**variables):
    return f"{GRAPHQL_ENDPOINT}?query_hash=abc123&variables={quote(json.dumps(variables))}"


def profile_page_payload(nodes, has_next=True, cursor="NEXT"):
    return {"data": {"user": {"edge_owner_to_timeline_media": connection(nodes, has_next, cursor)}}}


def comments_page_payload(nodes, has_next=True, cursor="NEXT"):
    return {"data": {"shortcode_media": {"edge_media_to_parent_comment": connection(nodes, has_next, cursor)}}}


# ----------------------------------------------------------------------------
# Playwright fakes
# ----------------------------------------------------------------------------

class FakeRequest:
    def __init__(self, url, resource_type="xhr"):
        self.url = url
        self.resource_type = resource_type


class FakeRoute:
    def __init__(self, url, resource_type="xhr"):
        self.request = FakeRequest(url, resource_type)
        self.aborted = False
        self.continued = False

    async def abort(self):
        self.aborted = True

    async def continue_(self):
        self.continued = True


class FakeResponse:
    def __init__(self, url, payload=None, error=None):
        self.url = url
        self._payload = payload
        self._error = error

    async def json(self):
        if self._error is not None:
            raise self._error
        return self._payload


class FakeLocator:
    def __init__(self, page, visible):
        self.page = page
        self.visible = visible
        self.first = self

    async def count(self):
        return 1 if self.visible else 0

    async def is_visible(self):
        return self.visible

    async def click(self, timeout=None):
        self.page.clicks += 1
        self.page.emit_next()


class FakePage:
    """Scripted page: client state appears after ``state_after`` polls and every
    scroll or "load more" click releases the next scripted API response."""

    def __init__(
        self,
        entry_data=None,
        responses=(),
        state_after=0,
        hook_result=None,
        goto_error=None,
        early_responses=(),
        load_more_button=False,
    ):
        self.entry_data = entry_data
        self.pending = list(responses)
        self.early_responses = list(early_responses)
        self.state_after = state_after
        self.hook_result = hook_result
        self.goto_error = goto_error
        self.load_more_button = load_more_button

        self.route_handler = None
        self.response_handlers = []
        self.visited = []
        self.state_polls = 0
        self.scrolls = 0
        self.clicks = 0
        self.hook_calls = []
        self.wired_before_goto = None

    async def route(self, pattern, handler):
        self.route_handler = handler

    def on(self, event, handler):
        if event == "response":
            self.response_handlers.append(handler)

    def emit(self, response):
        for handler in self.response_handlers:
            handler(response)

    def emit_next(self):
        if self.pending:
            self.emit(self.pending.pop(0))

    async def goto(self, url, timeout=None):
        self.visited.append((url, timeout))
        self.wired_before_goto = self.route_handler is not None and bool(self.response_handlers)
        if self.goto_error is not None:
            raise self.goto_error
        for response in self.early_responses:
            self.emit(response)

    async def evaluate(self, script, arg=None):
        if script == CLIENT_STATE_SCRIPT:
            self.state_polls += 1
            if self.state_polls > self.state_after:
                return self.entry_data
            return None
        if script == _RUNNER:
            self.hook_calls.append(arg)
            return self.hook_result
        if "scrollTo" in script:
            self.scrolls += 1
            self.emit_next()
        return None

    async def wait_for_timeout(self, ms):
        return None

    def locator(self, selector):
        return FakeLocator(self, self.load_more_button)


@pytest.fixture
def fast_timeouts():
    from igcrawler.config import TimeoutConfig
    return TimeoutConfig(
        navigation_timeout_seconds=5,
        identity_timeout_seconds=0.3,
        identity_poll_interval_seconds=0.01,
        page_timeout_seconds=10,
        stall_timeout_seconds=0.05,
        max_stalls=2,
    )


@pytest.fixture
def memory_sink():
    from igcrawler.sink import MemorySink
    return MemorySink()
