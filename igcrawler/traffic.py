"""Outgoing request filter wired into every page before navigation."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional, Tuple

from playwright.async_api import Error as PlaywrightError, Route

from .consts import ABORTED_RESOURCE_TYPES, ABORTED_URL_FRAGMENTS, GRAPHQL_ENDPOINT
from .observability import CrawlMetrics


class TrafficDecision(str, Enum):
    ABORT = "abort"
    API = "api"              # allowed, belongs to the API family we extract from
    PASS = "pass"            # allowed, irrelevant for extraction


def classify_request(resource_type: str, url: str) -> Tuple[TrafficDecision, Optional[str]]:
    """Decide what to do with one request. Returns the decision and, for aborts, the reason."""
    if resource_type in ABORTED_RESOURCE_TYPES:
        return TrafficDecision.ABORT, "resource_type"
    if any(fragment in url for fragment in ABORTED_URL_FRAGMENTS):
        return TrafficDecision.ABORT, "tracking"
    if url.startswith(GRAPHQL_ENDPOINT):
        return TrafficDecision.API, None
    return TrafficDecision.PASS, None


class TrafficFilter:
    """Playwright route handler applying classify_request to a page's traffic."""

    def __init__(self, metrics: Optional[CrawlMetrics] = None, logger: Optional[logging.Logger] = None):
        self.metrics = metrics
        self.logger = logger or logging.getLogger("igcrawler.traffic")

    async def attach(self, page) -> None:
        await page.route("**/*", self.handle_route)

    async def handle_route(self, route: Route) -> None:
        request = route.request
        decision, reason = classify_request(request.resource_type, request.url)
        try:
            if decision == TrafficDecision.ABORT:
                if self.metrics:
                    self.metrics.requests_aborted.labels(reason).inc()
                await route.abort()
            else:
                await route.continue_()
        except PlaywrightError as e:
            # Page already closed while the request was in flight
            self.logger.debug(f"Route for {request.url} not handled: {e}")
