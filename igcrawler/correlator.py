"""Response correlation for one page.

Every GraphQL response a page receives is queued on that page's own
channel the moment it arrives. Nothing is handed to the extractor until the
page's identity has been published; from then on responses are processed
strictly in arrival order, one at a time.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from .consts import GRAPHQL_ENDPOINT
from .context import MatchedResponse, PageContext
from .observability import CrawlMetrics
from .tasks.base import Extractor


class ResponseCorrelator:
    """Captures a page's API responses and feeds them to its extractor."""

    def __init__(
        self,
        ctx: PageContext,
        extractor: Extractor,
        *,
        stall_timeout: float = 20,
        max_stalls: int = 3,
        metrics: Optional[CrawlMetrics] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.ctx = ctx
        self.extractor = extractor
        self.stall_timeout = stall_timeout
        self.max_stalls = max_stalls
        self.metrics = metrics
        self.logger = logger or logging.getLogger("igcrawler.correlator")
        self.processed = 0
        self.failed = 0

    def attach(self, page) -> None:
        page.on("response", self.on_response)

    def on_response(self, response: Any) -> None:
        url = response.url
        if not url.startswith(GRAPHQL_ENDPOINT):
            return
        self.ctx.responses.put_nowait(MatchedResponse(url=url, response=response))
        if self.metrics:
            self.metrics.responses_matched.inc()

    async def process(self, matched: MatchedResponse) -> bool:
        """Run one response through the extractor. Errors stay inside this response."""
        try:
            payload = await matched.json()
            handled = await self.extractor.handle_response(self.ctx, matched.url, payload)
        except Exception as e:
            self.failed += 1
            if self.metrics:
                self.metrics.responses_failed.inc()
            self.ctx.log(logging.WARNING, f"Response from {matched.url} could not be processed: {e}")
            return False
        if handled:
            self.processed += 1
        return handled

    async def drain(self) -> None:
        """Consume responses until the extractor finishes or the listing stalls out."""
        await self.ctx.wait_identity()
        acc = self.ctx.accumulator
        loop = asyncio.get_running_loop()
        stalls = 0
        deadline = loop.time() + self.stall_timeout

        while not acc.finished:
            remaining = deadline - loop.time()
            try:
                if remaining <= 0:
                    raise asyncio.TimeoutError
                matched = await asyncio.wait_for(self.ctx.responses.get(), timeout=remaining)
            except asyncio.TimeoutError:
                stalls += 1
                if stalls >= self.max_stalls:
                    acc.finish("stalled")
                    self.ctx.log(logging.INFO, f"No new items after {stalls} attempts, task finished")
                    break
                self.ctx.log(logging.DEBUG, f"No response within {self.stall_timeout}s, retrying interaction")
                await self.extractor.load_more(self.ctx)
                deadline = loop.time() + self.stall_timeout
                continue

            if await self.process(matched):
                stalls = 0
                deadline = loop.time() + self.stall_timeout
