"""Session orchestrator: drives one page from navigation to completion.

States: OPENED -> NAVIGATING -> AWAITING_IDENTITY -> DISPATCHING -> DRAINING
-> DONE, with FAILED reachable from every non-terminal state. Detail pages
skip DRAINING.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from .config import TimeoutConfig
from .consts import RequestLabel, ScrapeType
from .context import PageContext
from .correlator import ResponseCorrelator
from .hooks import PageHook
from .identity import CLIENT_STATE_SCRIPT, TargetIdentity, resolve_identity
from .jobs import CrawlRequest
from .observability import CrawlMetrics
from .reliability import ExtractionTimeout, NavigationTimeout, ParsingError, UnsupportedPageError
from .sink import OutputSink
from .tasks import DetailsExtractor, ExtractionAccumulator, create_extractor
from .traffic import TrafficFilter


class SessionState(str, Enum):
    OPENED = "opened"
    NAVIGATING = "navigating"
    AWAITING_IDENTITY = "awaiting_identity"
    DISPATCHING = "dispatching"
    DRAINING = "draining"
    DONE = "done"
    FAILED = "failed"


class SessionOrchestrator:
    """Owns one page for the duration of one task attempt."""

    def __init__(
        self,
        *,
        request: CrawlRequest,
        page: Any,
        results_type: ScrapeType,
        sink: OutputSink,
        timeouts: Optional[TimeoutConfig] = None,
        hook: Optional[PageHook] = None,
        metrics: Optional[CrawlMetrics] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.request = request
        self.page = page
        self.results_type = ScrapeType(results_type)
        self.timeouts = timeouts or TimeoutConfig()
        self.hook = hook
        self.metrics = metrics
        self.logger = logger or logging.getLogger("igcrawler.session")
        self.state = SessionState.OPENED

        self.ctx = PageContext(
            request=request,
            page=page,
            results_type=self.results_type,
            sink=sink,
            logger=self.logger,
            metrics=metrics,
        )
        if request.label == RequestLabel.DETAIL:
            self.extractor = DetailsExtractor()
            self.correlator = None
        else:
            self.extractor = create_extractor(self.results_type)
            self.correlator = ResponseCorrelator(
                self.ctx,
                self.extractor,
                stall_timeout=self.timeouts.stall_timeout_seconds,
                max_stalls=self.timeouts.max_stalls,
                metrics=metrics,
                logger=logging.getLogger("igcrawler.correlator"),
            )

    def _transition(self, state: SessionState) -> None:
        self.logger.debug(f"{self.request.url}: {self.state.value} -> {state.value}")
        self.state = state

    async def run(self) -> None:
        """Handle the page within the overall page deadline."""
        try:
            await asyncio.wait_for(self._run(), timeout=self.timeouts.page_timeout_seconds)
        except asyncio.TimeoutError as e:
            self._transition(SessionState.FAILED)
            raise ExtractionTimeout(
                f"Page handling exceeded {self.timeouts.page_timeout_seconds}s for {self.request.url}", cause=e
            ) from e
        except BaseException:
            self._transition(SessionState.FAILED)
            raise
        finally:
            self.ctx.close()

    async def _run(self) -> None:
        # Wiring happens before the first request leaves the page
        await TrafficFilter(self.metrics, logging.getLogger("igcrawler.traffic")).attach(self.page)
        if self.correlator is not None:
            self.correlator.attach(self.page)

        self._transition(SessionState.NAVIGATING)
        await self._navigate()

        self._transition(SessionState.AWAITING_IDENTITY)
        entry_data = await self._wait_for_client_state()
        identity = resolve_identity(entry_data, self.request.limit)
        if not self.extractor.supports(identity):
            raise UnsupportedPageError(
                f"Results type '{self.results_type.value}' is not available for a "
                f"{identity.subject_type.value} page ({self.request.url})"
            )
        self.ctx.publish_identity(identity)
        self.ctx.log(logging.INFO, f"Page opened: {self.request.url}")

        if self.hook is not None:
            self.ctx.hook_output = await self.hook.run(self.page, identity)

        self._transition(SessionState.DISPATCHING)
        if isinstance(self.extractor, DetailsExtractor):
            await self.extractor.run(self.ctx, entry_data)
            self._transition(SessionState.DONE)
            return

        await self._dispatch(identity, entry_data)

        self._transition(SessionState.DRAINING)
        await self.correlator.drain()
        self._transition(SessionState.DONE)

    async def _navigate(self) -> None:
        timeout_ms = self.timeouts.navigation_timeout_seconds * 1000
        try:
            await self.page.goto(self.request.url, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(
                f"Navigation to {self.request.url} timed out after {self.timeouts.navigation_timeout_seconds}s",
                cause=e,
            ) from e

    async def _wait_for_client_state(self) -> Dict[str, Any]:
        """Poll the page until the site bundle has published its client state."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeouts.identity_timeout_seconds
        while True:
            try:
                entry_data = await self.page.evaluate(CLIENT_STATE_SCRIPT)
            except PlaywrightError as e:
                # Evaluation races with in-flight client-side navigations
                self.logger.debug(f"Client state not readable yet on {self.request.url}: {e}")
                entry_data = None
            if entry_data:
                return entry_data
            if loop.time() >= deadline:
                raise ExtractionTimeout(
                    f"Client state did not appear within {self.timeouts.identity_timeout_seconds}s on {self.request.url}"
                )
            await asyncio.sleep(self.timeouts.identity_poll_interval_seconds)

    async def _dispatch(self, identity: TargetIdentity, entry_data: Dict[str, Any]) -> None:
        emitted = self.request.emitted_ids
        self.ctx.accumulator = ExtractionAccumulator(
            limit=identity.result_limit,
            count=len(emitted),
            seen_ids=set(emitted),
        )
        if self.ctx.accumulator.limit_reached:
            self.ctx.accumulator.finish("limit")
            self.ctx.log(logging.INFO, f"{len(emitted)} of {identity.result_limit} items already emitted, nothing to extract")
            return
        if emitted:
            self.ctx.log(logging.INFO, f"Resuming after {len(emitted)} items emitted by earlier attempts")
        try:
            await self.extractor.start(self.ctx, entry_data)
        except ParsingError as e:
            # Keep going from the network pages
            self.ctx.log(logging.WARNING, f"Initial page could not be parsed: {e}")
            await self.extractor.load_more(self.ctx)
