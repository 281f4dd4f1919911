"""Per-page state passed explicitly to every handler of that page."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, TYPE_CHECKING

from .consts import ScrapeType
from .identity import TargetIdentity
from .observability import CrawlMetrics
from .sink import OutputSink

if TYPE_CHECKING:
    from .jobs import CrawlRequest
    from .tasks.base import ExtractionAccumulator


@dataclass
class MatchedResponse:
    """An intercepted API response bound to one page. Read once, never mutated."""
    url: str
    response: Any  # playwright Response

    async def json(self) -> Any:
        return await self.response.json()


class PageContext:
    """Everything one page's task owns: identity, accumulator, response channel.

    Nothing here is shared with other pages; the identity is published once
    and the accumulator is only touched by this page's extractor.
    """

    def __init__(
        self,
        *,
        request: "CrawlRequest",
        page: Any,
        results_type: ScrapeType,
        sink: OutputSink,
        logger: logging.Logger,
        metrics: Optional[CrawlMetrics] = None,
    ):
        self.request = request
        self.page = page
        self.results_type = results_type
        self.sink = sink
        self.logger = logger
        self.metrics = metrics

        self.responses: "asyncio.Queue[MatchedResponse]" = asyncio.Queue()
        self.accumulator: Optional["ExtractionAccumulator"] = None
        self.hook_output: Dict[str, Any] = {}
        self._identity: "asyncio.Future[TargetIdentity]" = asyncio.get_running_loop().create_future()

    @property
    def identity(self) -> Optional[TargetIdentity]:
        if self._identity.done() and not self._identity.cancelled():
            return self._identity.result()
        return None

    def publish_identity(self, identity: TargetIdentity) -> None:
        if self._identity.done():
            raise RuntimeError(f"Identity already published for {self.request.url}")
        self._identity.set_result(identity)

    async def wait_identity(self) -> TargetIdentity:
        # shield: a caller timing out must not cancel the cell for other waiters
        return await asyncio.shield(self._identity)

    def close(self) -> None:
        if not self._identity.done():
            self._identity.cancel()

    def log(self, level: int, message: str) -> None:
        prefix = f"[{self.identity.label}] " if self.identity else ""
        self.logger.log(level, f"{prefix}{message}")

    async def emit(self, record: Dict[str, Any]) -> None:
        """Hand one finished record to the sink, hook fields taking precedence."""
        if self.hook_output:
            record = {**record, **self.hook_output}
        await self.sink.push(record)
        if self.metrics:
            self.metrics.records_emitted.labels(self.results_type.value).inc()
