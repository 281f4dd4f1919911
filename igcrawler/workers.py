"""Worker pool running crawl requests with per-request cleanup and retry accounting.

Each worker repeatedly takes a request from the frontier, opens a page for
it, lets a SessionOrchestrator drive that page and reports the outcome
back to the frontier. A request that runs out of retries produces a debug
record in the sink instead of data.
"""

from __future__ import annotations

import asyncio
import contextlib
import datetime
import logging
from typing import Any, Callable, Dict, List, Optional

from .jobs import CrawlRequest, Frontier
from .observability import CrawlMetrics
from .reliability import ErrorContext, ErrorHandler
from .runtime import BrowserPool
from .session import SessionOrchestrator
from .sink import OutputSink

SessionFactory = Callable[..., SessionOrchestrator]


class Worker:
    """Takes requests from the frontier until it is drained."""

    def __init__(
        self,
        worker_id: str,
        *,
        run_id: str,
        frontier: Frontier,
        browser_pool: BrowserPool,
        session_factory: SessionFactory,
        sink: OutputSink,
        logger: logging.Logger,
        metrics: Optional[CrawlMetrics] = None,
        idle_interval: float = 0.5,
    ):
        self.worker_id = worker_id
        self.run_id = run_id
        self.frontier = frontier
        self.browser_pool = browser_pool
        self.session_factory = session_factory
        self.sink = sink
        self.metrics = metrics
        self.idle_interval = idle_interval
        self.logger = logger.getChild(f"worker-{worker_id}")
        self.error_handler = ErrorHandler(self.logger)

        self._task: Optional[asyncio.Task] = None
        self._current_request: Optional[CrawlRequest] = None
        self._shutdown_event = asyncio.Event()
        self.handled = 0
        self.failed = 0

    async def start(self) -> None:
        self._task = asyncio.create_task(self._run_loop())
        self.logger.debug(f"Worker {self.worker_id} started")

    async def join(self) -> None:
        if self._task:
            await self._task

    async def stop(self) -> None:
        """Stop the worker; an in-flight page is closed by its context manager."""
        self._shutdown_event.set()
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self.logger.debug(f"Worker {self.worker_id} stopped")

    async def _run_loop(self) -> None:
        """Main worker loop."""
        while not self._shutdown_event.is_set():
            request = await self.frontier.fetch_next(self.worker_id)
            if request is None:
                # Another worker may still hand a request back for retry
                if await self.frontier.is_finished():
                    break
                await asyncio.sleep(self.idle_interval)
                continue

            self._current_request = request
            try:
                await self._process_request(request)
            finally:
                self._current_request = None

    async def _process_request(self, request: CrawlRequest) -> None:
        self.logger.info(f"Processing {request.url} (attempt {request.attempt}/{request.max_retries + 1})")
        session: Optional[SessionOrchestrator] = None
        tracker = self.metrics.track_page(request.label.value) if self.metrics else contextlib.nullcontext()

        try:
            with tracker:
                async with self.browser_pool.page(request.id) as page:
                    session = self.session_factory(request=request, page=page)
                    await session.run()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._handle_failure(request, e, session)
            return

        await self.frontier.mark_handled(request)
        self.handled += 1
        if self.metrics:
            self.metrics.pages_total.labels("handled").inc()
        self.logger.info(f"Finished {request.url} ({session.ctx.identity.label})")

    async def _handle_failure(
        self, request: CrawlRequest, error: Exception, session: Optional[SessionOrchestrator]
    ) -> None:
        identity = session.ctx.identity if session else None
        context = ErrorContext(
            timestamp=datetime.datetime.utcnow(),
            run_id=self.run_id,
            request_id=request.id,
            worker_id=self.worker_id,
            url=request.url,
            state=session.state.value if session else None,
            identity=identity.to_dict() if identity else {},
            attempt_number=request.attempt,
            max_attempts=request.max_retries + 1,
        )
        enhanced = self.error_handler.handle_error(error, context)

        acc = session.ctx.accumulator if session else None
        if acc is not None:
            request.emitted_ids = list(acc.seen_ids)

        requeued = await self.frontier.mark_failed(request, enhanced.message, should_retry=enhanced.retryable)
        if requeued:
            if self.metrics:
                self.metrics.pages_total.labels("retried").inc()
            return

        self.failed += 1
        if self.metrics:
            self.metrics.pages_total.labels("failed").inc()
        await self.sink.push({"#debug": request.debug_info(), "#error": request.url})

    def get_status(self) -> Dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "current_request": self._current_request.url if self._current_request else None,
            "handled": self.handled,
            "failed": self.failed,
            "error_stats": self.error_handler.get_error_stats(),
        }


class WorkerPool:
    """Fixed-size pool of workers sharing one frontier and one browser pool."""

    def __init__(
        self,
        *,
        run_id: str,
        frontier: Frontier,
        browser_pool: BrowserPool,
        session_factory: SessionFactory,
        sink: OutputSink,
        logger: logging.Logger,
        metrics: Optional[CrawlMetrics] = None,
        max_workers: int = 100,
    ):
        self.run_id = run_id
        self.frontier = frontier
        self.browser_pool = browser_pool
        self.session_factory = session_factory
        self.sink = sink
        self.logger = logger
        self.metrics = metrics
        self.max_workers = max_workers
        self._workers: List[Worker] = []

    async def start(self) -> None:
        self.logger.info(f"Starting worker pool with {self.max_workers} workers")
        for i in range(self.max_workers):
            worker = Worker(
                str(i),
                run_id=self.run_id,
                frontier=self.frontier,
                browser_pool=self.browser_pool,
                session_factory=self.session_factory,
                sink=self.sink,
                logger=self.logger,
                metrics=self.metrics,
            )
            await worker.start()
            self._workers.append(worker)

    async def join(self) -> None:
        """Wait until every worker has run out of requests."""
        await asyncio.gather(*(worker.join() for worker in self._workers))

    async def run(self) -> None:
        await self.start()
        try:
            await self.join()
        finally:
            await self.stop()

    async def stop(self) -> None:
        await asyncio.gather(*(worker.stop() for worker in self._workers), return_exceptions=True)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "workers": len(self._workers),
            "handled": sum(w.handled for w in self._workers),
            "failed": sum(w.failed for w in self._workers),
            "worker_details": [w.get_status() for w in self._workers],
        }
