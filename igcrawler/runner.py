"""One crawl run: resolve seed URLs, fill the frontier, run the worker pool."""

from __future__ import annotations

import datetime
import functools
import logging
import pathlib
import re
import uuid
from typing import Any, Dict, List, Optional

from .config import CrawlInput, ProductionConfig, get_config
from .consts import RequestLabel, ScrapeType
from .hooks import PageHook
from .jobs import CrawlRequest, Frontier
from .observability import CrawlMetrics
from .reliability import NoUrlsError
from .runtime import BrowserPool, BrowserRuntime
from .search import search_urls
from .session import SessionOrchestrator
from .sink import JsonLinesSink, OutputSink
from .workers import WorkerPool

POST_URL_RE = re.compile(r"/p/[^/?#]+/?")


def request_label(url: str, results_type: ScrapeType) -> RequestLabel:
    """Detail pages yield one record; everything else is a paginated listing."""
    if results_type == ScrapeType.DETAILS:
        return RequestLabel.DETAIL
    if results_type == ScrapeType.POSTS and POST_URL_RE.search(url):
        return RequestLabel.DETAIL
    return RequestLabel.LISTING


async def resolve_start_urls(crawl_input: CrawlInput, logger: logging.Logger) -> List[str]:
    urls = list(crawl_input.direct_urls)
    if crawl_input.search:
        urls.extend(await search_urls(
            crawl_input.search,
            crawl_input.search_type,
            crawl_input.search_limit,
            proxy=crawl_input.proxy,
            logger=logger.getChild("search"),
        ))
    return urls


def build_requests(urls: List[str], crawl_input: CrawlInput, max_retries: int) -> List[CrawlRequest]:
    return [
        CrawlRequest(
            url=url,
            label=request_label(url, crawl_input.results_type),
            limit=crawl_input.results_limit,
            max_retries=max_retries,
        )
        for url in urls
    ]


async def run_crawl(
    crawl_input: CrawlInput,
    *,
    run_id: Optional[str] = None,
    config: Optional[ProductionConfig] = None,
    sink: Optional[OutputSink] = None,
    metrics: Optional[CrawlMetrics] = None,
    browser_pool: Optional[BrowserPool] = None,
    headless: Optional[bool] = None,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, Any]:
    """Run a crawl to completion and return its summary.

    Raises ConfigurationError (NoUrlsError when nothing is left to crawl)
    before any page is opened when the input cannot be used.
    """
    config = config or get_config()
    run_id = run_id or uuid.uuid4().hex
    logger = logger or logging.getLogger("igcrawler")
    metrics = metrics or CrawlMetrics()
    started_at = datetime.datetime.utcnow()

    urls = await resolve_start_urls(crawl_input, logger)
    if not urls:
        raise NoUrlsError("No URLs to process")

    hook = PageHook(crawl_input.extend_output_function) if crawl_input.extend_output_function else None
    if sink is None:
        sink = JsonLinesSink(pathlib.Path(config.system.data_root) / run_id)

    frontier = Frontier(
        run_id,
        backend=config.frontier_backend,
        redis_url=config.get_redis_url(),
        logger=logger.getChild("frontier"),
    )
    await frontier.connect()

    runtime: Optional[BrowserRuntime] = None
    owned_pool: Optional[BrowserPool] = None
    try:
        added = 0
        for request in build_requests(urls, crawl_input, config.scaling.max_request_retries):
            if await frontier.add_request(request):
                added += 1
        logger.info(f"Run {run_id}: {added} URLs queued ({crawl_input.results_type.value}, limit {crawl_input.results_limit})")

        if browser_pool is None:
            runtime = BrowserRuntime(
                headless=config.browser.headless if headless is None else headless,
                proxy=crawl_input.proxy,
                logger=logger.getChild("browser"),
            )
            await runtime.start()
            owned_pool = browser_pool = BrowserPool(
                runtime,
                max_open_pages=config.scaling.max_open_pages_per_browser,
                retire_after_pages=config.scaling.retire_browser_after_pages,
                browser_config=config.browser,
                metrics=metrics,
                logger=logger.getChild("browser"),
            )

        session_factory = functools.partial(
            SessionOrchestrator,
            results_type=crawl_input.results_type,
            sink=sink,
            timeouts=config.timeouts,
            hook=hook,
            metrics=metrics,
            logger=logger.getChild("session"),
        )
        max_workers = min(crawl_input.max_concurrency or config.scaling.max_concurrency, added)
        pool = WorkerPool(
            run_id=run_id,
            frontier=frontier,
            browser_pool=browser_pool,
            session_factory=session_factory,
            sink=sink,
            logger=logger,
            metrics=metrics,
            max_workers=max(max_workers, 1),
        )
        await pool.run()

        summary = {
            "runId": run_id,
            "resultsType": crawl_input.results_type.value,
            "startedAt": started_at.isoformat(),
            "finishedAt": datetime.datetime.utcnow().isoformat(),
            "requests": await frontier.stats(),
        }
        logger.info(f"Run {run_id} finished: {summary['requests']}")
        return summary
    finally:
        if owned_pool is not None:
            await owned_pool.close()
        if runtime is not None:
            await runtime.stop()
        await frontier.disconnect()
