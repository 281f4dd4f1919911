import logging
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch

import pytest
from playwright.async_api import Error as PlaywrightError

from igcrawler.config import CrawlInput, FrontierBackend
from igcrawler.consts import RequestLabel, ScrapeType
from igcrawler.jobs import CrawlRequest, Frontier, RequestStatus
from igcrawler.observability import CrawlMetrics
from igcrawler.reliability import NavigationTimeout, UnsupportedPageError
from igcrawler.runner import build_requests, request_label, run_crawl
from igcrawler.runtime import BrowserRuntime
from igcrawler.session import SessionOrchestrator
from igcrawler.sink import MemorySink
from igcrawler.workers import WorkerPool

from conftest import FakePage, FakeResponse, graphql_url, media_node, profile_entry_data, profile_page_payload


class TestFrontier:

    @pytest.mark.asyncio
    async def test_deduplicates_by_url(self):
        frontier = Frontier("run-1")
        await frontier.connect()
        assert await frontier.add_request(CrawlRequest(url="https://www.instagram.com/nasa/"))
        assert not await frontier.add_request(CrawlRequest(url="https://www.instagram.com/nasa/"))
        assert (await frontier.stats())["pending"] == 1

    @pytest.mark.asyncio
    async def test_fifo_and_finish(self):
        frontier = Frontier("run-1")
        for name in ("a", "b"):
            await frontier.add_request(CrawlRequest(url=f"https://www.instagram.com/{name}/"))

        first = await frontier.fetch_next("w")
        assert first.url.endswith("/a/")
        assert first.status == RequestStatus.RUNNING
        assert not await frontier.is_finished()

        await frontier.mark_handled(first)
        second = await frontier.fetch_next("w")
        await frontier.mark_handled(second)

        assert await frontier.fetch_next("w") is None
        assert await frontier.is_finished()
        assert (await frontier.stats())["handled"] == 2

    @pytest.mark.asyncio
    async def test_retries_until_exhausted(self):
        frontier = Frontier("run-1")
        await frontier.add_request(CrawlRequest(url="https://www.instagram.com/nasa/", max_retries=3))

        attempts = 0
        while (request := await frontier.fetch_next("w")) is not None:
            attempts += 1
            await frontier.mark_failed(request, f"boom {attempts}")

        assert attempts == 4
        assert request is None
        stored = next(iter(frontier.memory_requests.values()))
        assert stored.status == RequestStatus.FAILED
        assert stored.error_messages == ["boom 1", "boom 2", "boom 3", "boom 4"]
        assert (await frontier.stats())["failed"] == 1

    @pytest.mark.asyncio
    async def test_non_retryable_failure_is_terminal(self):
        frontier = Frontier("run-1")
        await frontier.add_request(CrawlRequest(url="https://www.instagram.com/nasa/"))
        request = await frontier.fetch_next("w")

        assert await frontier.mark_failed(request, "unsupported", should_retry=False) is False
        assert await frontier.is_finished()

    @pytest.mark.asyncio
    async def test_unreachable_redis_falls_back_to_memory(self):
        frontier = Frontier("run-1", backend=FrontierBackend.REDIS, redis_url="redis://127.0.0.1:1/0")
        await frontier.connect()
        assert frontier.use_redis is False
        assert await frontier.add_request(CrawlRequest(url="https://www.instagram.com/nasa/"))


class FakeBrowserPool:
    def __init__(self, pages):
        self.pages = pages
        self.opened = 0

    @asynccontextmanager
    async def page(self, request_id):
        self.opened += 1
        yield self.pages(request_id)


class FailingSession:
    def __init__(self, error, calls, request, page):
        self.error = error
        self.calls = calls
        self.request = request
        self.ctx = type("Ctx", (), {"identity": None, "accumulator": None})()
        self.state = type("State", (), {"value": "navigating"})()

    async def run(self):
        self.calls.append(self.request.url)
        raise self.error


class TestWorkerPool:

    async def _run_pool(self, session_factory, urls, sink, browser_pool=None, max_workers=2):
        frontier = Frontier("run-1")
        for url in urls:
            await frontier.add_request(CrawlRequest(url=url, limit=10))
        pool = WorkerPool(
            run_id="run-1",
            frontier=frontier,
            browser_pool=browser_pool or FakeBrowserPool(lambda _: FakePage()),
            session_factory=session_factory,
            sink=sink,
            logger=logging.getLogger("igcrawler.test"),
            metrics=CrawlMetrics(),
            max_workers=max_workers,
        )
        await pool.run()
        return frontier, pool

    @pytest.mark.asyncio
    async def test_retryable_failure_emits_debug_record_after_four_attempts(self):
        sink = MemorySink()
        calls = []

        def factory(*, request, page):
            return FailingSession(NavigationTimeout("Navigation timed out"), calls, request, page)

        frontier, _ = await self._run_pool(factory, ["https://www.instagram.com/nasa/"], sink)

        assert len(calls) == 4
        assert len(sink.items) == 1
        record = sink.items[0]
        assert record["#error"] == "https://www.instagram.com/nasa/"
        assert record["#debug"]["retryCount"] == 3
        assert len(record["#debug"]["errorMessages"]) == 4
        assert (await frontier.stats())["failed"] == 1

    @pytest.mark.asyncio
    async def test_unsupported_page_is_not_retried(self):
        sink = MemorySink()
        calls = []

        def factory(*, request, page):
            return FailingSession(UnsupportedPageError("comments on a profile"), calls, request, page)

        await self._run_pool(factory, ["https://www.instagram.com/nasa/"], sink)

        assert len(calls) == 1
        assert sink.items[0]["#debug"]["retryCount"] == 0

    @pytest.mark.asyncio
    async def test_real_sessions_share_sink(self, fast_timeouts):
        sink = MemorySink()
        entries = {
            "https://www.instagram.com/a/": profile_entry_data([media_node(i, "a") for i in range(3)], False, "1", "a"),
            "https://www.instagram.com/b/": profile_entry_data([media_node(i, "b") for i in range(4)], False, "2", "b"),
        }

        def factory(*, request, page):
            page.entry_data = entries[request.url]
            return SessionOrchestrator(request=request, page=page, results_type=ScrapeType.POSTS,
                                       sink=sink, timeouts=fast_timeouts)

        browser_pool = FakeBrowserPool(lambda _: FakePage())
        frontier, pool = await self._run_pool(factory, list(entries), sink, browser_pool)

        assert len(sink.items) == 7
        assert browser_pool.opened == 2
        assert (await frontier.stats())["handled"] == 2
        assert pool.get_stats()["handled"] == 2


class ClosingPage(FakePage):
    """Page whose browser goes away on the first scroll."""

    async def evaluate(self, script, arg=None):
        if "scrollTo" in script:
            raise PlaywrightError("Target page, context or browser has been closed")
        return await super().evaluate(script, arg)


class TestRetryResume:

    @pytest.mark.asyncio
    async def test_retry_skips_items_sent_by_failed_attempt(self, fast_timeouts):
        sink = MemorySink()
        initial = [media_node(i) for i in range(8)]
        next_page = FakeResponse(
            graphql_url(id="42", first=12, after="CURSOR"),
            profile_page_payload([media_node(i) for i in range(8, 20)], has_next=True),
        )
        pages = iter([
            ClosingPage(entry_data=profile_entry_data(initial, has_next=True)),
            FakePage(entry_data=profile_entry_data(initial, has_next=True), responses=[next_page]),
        ])
        frontier = Frontier("run-1")
        await frontier.add_request(CrawlRequest(url="https://www.instagram.com/nasa/", limit=10))

        def factory(*, request, page):
            return SessionOrchestrator(request=request, page=page, results_type=ScrapeType.POSTS,
                                       sink=sink, timeouts=fast_timeouts)

        pool = WorkerPool(
            run_id="run-1",
            frontier=frontier,
            browser_pool=FakeBrowserPool(lambda _: next(pages)),
            session_factory=factory,
            sink=sink,
            logger=logging.getLogger("igcrawler.test"),
            max_workers=1,
        )
        await pool.run()

        ids = [r["id"] for r in sink.items]
        assert len(ids) == 10
        assert len(set(ids)) == 10
        stored = next(iter(frontier.memory_requests.values()))
        assert stored.retry_count == 1
        assert stored.status == RequestStatus.HANDLED

    @pytest.mark.asyncio
    async def test_retry_after_limit_reached_emits_nothing(self, memory_sink, fast_timeouts):
        request = CrawlRequest(url="https://www.instagram.com/nasa/", limit=3, emitted_ids=["p0", "p1", "p2"])
        page = FakePage(entry_data=profile_entry_data([media_node(i) for i in range(6)], has_next=True))
        session = SessionOrchestrator(request=request, page=page, results_type=ScrapeType.POSTS,
                                      sink=memory_sink, timeouts=fast_timeouts)

        await session.run()

        assert memory_sink.items == []
        assert session.ctx.accumulator.finish_reason == "limit"
        assert page.scrolls == 0


class TestRequestLabels:

    def test_details_always_detail(self):
        assert request_label("https://www.instagram.com/nasa/", ScrapeType.DETAILS) == RequestLabel.DETAIL

    def test_posts_on_post_url_is_detail(self):
        assert request_label("https://www.instagram.com/p/ABC123/", ScrapeType.POSTS) == RequestLabel.DETAIL

    def test_listing_otherwise(self):
        assert request_label("https://www.instagram.com/nasa/", ScrapeType.POSTS) == RequestLabel.LISTING
        assert request_label("https://www.instagram.com/p/ABC123/", ScrapeType.COMMENTS) == RequestLabel.LISTING

    def test_build_requests_carries_limit_and_retries(self):
        crawl_input = CrawlInput.from_raw({
            "resultsType": "comments",
            "resultsLimit": 15,
            "proxy": "http://proxy.example:8000",
            "directUrls": ["https://www.instagram.com/p/ABC/"],
        })
        [request] = build_requests(crawl_input.direct_urls, crawl_input, max_retries=2)
        assert request.limit == 15
        assert request.max_retries == 2
        assert request.label == RequestLabel.LISTING


class TestRunCrawl:

    @pytest.mark.asyncio
    async def test_details_run_deduplicates_seed_urls(self):
        crawl_input = CrawlInput.from_raw({
            "resultsType": "details",
            "proxy": "http://proxy.example:8000",
            "directUrls": ["https://www.instagram.com/nasa/", "https://www.instagram.com/nasa/"],
        })
        sink = MemorySink()
        browser_pool = FakeBrowserPool(lambda _: FakePage(entry_data=profile_entry_data([media_node(1)])))

        summary = await run_crawl(crawl_input, run_id="e2e", sink=sink, browser_pool=browser_pool)

        assert len(sink.items) == 1
        assert browser_pool.opened == 1
        assert summary["runId"] == "e2e"
        assert summary["requests"]["handled"] == 1

    @pytest.mark.asyncio
    async def test_browser_start_failure_surfaces_and_releases_frontier(self):
        crawl_input = CrawlInput.from_raw({
            "resultsType": "posts",
            "proxy": "http://proxy.example:8000",
            "directUrls": ["https://www.instagram.com/nasa/"],
        })
        with patch.object(BrowserRuntime, "start", AsyncMock(side_effect=RuntimeError("chromium missing"))), \
                patch.object(Frontier, "disconnect", AsyncMock()) as disconnect:
            with pytest.raises(RuntimeError, match="chromium missing"):
                await run_crawl(crawl_input, run_id="no-browser", sink=MemorySink())

        disconnect.assert_awaited_once()
