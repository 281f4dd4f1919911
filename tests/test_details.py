import logging

import pytest

from igcrawler.consts import ScrapeType
from igcrawler.context import PageContext
from igcrawler.identity import resolve_identity
from igcrawler.jobs import CrawlRequest
from igcrawler.tasks import DetailsExtractor

from conftest import (
    FakePage, comment_node, hashtag_entry_data, location_entry_data, media_node, post_entry_data,
    profile_entry_data,
)


class TestDetailsExtractor:

    def test_profile_record(self):
        entry_data = profile_entry_data([media_node(i) for i in range(20)])
        record = DetailsExtractor().extract(resolve_identity(entry_data, 1), entry_data)

        assert record["username"] == "nasa"
        assert record["followersCount"] == 1000
        assert record["verified"] is True
        assert len(record["latestPosts"]) == 12
        assert record["#debug"]["pageType"] == "user"

    def test_hashtag_record(self):
        entry_data = hashtag_entry_data([media_node(i) for i in range(4)])
        record = DetailsExtractor().extract(resolve_identity(entry_data, 1), entry_data)

        assert record["name"] == "sunset"
        assert len(record["topPosts"]) == 3
        assert record["url"] == "https://www.instagram.com/explore/tags/sunset/"

    def test_place_record(self):
        entry_data = location_entry_data([media_node(1)])
        record = DetailsExtractor().extract(resolve_identity(entry_data, 1), entry_data)

        assert record["name"] == "Prague"
        assert record["lat"] == 50.08

    def test_single_post_record(self):
        entry_data = post_entry_data([comment_node(i) for i in range(3)], shortcode="ABC")
        record = DetailsExtractor().extract(resolve_identity(entry_data, 1), entry_data)

        assert record["shortCode"] == "ABC"
        assert record["commentsDisabled"] is False
        assert [c["id"] for c in record["latestComments"]] == ["c0", "c1", "c2"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, 1, 200])
    async def test_exactly_one_record_regardless_of_limit(self, memory_sink, limit):
        entry_data = profile_entry_data([media_node(i) for i in range(5)])
        ctx = PageContext(
            request=CrawlRequest(url="https://www.instagram.com/nasa/", limit=limit),
            page=FakePage(),
            results_type=ScrapeType.DETAILS,
            sink=memory_sink,
            logger=logging.getLogger("igcrawler.test"),
        )
        ctx.publish_identity(resolve_identity(entry_data, limit))

        await DetailsExtractor().run(ctx, entry_data)

        assert len(memory_sink.items) == 1
