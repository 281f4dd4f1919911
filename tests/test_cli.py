import json

import pytest

from igcrawler.__main__ import main, parse_args


def write_input(tmp_path, payload):
    path = tmp_path / "input.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


class TestCli:

    def test_headless_flags(self):
        assert parse_args(["--input", "x"]).headless is None
        assert parse_args(["--input", "x", "--headless"]).headless is True
        assert parse_args(["--input", "x", "--headful"]).headless is False

    @pytest.mark.asyncio
    async def test_missing_input_file(self, tmp_path):
        assert await main(["--input", str(tmp_path / "nope.json")]) == 1

    @pytest.mark.asyncio
    async def test_invalid_input_fails(self, tmp_path):
        assert await main(["--input", write_input(tmp_path, {})]) == 1

    @pytest.mark.asyncio
    async def test_nothing_to_crawl_exits_cleanly(self, tmp_path):
        path = write_input(tmp_path, {"resultsType": "posts", "proxy": "http://proxy.example:8000"})
        assert await main(["--input", path, "--output-dir", str(tmp_path / "out")]) == 0
