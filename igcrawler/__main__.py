"""Command line entry point: ``python -m igcrawler --input input.json``."""

import argparse
import asyncio
import json
import sys
import uuid
from pathlib import Path

from .config import CrawlInput, get_config
from .reliability import ConfigurationError, EnhancedError, NoUrlsError
from .runner import run_crawl
from .sink import JsonLinesSink


def parse_args(argv=None):
    p = argparse.ArgumentParser(prog="igcrawler", description="Instagram posts/comments/details crawler")
    p.add_argument("--input", required=True, help="Path to the run input JSON")
    p.add_argument("--output-dir", type=str, default=None,
                   help="Directory for dataset.jsonl (default: DATA_ROOT/<run id>)")
    p.add_argument("--headless", dest="headless", action="store_true", default=None,
                   help="Run browsers headless (default from BROWSER_HEADLESS)")
    p.add_argument("--headful", dest="headless", action="store_false",
                   help="Run browsers with a visible window")
    return p.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    config = get_config()
    logger = config.setup_logging()

    try:
        with open(args.input, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as e:
        logger.error(f"Cannot read input {args.input}: {e}")
        return 1

    run_id = uuid.uuid4().hex
    output_dir = Path(args.output_dir) if args.output_dir else Path(config.system.data_root) / run_id

    try:
        crawl_input = CrawlInput.from_raw(raw if isinstance(raw, dict) else {})
        sink = JsonLinesSink(output_dir)
        summary = await run_crawl(
            crawl_input,
            run_id=run_id,
            config=config,
            sink=sink,
            headless=args.headless,
            logger=logger,
        )
    except NoUrlsError as e:
        logger.info(e.message)
        return 0
    except ConfigurationError as e:
        logger.error(e.message)
        return 1
    except EnhancedError as e:
        logger.error(f"Run failed: {e.message}")
        return 1

    print(f"[OK] {sink.count} records → {sink.path}")
    logger.debug(f"Run summary: {summary}")
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
