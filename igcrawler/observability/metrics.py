"""Prometheus metrics for crawl runs.

Each CrawlMetrics owns its CollectorRegistry so several runs (and tests) can
live in one process without colliding on metric names.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Iterator, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST


class CrawlMetrics:
    """Crawl-level counters, gauges and histograms."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self._initialize_metrics()

    def _initialize_metrics(self) -> None:
        # Page / task outcomes
        self.pages_total = Counter(
            'crawler_pages_total',
            'Pages handled, by outcome',
            ['outcome'],
            registry=self.registry
        )

        self.page_duration = Histogram(
            'crawler_page_duration_seconds',
            'Time spent handling one page',
            ['label'],
            buckets=[1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600],
            registry=self.registry
        )

        self.active_pages = Gauge(
            'crawler_active_pages',
            'Pages currently open',
            registry=self.registry
        )

        # Extraction
        self.records_emitted = Counter(
            'crawler_records_emitted_total',
            'Output records handed to the sink',
            ['results_type'],
            registry=self.registry
        )

        self.responses_matched = Counter(
            'crawler_responses_matched_total',
            'API responses captured for extraction',
            registry=self.registry
        )

        self.responses_failed = Counter(
            'crawler_responses_failed_total',
            'Captured responses whose processing raised',
            registry=self.registry
        )

        # Traffic filter
        self.requests_aborted = Counter(
            'crawler_requests_aborted_total',
            'Browser requests aborted by the traffic filter',
            ['reason'],
            registry=self.registry
        )

        # Browser pool
        self.browsers_launched = Counter(
            'crawler_browsers_launched_total',
            'Browser instances launched',
            registry=self.registry
        )

        self.browsers_retired = Counter(
            'crawler_browsers_retired_total',
            'Browser instances retired after reaching their page budget',
            registry=self.registry
        )

    @contextmanager
    def track_page(self, label: str) -> Iterator[None]:
        """Time one page and keep the active gauge current."""
        self.active_pages.inc()
        start = time.monotonic()
        try:
            yield
        finally:
            self.active_pages.dec()
            self.page_duration.labels(label).observe(time.monotonic() - start)

    def export(self) -> bytes:
        return generate_latest(self.registry)

    content_type = CONTENT_TYPE_LATEST
