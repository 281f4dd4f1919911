"""Observability: Prometheus metrics for crawl runs."""

from .metrics import CrawlMetrics

__all__ = ['CrawlMetrics']
