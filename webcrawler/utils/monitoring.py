"""
Monitoring for the web crawler: the periodic crawl summary and the
Prometheus metrics derived from the frontier and visited set.
"""

import time
import logging
import threading
from typing import List, Optional, TYPE_CHECKING

from prometheus_client import (
    CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, generate_latest, start_http_server
)

if TYPE_CHECKING:
    from ..crawler.url_frontier import URLFrontier, VisitedSet


class CrawlStats:
    """
    Time series of crawl progress sampled on a fixed interval.

    Each sample adds one "<minutes> <value>" line to the pages-crawled
    series and to the crawled-to-queued ratio series.
    """

    def __init__(self, start_time: Optional[float] = None, max_samples: int = 1440):
        self.start_time = time.time() if start_time is None else start_time
        self.max_samples = max_samples
        self._pages_per_minute: List[str] = ["0 0"]
        self._crawled_ratio_per_minute: List[str] = ["0 0"]
        self._lock = threading.Lock()

    def uptime_minutes(self, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        return max(now - self.start_time, 0.0) / 60

    def crawl_rate(self, crawled: int, now: Optional[float] = None) -> float:
        """Pages crawled per minute since start."""
        minutes = self.uptime_minutes(now)
        return crawled / minutes if minutes > 0 else 0.0

    def update(self, visited: 'VisitedSet', frontier: 'URLFrontier', now: Optional[float] = None):
        """Take a sample from the current visited and frontier counts."""
        minutes = self.uptime_minutes(now)
        crawled = visited.size()
        queued = frontier.size()
        ratio = crawled / queued if queued else 0.0

        with self._lock:
            self._pages_per_minute.append(f"{minutes:f} {crawled}")
            self._crawled_ratio_per_minute.append(f"{minutes:f} {ratio:f}")
            del self._pages_per_minute[:-self.max_samples]
            del self._crawled_ratio_per_minute[:-self.max_samples]

    @property
    def pages_per_minute(self) -> str:
        with self._lock:
            return "\n".join(self._pages_per_minute) + "\n"

    @property
    def crawled_ratio_per_minute(self) -> str:
        with self._lock:
            return "\n".join(self._crawled_ratio_per_minute) + "\n"

    def summary(self) -> str:
        return (
            "Pages crawled per minute:\n"
            f"{self.pages_per_minute}\n"
            "Crawl to Queued Ratio per minute:\n"
            f"{self.crawled_ratio_per_minute}"
        )


class CrawlerMetrics:
    """Prometheus metrics for the crawler, kept in a private registry."""

    def __init__(self, enabled: bool = False, port: int = 8000):
        self.logger = logging.getLogger(__name__)
        self.enabled = enabled
        self.port = port
        self.registry = CollectorRegistry()

        self.queue_size = Gauge(
            'crawler_queue_size',
            'Number of URLs waiting in the frontier',
            registry=self.registry
        )
        self.total_queued = Gauge(
            'crawler_total_queued',
            'Number of URLs ever accepted by the frontier',
            registry=self.registry
        )
        self.visited = Gauge(
            'crawler_urls_visited',
            'Number of URLs dequeued for crawling',
            registry=self.registry
        )
        self.pages_stored = Counter(
            'crawler_pages_stored_total',
            'Total number of pages handed to storage',
            registry=self.registry
        )
        self.robots_blocked = Counter(
            'crawler_robots_blocked_total',
            'URLs skipped because robots.txt disallows them',
            registry=self.registry
        )
        self.fetch_failures = Counter(
            'crawler_fetch_failures_total',
            'Fetches that returned no content',
            registry=self.registry
        )
        self.errors = Counter(
            'crawler_errors_total',
            'Unexpected errors while processing a URL',
            registry=self.registry
        )

    def start_server(self):
        """Start the Prometheus exposition server if metrics are enabled."""
        if not self.enabled:
            return
        try:
            start_http_server(self.port, registry=self.registry)
            self.logger.info(f"Prometheus metrics server started on port {self.port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")

    def observe(self, visited: 'VisitedSet', frontier: 'URLFrontier'):
        """Refresh the gauges from the shared structures."""
        self.queue_size.set(frontier.size())
        self.total_queued.set(frontier.total_queued())
        self.visited.set(visited.size())

    def export(self) -> bytes:
        """Text exposition of the registry, as served on /metrics."""
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST
