"""
Crawler scheduler that drives the crawl loop and owns the shared crawl state.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .url_frontier import URLFrontier, VisitedSet
from .fetcher import BaseFetcher, create_fetcher
from .parser import ContentParser
from .robots import RobotsChecker
from ..storage.database import DatabaseManager
from ..utils.config import Config
from ..utils.monitoring import CrawlStats, CrawlerMetrics

PublishHook = Callable[[], Awaitable[None]]


class CrawlerScheduler:
    """
    Breadth-first crawl loop.

    One URL is processed at a time: dequeue, robots check, crawl-delay,
    fetch, extract. The frontier, visited set and stats can be read from
    other tasks while the loop runs.
    """

    def __init__(self, config: Config,
                 storage: Optional[DatabaseManager] = None,
                 fetcher: Optional[BaseFetcher] = None,
                 robots: Optional[RobotsChecker] = None,
                 metrics: Optional[CrawlerMetrics] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)

        crawler_config = config.crawler

        # Shared crawl state
        self.frontier = URLFrontier()
        self.visited = VisitedSet(count_duplicate_adds=crawler_config.count_duplicate_visits)
        self.stats = CrawlStats()
        self.metrics = metrics or CrawlerMetrics(
            enabled=config.monitoring.metrics_enabled,
            port=config.monitoring.prometheus_port
        )

        # Components
        self.storage = storage or DatabaseManager(config.database, config.redis)
        self.fetcher = fetcher or create_fetcher(
            crawler_config.fetcher,
            crawler_config.user_agent,
            crawler_config.request_timeout
        )
        if robots is None and crawler_config.respect_robots_txt:
            robots = RobotsChecker(crawler_config.user_agent, timeout=crawler_config.robots_timeout)
        self.robots = robots

        self.parser = ContentParser(
            self.frontier,
            self.visited,
            robots=self.robots,
            max_tokens=crawler_config.max_tokens,
            max_content_length=crawler_config.max_content_length,
            persist_ceiling=crawler_config.persist_ceiling,
            check_robots_on_discovery=crawler_config.check_robots_on_discovery
        )

        self.totals = {
            'robots_blocked': 0,
            'fetch_failures': 0,
            'pages_stored': 0,
            'errors': 0,
        }

        self.is_running = False
        self._stop_event = asyncio.Event()
        self._done_event = asyncio.Event()
        self._background: List[asyncio.Task] = []
        self._publishers: List[PublishHook] = []

    async def initialize(self):
        """Start sessions and connect to storage."""
        await self.storage.initialize()
        await self.fetcher.start()
        if self.robots is not None:
            await self.robots.start()
        self.metrics.start_server()
        self.logger.info("Crawler scheduler initialized successfully")

    def add_publisher(self, hook: PublishHook):
        """Register a coroutine called on every stats publish tick."""
        self._publishers.append(hook)

    async def start_crawling(self, max_pages: Optional[int] = None) -> Dict[str, Any]:
        """
        Crawl from the seed URL until the frontier is empty or the visited
        count reaches max_pages.

        Returns:
            Final crawl statistics
        """
        if self.is_running:
            self.logger.warning("Crawler is already running")
            return self.get_stats()

        max_pages = max_pages or self.config.crawler.max_pages
        seed_url = self.config.crawler.seed_url

        self.is_running = True
        self._stop_event.clear()
        self._done_event.clear()
        self._start_background_tasks()

        try:
            self.frontier.enqueue(seed_url, self.visited)
            self.logger.info(f"Starting crawl from {seed_url} (max pages: {max_pages})")
            await self.log_sitemaps(seed_url)

            # The seed is processed before the loop condition is first checked.
            if self.frontier.size() > 0:
                await self._crawl_next()

            while self._should_continue(max_pages):
                await self._crawl_next()

            if self.visited.size() >= max_pages:
                self.logger.info(f"Reached max pages limit: {max_pages}")
            elif self.frontier.size() == 0:
                self.logger.info("Frontier exhausted")

        finally:
            self.is_running = False
            await self._stop_background_tasks()

        final_stats = self.get_stats()
        self._log_final_stats()
        return final_stats

    async def log_sitemaps(self, url: str):
        """Log the sitemaps advertised in the robots.txt of the URL's domain."""
        if self.robots is None:
            return
        sitemaps = await self.robots.get_sitemaps(url)
        if sitemaps:
            self.logger.info(f"Sitemaps advertised by {url}: {', '.join(sitemaps)}")

    def _should_continue(self, max_pages: int) -> bool:
        return (not self._stop_event.is_set()
                and self.frontier.size() > 0
                and self.visited.size() < max_pages)

    async def _crawl_next(self):
        url = self.frontier.dequeue()
        self.visited.add(url)
        try:
            await self._process_url(url)
        except Exception as e:
            self.totals['errors'] += 1
            self.metrics.errors.inc()
            self.logger.error(f"Error processing {url}: {e}", exc_info=True)

    async def _process_url(self, url: str):
        """Process a single URL: robots check, politeness delay, fetch, extract."""
        if self.robots is not None:
            allowed, crawl_delay = await self.robots.is_allowed(url)
            if not allowed:
                self.totals['robots_blocked'] += 1
                self.metrics.robots_blocked.inc()
                self.logger.info(f"Robots.txt disallows crawling: {url}")
                return

            if crawl_delay > 0:
                self.logger.debug(f"Waiting {crawl_delay}s before fetching {url}")
                if await self._wait_or_stop(crawl_delay):
                    return

        fetch_result = await self.fetcher.fetch(url)
        if not fetch_result.ok:
            self.totals['fetch_failures'] += 1
            self.metrics.fetch_failures.inc()
            self.logger.warning(f"Failed to fetch {url}: {fetch_result.error or 'empty content'}")
            return

        parsed_content = await self.parser.extract(url, fetch_result.content, self.storage)
        if parsed_content.stored:
            self.totals['pages_stored'] += 1
            self.metrics.pages_stored.inc()

    async def _wait_or_stop(self, delay: float) -> bool:
        """Sleep for delay seconds. Returns True if a stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    def _start_background_tasks(self):
        monitoring = self.config.monitoring
        self._background = [
            asyncio.create_task(self._run_periodically(monitoring.sample_interval, self.sample_stats)),
            asyncio.create_task(self._run_periodically(monitoring.publish_interval, self.publish_stats)),
        ]

    async def _stop_background_tasks(self):
        self._done_event.set()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._background = []

    async def _run_periodically(self, interval: float, callback: Callable[[], Awaitable[None]]):
        """Call callback every interval seconds until the crawl finishes."""
        while not self._done_event.is_set():
            try:
                await asyncio.wait_for(self._done_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                try:
                    await callback()
                except Exception as e:
                    self.logger.error(f"Error in periodic stats task: {e}")

    async def sample_stats(self):
        """Record a stats sample and publish it."""
        self.stats.update(self.visited, self.frontier)
        self.metrics.observe(self.visited, self.frontier)
        await self.publish_stats()

    async def publish_stats(self):
        for hook in self._publishers:
            await hook()

    def _log_final_stats(self):
        """Log final crawl statistics."""
        self.logger.info("------------------CRAWLER STATS------------------")
        self.logger.info(f"Total queued: {self.frontier.total_queued()}")
        self.logger.info(f"To be crawled (Queue) size: {self.frontier.size()}")
        self.logger.info(f"Crawled size: {self.visited.size()}")
        self.logger.info(f"Pages stored: {self.totals['pages_stored']}")
        self.logger.info(f"Blocked by robots.txt: {self.totals['robots_blocked']}")
        self.logger.info(f"Fetch failures: {self.totals['fetch_failures']}")
        self.logger.info(f"Errors: {self.totals['errors']}")
        self.logger.info(f"Fetcher stats: {self.fetcher.get_stats()}")
        if self.robots is not None:
            self.logger.info(f"Robots stats: {self.robots.get_stats()}")
        self.logger.info(self.stats.summary())

    def stop_crawling(self):
        """Ask the crawl loop to stop after the current URL."""
        self.logger.info("Stopping crawler...")
        self._stop_event.set()

    async def close(self):
        """Close all connections and cleanup resources."""
        if self.is_running:
            self.stop_crawling()

        await self.fetcher.close()
        if self.robots is not None:
            await self.robots.close()
        await self.storage.close()
        self.logger.info("Crawler scheduler closed")

    def get_stats(self) -> Dict[str, Any]:
        """
        Current crawl statistics. Safe to call from other tasks while the
        crawl loop runs.
        """
        visited = self.visited.size()
        frontier_stats = self.frontier.get_stats()
        total_queued = frontier_stats['total_queued']
        return {
            'total_crawled': visited,
            'total_queued': total_queued,
            'queue_size': frontier_stats['queue_size'],
            'start_time': self.stats.start_time,
            'uptime_minutes': self.stats.uptime_minutes(),
            'crawl_rate': self.stats.crawl_rate(visited),
            'crawled_to_queued': visited / total_queued if total_queued else 0.0,
            'summary': self.stats.summary(),
            'is_running': self.is_running,
            **self.totals,
        }
