#!/usr/bin/env python3
"""
Main entry point for the web crawler system.
"""

import asyncio
import argparse
import logging
import signal
import sys
from typing import Optional

from webcrawler import __version__
from webcrawler.api import APIServer
from webcrawler.crawler.scheduler import CrawlerScheduler
from webcrawler.storage.database import DatabaseError
from webcrawler.utils.config import Config, ConfigError, load_config
from webcrawler.utils.logger import log_system_info, setup_logging


class CrawlerApp:
    """Main application class for the web crawler."""

    def __init__(self, config: Config):
        self.config = config
        self.scheduler: Optional[CrawlerScheduler] = None
        self.api_server: Optional[APIServer] = None
        self.logger = logging.getLogger(__name__)

    def setup_signal_handlers(self):
        """Stop the crawl loop gracefully on SIGINT/SIGTERM."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signum}, initiating shutdown...")
            if self.scheduler:
                self.scheduler.stop_crawling()

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, signal_handler, signum)
            except NotImplementedError:
                signal.signal(signum, lambda s, f: signal_handler(s))

    async def run(self, max_pages: Optional[int] = None, dry_run: bool = False) -> int:
        """Run the web crawler."""
        config = self.config

        self.logger.info("=== WEB CRAWLER STARTING ===")
        self.logger.info(f"Seed URL: {config.crawler.seed_url}")
        self.logger.info(f"Max pages: {max_pages or config.crawler.max_pages}")
        self.logger.info(f"User agent: {config.crawler.user_agent}")
        self.logger.info(f"Fetcher: {config.crawler.fetcher}")
        self.logger.info(f"Database: {config.database.type} (access={config.database.access})")

        self.scheduler = CrawlerScheduler(config)
        try:
            await self.scheduler.initialize()

            if dry_run:
                await self._dry_run()
                return 0

            self.setup_signal_handlers()

            if config.api.enabled:
                self.api_server = APIServer(
                    self.scheduler.storage,
                    self.scheduler,
                    static_dir=config.api.static_dir,
                    search_limit=config.api.search_limit,
                    metrics=self.scheduler.metrics
                )
                await self.api_server.start(config.api.host, config.api.port)
                self.scheduler.add_publisher(self.api_server.broadcast_stats)

            await self.scheduler.start_crawling(max_pages)

        except DatabaseError as e:
            self.logger.error(f"Storage error: {e}")
            return 1

        finally:
            if self.api_server:
                await self.api_server.stop()
            await self.scheduler.close()
            self.logger.info("=== WEB CRAWLER FINISHED ===")

        return 0

    async def _dry_run(self):
        """Check that the seed URL can be fetched and is allowed."""
        seed_url = self.config.crawler.seed_url
        if self.scheduler.robots is not None:
            allowed, delay = await self.scheduler.robots.is_allowed(seed_url)
            self.logger.info(f"robots.txt: allowed={allowed}, crawl-delay={delay}s")
            await self.scheduler.log_sitemaps(seed_url)

        result = await self.scheduler.fetcher.fetch(seed_url)
        if not result.ok:
            self.logger.warning(f"Test fetch failed: {result.error}")
        else:
            self.logger.info(f"Test fetch successful: {result.status_code} ({len(result.content)} chars)")

        self.logger.info("Dry run completed")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Polite breadth-first web crawler",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                           # Run with default config.yaml
  python main.py --config my_config.yaml  # Run with custom config
  python main.py --max-pages 1000         # Stop after 1000 URLs
  python main.py --dry-run                # Test configuration only
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )

    parser.add_argument(
        '--max-pages',
        type=int,
        help='Maximum number of URLs to crawl'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Test configuration without actually crawling'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'Web Crawler System {__version__}'
    )

    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 1

    setup_logging(config.logging)
    log_system_info()

    app = CrawlerApp(config)
    try:
        return asyncio.run(app.run(max_pages=args.max_pages, dry_run=args.dry_run))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
