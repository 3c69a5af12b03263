"""
Page fetchers. Both return a FetchResult whose content is empty on failure,
so callers never have to handle fetch exceptions.
"""

import asyncio
import aiohttp
import logging
import time
from typing import Optional, Dict
from dataclasses import dataclass
from aiohttp import ClientSession, ClientTimeout, ClientError


@dataclass
class FetchResult:
    """Result of a fetch operation."""
    url: str
    status_code: int
    content: Optional[str] = None
    error: Optional[str] = None
    fetch_time: float = 0.0
    content_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.error and bool(self.content)


class BaseFetcher:
    """Shared statistics and context-manager plumbing."""

    def __init__(self, user_agent: str, request_timeout: float = 30):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.logger = logging.getLogger(__name__)
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        raise NotImplementedError

    async def close(self):
        raise NotImplementedError

    async def fetch(self, url: str) -> FetchResult:
        raise NotImplementedError

    def _record_success(self, content: str):
        self.stats['successful_requests'] += 1
        self.stats['total_bytes_downloaded'] += len(content)

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()


class WebFetcher(BaseFetcher):
    """
    Fetches web pages over plain HTTP with a bounded timeout.
    """

    TEXT_TYPES = (
        'text/html',
        'text/plain',
        'text/xml',
        'application/xml',
        'application/xhtml+xml',
    )

    def __init__(self, user_agent: str, request_timeout: float = 30,
                 max_content_size: int = 10 * 1024 * 1024):
        super().__init__(user_agent, request_timeout)
        self.max_content_size = max_content_size
        self.session: Optional[ClientSession] = None

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout)
            headers = {'User-Agent': self.user_agent}

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit_per_host=2,
                    ttl_dns_cache=300,
                )
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a single URL.

        Args:
            url: The URL to fetch

        Returns:
            FetchResult object containing the response data or error information
        """
        if self.session is None:
            await self.start()

        start_time = time.time()
        self.stats['total_requests'] += 1

        try:
            async with self.session.get(url) as response:
                content_type = response.headers.get('content-type', '').lower()

                if not any(text_type in content_type for text_type in self.TEXT_TYPES):
                    self.stats['failed_requests'] += 1
                    self.logger.debug(f"Skipping non-text content: {url} ({content_type})")
                    return FetchResult(
                        url=url,
                        status_code=response.status,
                        content_type=content_type,
                        error="Non-text content type",
                        fetch_time=time.time() - start_time
                    )

                content = await self._read_content_safely(response)
                if not content:
                    self.stats['failed_requests'] += 1
                    return FetchResult(
                        url=url,
                        status_code=response.status,
                        content_type=content_type,
                        error="Empty or oversized response body",
                        fetch_time=time.time() - start_time
                    )

                self._record_success(content)
                self.logger.debug(f"Fetched {url}: {response.status} ({len(content)} bytes)")
                return FetchResult(
                    url=url,
                    status_code=response.status,
                    content=content,
                    content_type=content_type,
                    fetch_time=time.time() - start_time
                )

        except asyncio.TimeoutError:
            error_msg = "Request timeout"
            self.logger.warning(f"Timeout fetching {url}")

        except ClientError as e:
            error_msg = f"Client error: {e}"
            self.logger.warning(f"Client error fetching {url}: {e}")

        except ValueError as e:
            error_msg = f"Invalid URL: {e}"
            self.logger.warning(f"Invalid URL {url}: {e}")

        self.stats['failed_requests'] += 1
        return FetchResult(
            url=url,
            status_code=0,
            error=error_msg,
            fetch_time=time.time() - start_time
        )

    async def _read_content_safely(self, response) -> Optional[str]:
        """
        Read the response body, giving up beyond max_content_size bytes.
        """
        content_length = response.headers.get('content-length')
        if content_length and content_length.isdigit() and int(content_length) > self.max_content_size:
            self.logger.warning(f"Content too large ({content_length} bytes): {response.url}")
            return None

        content_bytes = b''
        async for chunk in response.content.iter_chunked(8192):
            content_bytes += chunk
            if len(content_bytes) > self.max_content_size:
                self.logger.warning(f"Content exceeded size limit during reading: {response.url}")
                return None

        encoding = response.charset or 'utf-8'
        try:
            return content_bytes.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            return content_bytes.decode('utf-8', errors='replace')


class BrowserFetcher(BaseFetcher):
    """
    Fetches pages through headless Chromium so that client-side rendered
    content is present. Waits until <body> is visible, then returns the
    document's outer HTML.
    """

    def __init__(self, user_agent: str, request_timeout: float = 30):
        super().__init__(user_agent, request_timeout)
        self._playwright = None
        self._browser = None
        self._context = None

    async def start(self):
        if self._browser is not None:
            return

        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=True,
            args=["--disable-gpu", "--no-sandbox", "--disable-dev-shm-usage"],
        )
        self._context = await self._browser.new_context(user_agent=self.user_agent)
        self.logger.info("BrowserFetcher started")

    async def close(self):
        if self._context is not None:
            await self._context.close()
            self._context = None
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            self.logger.info("BrowserFetcher closed")

    async def fetch(self, url: str) -> FetchResult:
        if self._context is None:
            await self.start()

        from playwright.async_api import Error as PlaywrightError

        start_time = time.time()
        self.stats['total_requests'] += 1
        timeout_ms = self.request_timeout * 1000

        page = await self._context.new_page()
        try:
            response = await page.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
            await page.wait_for_selector("body", state="visible", timeout=timeout_ms)
            content = await page.content()
            status = response.status if response is not None else 0
        except PlaywrightError as e:
            self.stats['failed_requests'] += 1
            self.logger.warning(f"Error fetching page {url}: {e}")
            return FetchResult(
                url=url,
                status_code=0,
                error=str(e),
                fetch_time=time.time() - start_time
            )
        finally:
            await page.close()

        self._record_success(content)
        return FetchResult(
            url=url,
            status_code=status,
            content=content,
            content_type='text/html',
            fetch_time=time.time() - start_time
        )


def create_fetcher(fetcher_type: str, user_agent: str, request_timeout: float = 30) -> BaseFetcher:
    """Build the fetcher named in the configuration."""
    if fetcher_type == 'browser':
        return BrowserFetcher(user_agent, request_timeout)
    if fetcher_type == 'http':
        return WebFetcher(user_agent, request_timeout)
    raise ValueError(f"Unknown fetcher type: {fetcher_type}")
