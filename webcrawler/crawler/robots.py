"""
robots.txt support: a per-domain policy cache and a small rule evaluator.

Only User-agent, Allow, Disallow, Crawl-delay and Sitemap are understood.
Patterns match as prefixes, with a trailing ``*`` acting as an explicit
prefix marker.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError


@dataclass
class UserAgentRules:
    """Rule group attached to one user-agent line."""
    allow: List[str] = field(default_factory=list)
    disallow: List[str] = field(default_factory=list)
    crawl_delay: float = 0.0


@dataclass
class RobotsPolicy:
    """Parsed robots.txt for a single domain."""
    user_agent_rules: Dict[str, UserAgentRules] = field(default_factory=dict)
    crawl_delay: float = 0.0
    sitemap_urls: List[str] = field(default_factory=list)


def parse_robots_txt(text: str) -> RobotsPolicy:
    """
    Parse robots.txt content into a RobotsPolicy.

    A user-agent line opens (or reuses) a rule group and every following
    allow/disallow/crawl-delay line attaches to it. A crawl-delay seen
    before any user-agent line becomes the domain default.
    """
    policy = RobotsPolicy()
    current_rules: Optional[UserAgentRules] = None

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith('#'):
            continue

        directive, sep, value = line.partition(':')
        if not sep:
            continue

        directive = directive.strip().lower()
        value = value.strip()

        if directive == 'user-agent':
            agent = value.lower()
            current_rules = policy.user_agent_rules.setdefault(agent, UserAgentRules())

        elif directive == 'allow':
            if current_rules is not None and value:
                current_rules.allow.append(value)

        elif directive == 'disallow':
            if current_rules is not None:
                current_rules.disallow.append(value)

        elif directive == 'crawl-delay':
            try:
                delay = float(int(value))
            except ValueError:
                continue
            if current_rules is not None:
                current_rules.crawl_delay = delay
            else:
                policy.crawl_delay = delay

        elif directive == 'sitemap':
            policy.sitemap_urls.append(value)

    return policy


def matches_pattern(path: str, pattern: str) -> bool:
    """Check a URL path against an allow/disallow pattern."""
    if not pattern:
        return False

    if pattern.endswith('*'):
        return path.startswith(pattern[:-1])

    return path == pattern or path.startswith(pattern)


def check_rules(path: str, rules: UserAgentRules) -> bool:
    """Allow patterns win over disallow patterns; no match means allowed."""
    for allow_pattern in rules.allow:
        if matches_pattern(path, allow_pattern):
            return True

    for disallow_pattern in rules.disallow:
        if matches_pattern(path, disallow_pattern):
            return False

    return True


class RobotsChecker:
    """
    Answers "may this URL be crawled, and with what delay" per domain.

    Policies are fetched once per domain and kept for the lifetime of the
    checker. A failed fetch or a non-200 response is cached as None, which
    means allow everything with no delay.
    """

    def __init__(self, user_agent: str = '*', timeout: float = 10.0,
                 session: Optional[ClientSession] = None):
        self.user_agent = user_agent or '*'
        # Group names are stored lowercased by parse_robots_txt.
        self._agent_key = self.user_agent.lower()
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

        self.session = session
        self._owns_session = session is None

        self._cache: Dict[str, Optional[RobotsPolicy]] = {}
        self._lock = threading.Lock()

        self.stats = {
            'robots_fetched': 0,
            'robots_missing': 0,
            'robots_errors': 0,
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Open an HTTP session unless one was supplied."""
        if self.session is None:
            self.session = aiohttp.ClientSession(
                headers={'User-Agent': self.user_agent},
                timeout=ClientTimeout(total=self.timeout)
            )
            self._owns_session = True

    async def close(self):
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    @staticmethod
    def _get_domain(url: str) -> Optional[str]:
        """Return scheme://host for a URL, or None if it cannot be parsed."""
        try:
            parsed = urlparse(url)
        except ValueError:
            return None
        if not parsed.scheme or not parsed.netloc:
            return None
        return f"{parsed.scheme}://{parsed.netloc}"

    async def is_allowed(self, url: str) -> Tuple[bool, float]:
        """
        Check whether the crawler may fetch a URL.

        Returns:
            (allowed, crawl_delay_seconds)
        """
        domain = self._get_domain(url)
        if domain is None:
            return True, 0.0

        policy = await self.get_policy(domain)
        return self._evaluate(url, policy)

    def check_cached(self, url: str) -> Optional[bool]:
        """
        Answer from the cache only. Returns None when the URL's domain has
        not been fetched yet, so no request is made.
        """
        domain = self._get_domain(url)
        if domain is None:
            return True

        with self._lock:
            if domain not in self._cache:
                return None
            policy = self._cache[domain]

        allowed, _ = self._evaluate(url, policy)
        return allowed

    def _evaluate(self, url: str, policy: Optional[RobotsPolicy]) -> Tuple[bool, float]:
        if policy is None:
            return True, 0.0

        for agent in (self._agent_key, '*'):
            rules = policy.user_agent_rules.get(agent)
            if rules is None:
                continue
            path = urlparse(url).path or '/'
            crawl_delay = rules.crawl_delay or policy.crawl_delay
            return check_rules(path, rules), crawl_delay

        return True, policy.crawl_delay

    async def get_sitemaps(self, url: str) -> List[str]:
        """Sitemap URLs advertised by the URL's domain."""
        domain = self._get_domain(url)
        if domain is None:
            return []
        policy = await self.get_policy(domain)
        return list(policy.sitemap_urls) if policy else []

    async def get_policy(self, domain: str) -> Optional[RobotsPolicy]:
        """Return the cached policy for a domain, fetching it on first use."""
        with self._lock:
            if domain in self._cache:
                return self._cache[domain]

        # Two callers may fetch the same domain at once; both store an
        # equivalent policy.
        policy = await self._fetch_policy(domain)

        with self._lock:
            self._cache[domain] = policy
        return policy

    async def _fetch_policy(self, domain: str) -> Optional[RobotsPolicy]:
        robots_url = f"{domain}/robots.txt"
        content = await self._download(robots_url)
        if content is None:
            return None
        self.stats['robots_fetched'] += 1
        return parse_robots_txt(content)

    async def _download(self, robots_url: str) -> Optional[str]:
        """Fetch robots.txt; None when it is missing or unreachable."""
        if self.session is None:
            await self.start()

        try:
            async with self.session.get(robots_url, timeout=ClientTimeout(total=self.timeout)) as response:
                if response.status != 200:
                    self.stats['robots_missing'] += 1
                    self.logger.info(f"robots.txt not found for {robots_url} (status: {response.status})")
                    return None
                return await response.text(errors='replace')

        except (ClientError, asyncio.TimeoutError, ValueError) as e:
            self.stats['robots_errors'] += 1
            self.logger.warning(f"Could not fetch {robots_url}: {e}")
            return None

    def get_stats(self) -> Dict[str, int]:
        """Get robots cache statistics."""
        with self._lock:
            cached = len(self._cache)
        return {**self.stats, 'domains_cached': cached}
