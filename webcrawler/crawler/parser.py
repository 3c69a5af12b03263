"""
Web page parser for extracting the title, body text and links of a page.

The parser walks the document once, in order, and stops after a fixed
number of nodes so that one huge page cannot stall the crawl.
"""

import re
import logging
from typing import List, Optional, Union, TYPE_CHECKING
from urllib.parse import urljoin, urlparse
from dataclasses import dataclass, field
from bs4 import BeautifulSoup
from bs4.element import NavigableString, PreformattedString, Tag

from .url_frontier import URLFrontier, VisitedSet

if TYPE_CHECKING:
    from .robots import RobotsChecker
    from ..storage.database import DatabaseManager


SKIP_NEXT_TAGS = {'script', 'style', 'javascript'}
SKIP_HREF_PREFIXES = ('#', 'javascript:', 'mailto:')


@dataclass
class Page:
    """A stored page. ``score`` is only set on search results."""
    url: str
    title: str = ""
    content: str = ""
    score: Optional[float] = None

    def to_dict(self) -> dict:
        data = {
            'url': self.url,
            'title': self.title,
            'content': self.content,
        }
        if self.score is not None:
            data['score'] = self.score
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'Page':
        return cls(
            url=data['url'],
            title=data.get('title') or "",
            content=data.get('content') or "",
        )


@dataclass
class ParsedContent:
    """Result of a single extraction pass."""
    url: str
    title: str = ""
    content: str = ""
    links: List[str] = field(default_factory=list)
    token_count: int = 0
    truncated: bool = False
    links_queued: int = 0
    stored: bool = False

    def to_page(self) -> Page:
        return Page(url=self.url, title=self.title, content=self.content)


def resolve_href(href: Optional[str], base_url: str) -> Optional[str]:
    """
    Turn an href into an absolute http(s) URL.
    Returns None for empty hrefs, fragments, javascript:/mailto: links and
    anything that does not resolve to http or https.
    """
    if not href:
        return None
    href = href.strip()
    if not href or href.lower().startswith(SKIP_HREF_PREFIXES):
        return None

    try:
        resolved = urljoin(base_url, href)
        parsed = urlparse(resolved)
    except ValueError:
        return None

    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        return None
    return resolved


class ContentParser:
    """
    Extracts page text and outbound links, feeds new links to the frontier
    and hands the page to storage.
    """

    def __init__(self, frontier: URLFrontier, visited: VisitedSet,
                 robots: Optional['RobotsChecker'] = None,
                 max_tokens: int = 25000, max_content_length: int = 15000,
                 persist_ceiling: int = 1000, check_robots_on_discovery: bool = True):
        self.frontier = frontier
        self.visited = visited
        self.robots = robots
        self.max_tokens = max_tokens
        self.max_content_length = max_content_length
        self.persist_ceiling = persist_ceiling
        self.check_robots_on_discovery = check_robots_on_discovery
        self.logger = logging.getLogger(__name__)

        self.whitespace_pattern = re.compile(r'\s+')

    def parse(self, url: str, html_content: Union[str, bytes]) -> ParsedContent:
        """
        Scan HTML content once and collect title, body text and links.

        Args:
            url: The URL of the page, used to resolve relative links
            html_content: Raw HTML

        Returns:
            ParsedContent with whatever was gathered before the scan ended
        """
        parsed_content = ParsedContent(url=url)

        try:
            soup = BeautifulSoup(html_content, 'lxml')
        except Exception as e:
            self.logger.error(f"Error parsing content from {url}: {e}")
            return parsed_content

        in_body = False
        skip_next = False
        awaiting_title = False
        title_found = False
        content_length = 0
        text_parts = []

        for node in soup.descendants:
            if parsed_content.token_count >= self.max_tokens:
                parsed_content.truncated = True
                break
            parsed_content.token_count += 1

            if skip_next:
                skip_next = False
                continue

            is_text = isinstance(node, NavigableString) and not isinstance(node, PreformattedString)

            if awaiting_title:
                awaiting_title = False
                if is_text:
                    if not title_found:
                        parsed_content.title = self._clean_text(str(node))
                        title_found = True
                    continue

            if isinstance(node, Tag):
                name = node.name
                if name == 'body':
                    in_body = True
                # The next descendant is the tag's own child only if it has one.
                elif name in SKIP_NEXT_TAGS:
                    skip_next = bool(node.contents)
                elif name == 'title':
                    awaiting_title = bool(node.contents)
                elif name == 'a':
                    link = resolve_href(node.get('href'), url)
                    if link:
                        parsed_content.links.append(link)

            elif is_text and in_body and content_length < self.max_content_length:
                text = str(node)
                text_parts.append(text.strip())
                content_length += len(text)

        parsed_content.content = "".join(text_parts)

        if parsed_content.truncated:
            self.logger.debug(f"Token limit reached for {url} after {parsed_content.token_count} tokens")

        return parsed_content

    async def extract(self, url: str, html_content: Union[str, bytes],
                      storage: Optional['DatabaseManager'] = None) -> ParsedContent:
        """
        Parse a fetched page, queue its unvisited links and store the page.

        The page is only stored while the visited count is below the
        persistence ceiling; queued links are kept either way.
        """
        parsed_content = self.parse(url, html_content)

        for link in parsed_content.links:
            if self.visited.contains(link):
                continue
            # Cache-only: domains not fetched yet are checked when dequeued.
            if self.robots is not None and self.check_robots_on_discovery:
                if self.robots.check_cached(link) is False:
                    self.logger.debug(f"Not queueing {link}: disallowed by robots.txt")
                    continue
            if self.frontier.enqueue(link, self.visited):
                parsed_content.links_queued += 1

        visited_count = self.visited.size()
        self.logger.info(f"Count: {visited_count} | {url} -> {parsed_content.title}")

        if visited_count < self.persist_ceiling:
            if storage is not None:
                await storage.insert_page(parsed_content.to_page())
                parsed_content.stored = True
        else:
            self.logger.debug(f"Persistence ceiling reached, not storing {url}")

        self.logger.debug(f"Parsed {url}: {len(parsed_content.links)} links, "
                          f"{parsed_content.links_queued} queued")
        return parsed_content

    def _clean_text(self, text: str) -> str:
        """Collapse whitespace."""
        if not text:
            return ""
        return self.whitespace_pattern.sub(' ', text.strip())
