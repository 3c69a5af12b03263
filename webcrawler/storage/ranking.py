"""
Relevance scoring and pagination for search results.

Storage backends only decide which pages exist; ordering and slicing of
search results happens here so every backend ranks identically.
"""

from typing import Iterable, List, Sequence, TypeVar

from ..crawler.parser import Page

T = TypeVar('T')

TITLE_MATCH = 10.0
TITLE_EXACT_BONUS = 20.0
TITLE_PREFIX_BONUS = 5.0
TITLE_OCCURRENCE = 3.0

URL_MATCH = 5.0
URL_DOMAIN_BONUS = 2.0
URL_OCCURRENCE = 2.0

CONTENT_MATCH = 1.0
CONTENT_OCCURRENCE = 0.5
CONTENT_PREFIX_BONUS = 2.0

LENGTH_PENALTY_DIVISOR = 10000.0


def matches_query(page: Page, query: str) -> bool:
    """Case-insensitive substring match on title, content or URL."""
    query_lower = query.lower()
    return (query_lower in page.title.lower()
            or query_lower in page.content.lower()
            or query_lower in page.url.lower())


def calculate_score(page: Page, query: str) -> float:
    """
    Score a page against a query. Higher is more relevant, never negative.
    """
    query_lower = query.lower()
    title_lower = page.title.lower()
    content_lower = page.content.lower()
    url_lower = page.url.lower()

    score = 0.0

    if query_lower:
        # Title matches (highest weight)
        if query_lower in title_lower:
            score += TITLE_MATCH
            if title_lower == query_lower:
                score += TITLE_EXACT_BONUS
            if title_lower.startswith(query_lower):
                score += TITLE_PREFIX_BONUS
            score += title_lower.count(query_lower) * TITLE_OCCURRENCE

        # URL matches
        if query_lower in url_lower:
            score += URL_MATCH
            # Same condition as above, so every URL match gets both bonuses.
            if query_lower in url_lower:
                score += URL_DOMAIN_BONUS
            score += url_lower.count(query_lower) * URL_OCCURRENCE

        # Content matches (lower weight)
        if query_lower in content_lower:
            score += CONTENT_MATCH
            score += content_lower.count(query_lower) * CONTENT_OCCURRENCE
            if content_lower.startswith(query_lower):
                score += CONTENT_PREFIX_BONUS

    if page.content:
        score -= len(page.content) / LENGTH_PENALTY_DIVISOR

    return max(score, 0.0)


def rank_pages(pages: Iterable[Page], query: str) -> List[Page]:
    """
    Score every page and sort by descending score.
    The sort is stable: equal scores keep the order the pages were given in.
    """
    ranked = list(pages)
    for page in ranked:
        page.score = calculate_score(page, query)
    ranked.sort(key=lambda p: p.score, reverse=True)
    return ranked


def paginate(items: Sequence[T], page: int, limit: int) -> List[T]:
    """Return the 1-based ``page`` of ``limit`` items; empty past the end."""
    if limit <= 0:
        return []
    start = (max(page, 1) - 1) * limit
    if start >= len(items):
        return []
    return list(items[start:start + limit])


def total_page_count(total: int, limit: int) -> int:
    if limit <= 0:
        return 0
    return (total + limit - 1) // limit
