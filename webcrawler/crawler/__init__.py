"""
Web crawler core components.
"""

from .url_frontier import URLFrontier, VisitedSet
from .robots import RobotsChecker, RobotsPolicy
from .fetcher import WebFetcher, BrowserFetcher, FetchResult
from .parser import ContentParser, ParsedContent, Page

__all__ = [
    'URLFrontier', 'VisitedSet',
    'RobotsChecker', 'RobotsPolicy',
    'WebFetcher', 'BrowserFetcher', 'FetchResult',
    'ContentParser', 'ParsedContent', 'Page'
]
