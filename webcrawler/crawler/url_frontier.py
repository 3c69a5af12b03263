"""
URL Frontier implementation for managing URLs to crawl.
Implements a FIFO work queue guarded against re-queuing visited URLs.
"""

import hashlib
import logging
import threading
from collections import deque
from typing import Deque, Dict, Set


def hash_url(url: str) -> int:
    """Return a 64-bit hash of the verbatim URL string."""
    digest = hashlib.blake2b(url.encode('utf-8'), digest_size=8).digest()
    return int.from_bytes(digest, 'big')


class VisitedSet:
    """
    Thread-safe set of URLs that have been dequeued for crawling.

    Entries are keyed by a 64-bit hash, so a collision reads as "already
    visited". Nothing is ever removed.
    """

    def __init__(self, count_duplicate_adds: bool = True):
        # When True every add() bumps the counter, even for a hash that is
        # already present, which matches the crawl counts reported so far.
        self.count_duplicate_adds = count_duplicate_adds
        self._hashes: Set[int] = set()
        self._count = 0
        self._lock = threading.Lock()

    def add(self, url: str):
        """Mark a URL as visited."""
        url_hash = hash_url(url)
        with self._lock:
            is_new = url_hash not in self._hashes
            self._hashes.add(url_hash)
            if is_new or self.count_duplicate_adds:
                self._count += 1

    def contains(self, url: str) -> bool:
        """Check whether a URL has been visited."""
        url_hash = hash_url(url)
        with self._lock:
            return url_hash in self._hashes

    def size(self) -> int:
        """Number of visits recorded."""
        with self._lock:
            return self._count


class URLFrontier:
    """
    Manages URLs waiting to be crawled.
    Strict FIFO; a URL is only accepted if it is neither pending nor visited.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._elements: Deque[str] = deque()
        self._total_queued = 0
        self._lock = threading.Lock()

    def enqueue(self, url: str, visited: VisitedSet) -> bool:
        """
        Add a URL to the tail of the frontier.
        Returns True if the URL was added, False if it was visited or already pending.
        """
        with self._lock:
            if visited.contains(url):
                return False

            for existing in self._elements:
                if existing == url:
                    return False

            self._elements.append(url)
            self._total_queued += 1

        self.logger.debug(f"Added URL to frontier: {url}")
        return True

    def dequeue(self) -> str:
        """
        Remove and return the URL at the head of the frontier.
        Raises IndexError when the frontier is empty; check size() first.
        """
        with self._lock:
            return self._elements.popleft()

    def size(self) -> int:
        """Number of URLs currently pending."""
        with self._lock:
            return len(self._elements)

    def total_queued(self) -> int:
        """Number of successful enqueues since the frontier was created."""
        with self._lock:
            return self._total_queued

    def get_stats(self) -> Dict[str, int]:
        """Get frontier statistics."""
        with self._lock:
            return {
                'total_queued': self._total_queued,
                'queue_size': len(self._elements),
            }
