"""
Web Crawler System

A polite breadth-first crawler with keyword search over the crawled pages.
"""

__version__ = "1.0.0"
__description__ = "A polite breadth-first web crawler with ranked keyword search"
