"""
Storage layer for the web crawler system.
"""

from .database import DatabaseManager, DatabaseError
from .ranking import calculate_score, rank_pages, paginate

__all__ = ['DatabaseManager', 'DatabaseError', 'calculate_score', 'rank_pages', 'paginate']
