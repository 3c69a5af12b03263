"""
HTTP API for the web crawler system.
"""

from .server import APIServer

__all__ = ['APIServer']
