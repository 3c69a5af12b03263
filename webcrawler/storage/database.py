"""
Database storage layer for crawled pages.
Supports in-memory, file-based and Redis storage.
"""

import hashlib
import json
import logging
from pathlib import Path
from typing import Optional, Dict, List, Any, Tuple
from datetime import datetime, timezone

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..crawler.parser import Page
from ..utils.config import DatabaseConfig, RedisConfig
from .ranking import matches_query, paginate, rank_pages


class DatabaseError(Exception):
    """Custom exception for database operations."""
    pass


def url_key(url: str) -> str:
    return hashlib.sha256(url.encode('utf-8')).hexdigest()


class StorageBackend:
    """Abstract base class for storage backends."""

    async def initialize(self, clear: bool = False):
        """Initialize the storage backend, optionally wiping existing pages."""
        raise NotImplementedError

    async def store_page(self, page: Page) -> bool:
        """Store a page. Returns False on failure."""
        raise NotImplementedError

    async def load_pages(self) -> List[Page]:
        """All stored pages, oldest first."""
        raise NotImplementedError

    async def list_pages(self, offset: int, limit: int) -> List[Page]:
        """A slice of stored pages, newest first."""
        raise NotImplementedError

    async def count_pages(self) -> int:
        raise NotImplementedError

    async def get_stats(self) -> Dict[str, Any]:
        """Get storage statistics."""
        raise NotImplementedError

    async def close(self):
        """Close storage connections."""
        raise NotImplementedError


class MemoryStorageBackend(StorageBackend):
    """Keeps pages in a list. Nothing survives the process."""

    def __init__(self):
        self.pages: List[Page] = []
        self.stats = {'total_stored': 0}

    async def initialize(self, clear: bool = False):
        if clear:
            self.pages.clear()

    async def store_page(self, page: Page) -> bool:
        self.pages.append(Page(url=page.url, title=page.title, content=page.content))
        self.stats['total_stored'] += 1
        return True

    async def load_pages(self) -> List[Page]:
        return [Page(url=p.url, title=p.title, content=p.content) for p in self.pages]

    async def list_pages(self, offset: int, limit: int) -> List[Page]:
        newest_first = list(reversed(self.pages))
        return [Page(url=p.url, title=p.title, content=p.content)
                for p in newest_first[offset:offset + limit]]

    async def count_pages(self) -> int:
        return len(self.pages)

    async def get_stats(self) -> Dict[str, Any]:
        return {**self.stats, 'pages': len(self.pages)}

    async def close(self):
        pass


class FileStorageBackend(StorageBackend):
    """File-based storage backend for development and small-scale deployments."""

    def __init__(self, data_directory: str):
        self.data_directory = Path(data_directory)
        self.index_file = self.data_directory / 'index' / 'url_index.json'
        self.logger = logging.getLogger(__name__)
        # url -> relative file path, in insertion order
        self.index: Dict[str, str] = {}
        self.stats = {
            'total_stored': 0,
            'storage_errors': 0,
        }

    async def initialize(self, clear: bool = False):
        """Create data directory structure."""
        try:
            self.data_directory.mkdir(parents=True, exist_ok=True)
            (self.data_directory / 'content').mkdir(exist_ok=True)
            self.index_file.parent.mkdir(exist_ok=True)

            if clear:
                for file_path in (self.data_directory / 'content').rglob('*.json'):
                    file_path.unlink()
                self.index = {}
                self._save_index()
            elif self.index_file.exists():
                with open(self.index_file, 'r', encoding='utf-8') as f:
                    self.index = {entry['url']: entry['file_path'] for entry in json.load(f)}

            self.logger.info(f"File storage initialized at {self.data_directory}")

        except (OSError, ValueError, KeyError) as e:
            raise DatabaseError(f"Failed to initialize file storage: {e}")

    def _get_file_path(self, url: str) -> Path:
        """Generate file path for URL."""
        url_hash = url_key(url)
        # Use first 2 chars for directory structure
        return self.data_directory / 'content' / url_hash[:2] / f"{url_hash}.json"

    def _save_index(self):
        entries = [{'url': url, 'file_path': path} for url, path in self.index.items()]
        with open(self.index_file, 'w', encoding='utf-8') as f:
            json.dump(entries, f, ensure_ascii=False)

    async def store_page(self, page: Page) -> bool:
        """Store a page to its own JSON file and record it in the index."""
        try:
            file_path = self._get_file_path(page.url)
            file_path.parent.mkdir(parents=True, exist_ok=True)

            data = {
                'url': page.url,
                'title': page.title,
                'content': page.content,
                'stored_at': datetime.now(timezone.utc).isoformat(),
            }
            with open(file_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False)

            if page.url not in self.index:
                self.index[page.url] = str(file_path.relative_to(self.data_directory))
                self._save_index()

            self.stats['total_stored'] += 1
            self.logger.debug(f"Stored page to {file_path}")
            return True

        except (OSError, TypeError, ValueError) as e:
            self.stats['storage_errors'] += 1
            self.logger.error(f"Error storing page {page.url}: {e}")
            return False

    def _read_page(self, relative_path: str) -> Optional[Page]:
        try:
            with open(self.data_directory / relative_path, 'r', encoding='utf-8') as f:
                return Page.from_dict(json.load(f))
        except (OSError, ValueError, KeyError) as e:
            self.logger.error(f"Error reading page file {relative_path}: {e}")
            return None

    async def load_pages(self) -> List[Page]:
        pages = [self._read_page(path) for path in self.index.values()]
        return [page for page in pages if page is not None]

    async def list_pages(self, offset: int, limit: int) -> List[Page]:
        paths = list(reversed(list(self.index.values())))[offset:offset + limit]
        pages = [self._read_page(path) for path in paths]
        return [page for page in pages if page is not None]

    async def count_pages(self) -> int:
        return len(self.index)

    async def get_stats(self) -> Dict[str, Any]:
        return {**self.stats, 'pages': len(self.index)}

    async def close(self):
        self.logger.debug(f"File storage closed with {len(self.index)} pages indexed")


class RedisStorageBackend(StorageBackend):
    """
    Redis storage backend. Each page is a hash; a list holds the page keys
    with the newest first.
    """

    def __init__(self, config: RedisConfig, client: Optional[redis.Redis] = None):
        self.config = config
        self.client = client
        self.logger = logging.getLogger(__name__)
        self.pages_key = f"{config.key_prefix}:pages"
        self.page_prefix = f"{config.key_prefix}:page:"
        self.stats = {
            'total_stored': 0,
            'storage_errors': 0,
        }

    async def initialize(self, clear: bool = False):
        try:
            if self.client is None:
                self.client = redis.Redis(
                    host=self.config.host,
                    port=self.config.port,
                    db=self.config.db,
                    password=self.config.password,
                    decode_responses=True
                )
            await self.client.ping()

            if clear:
                keys = [key async for key in self.client.scan_iter(match=f"{self.page_prefix}*")]
                keys.append(self.pages_key)
                await self.client.delete(*keys)
                self.logger.info("Database cleared - all previous pages deleted")

            self.logger.info(f"Redis storage initialized at {self.config.host}:{self.config.port}")

        except RedisError as e:
            raise DatabaseError(f"Failed to initialize Redis storage: {e}")

    async def store_page(self, page: Page) -> bool:
        try:
            key = f"{self.page_prefix}{url_key(page.url)}"
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hset(key, mapping={
                    'url': page.url,
                    'title': page.title,
                    'content': page.content,
                })
                pipe.lpush(self.pages_key, key)
                await pipe.execute()

            self.stats['total_stored'] += 1
            return True

        except RedisError as e:
            self.stats['storage_errors'] += 1
            self.logger.error(f"Error storing page {page.url}: {e}")
            return False

    async def _fetch_pages(self, keys: List[str]) -> List[Page]:
        if not keys:
            return []
        async with self.client.pipeline(transaction=False) as pipe:
            for key in keys:
                pipe.hgetall(key)
            rows = await pipe.execute()
        return [Page.from_dict(row) for row in rows if row]

    async def load_pages(self) -> List[Page]:
        try:
            keys = await self.client.lrange(self.pages_key, 0, -1)
            return await self._fetch_pages(list(reversed(keys)))
        except RedisError as e:
            raise DatabaseError(f"Failed to load pages: {e}")

    async def list_pages(self, offset: int, limit: int) -> List[Page]:
        try:
            keys = await self.client.lrange(self.pages_key, offset, offset + limit - 1)
            return await self._fetch_pages(keys)
        except RedisError as e:
            raise DatabaseError(f"Failed to list pages: {e}")

    async def count_pages(self) -> int:
        try:
            return await self.client.llen(self.pages_key)
        except RedisError as e:
            raise DatabaseError(f"Failed to count pages: {e}")

    async def get_stats(self) -> Dict[str, Any]:
        return self.stats.copy()

    async def close(self):
        if self.client is not None:
            await self.client.aclose()
            self.client = None
            self.logger.info("Redis connection closed")


class DatabaseManager:
    """
    Main database manager that handles different storage backends.

    Exposes insert/search/list/count independently of the backend. With
    ``access`` disabled inserts are dropped and queries raise DatabaseError.
    """

    def __init__(self, config: DatabaseConfig, redis_config: Optional[RedisConfig] = None,
                 backend: Optional[StorageBackend] = None):
        self.config = config
        self.redis_config = redis_config or RedisConfig()
        self.backend = backend
        self.logger = logging.getLogger(__name__)

    @property
    def access(self) -> bool:
        return self.config.access

    async def initialize(self):
        """Initialize the appropriate storage backend."""
        if not self.access:
            self.logger.warning("Database access disabled; pages will not be stored")
            return

        if self.backend is None:
            self.backend = self._create_backend()

        await self.backend.initialize(clear=self.config.clear_on_start)
        self.logger.info(f"Database manager initialized with {self.config.type} backend")

    def _create_backend(self) -> StorageBackend:
        backend_type = self.config.type.lower()
        if backend_type == 'memory':
            return MemoryStorageBackend()
        if backend_type == 'file':
            return FileStorageBackend(self.config.data_directory)
        if backend_type == 'redis':
            return RedisStorageBackend(self.redis_config)
        raise DatabaseError(f"Unknown database type: {backend_type}")

    def _require_backend(self) -> StorageBackend:
        if not self.access:
            raise DatabaseError("Database not accessible")
        if self.backend is None:
            raise DatabaseError("Database not initialized")
        return self.backend

    async def insert_page(self, page: Page) -> bool:
        """Store a page. Failures are logged, never raised."""
        if not self.access or self.backend is None:
            self.logger.info(f"Database not accessible, cannot insert page: {page.url}")
            return False

        stored = await self.backend.store_page(page)
        if stored:
            self.logger.debug(f"Successfully inserted page: {page.url}")
        return stored

    async def search_pages(self, query: str, page: int = 1, limit: int = 10) -> Tuple[List[Page], int]:
        """
        Search stored pages, rank them and return one page of results.

        Returns:
            (pages, total number of matches)
        """
        backend = self._require_backend()

        matches = [p for p in await backend.load_pages() if matches_query(p, query)]
        self.logger.debug(f"Search for '{query}' matched {len(matches)} pages")

        ranked = rank_pages(matches, query)
        return paginate(ranked, page, limit), len(matches)

    async def get_pages(self, page: int = 1, limit: int = 10) -> Tuple[List[Page], int]:
        """Newest pages first, paginated."""
        backend = self._require_backend()

        total = await backend.count_pages()
        if limit <= 0:
            return [], total
        offset = (max(page, 1) - 1) * limit
        if offset >= total:
            return [], total
        return await backend.list_pages(offset, limit), total

    async def count_pages(self) -> int:
        return await self._require_backend().count_pages()

    async def get_stats(self) -> Dict[str, Any]:
        """Get storage statistics."""
        if not self.access or self.backend is None:
            return {'access': False}
        return await self.backend.get_stats()

    async def close(self):
        """Close database connections."""
        if self.backend:
            await self.backend.close()
