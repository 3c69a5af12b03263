"""Tests for webcrawler.storage.database."""

from __future__ import annotations

import fnmatch

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

from webcrawler.crawler.parser import Page
from webcrawler.storage.database import (
    DatabaseError,
    DatabaseManager,
    FileStorageBackend,
    MemoryStorageBackend,
    RedisStorageBackend,
)
from webcrawler.utils.config import DatabaseConfig, RedisConfig


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def hset(self, key, mapping):
        self.commands.append(("hset", key, mapping))
        return self

    def lpush(self, key, value):
        self.commands.append(("lpush", key, value))
        return self

    def hgetall(self, key):
        self.commands.append(("hgetall", key))
        return self

    async def execute(self):
        results = []
        for command, key, *args in self.commands:
            if command == "hset":
                self.client.hashes[key] = dict(args[0])
                results.append(len(args[0]))
            elif command == "lpush":
                self.client.lists.setdefault(key, []).insert(0, args[0])
                results.append(len(self.client.lists[key]))
            elif command == "hgetall":
                results.append(dict(self.client.hashes.get(key, {})))
        return results


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the page store."""

    def __init__(self, fail=False):
        self.hashes = {}
        self.lists = {}
        self.fail = fail
        self.closed = False

    async def ping(self):
        if self.fail:
            raise RedisConnectionError("connection refused")
        return True

    async def scan_iter(self, match):
        for key in list(self.hashes):
            if fnmatch.fnmatch(key, match):
                yield key

    async def delete(self, *keys):
        for key in keys:
            self.hashes.pop(key, None)
            self.lists.pop(key, None)

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def lrange(self, key, start, end):
        items = self.lists.get(key, [])
        return items[start:] if end == -1 else items[start:end + 1]

    async def llen(self, key):
        return len(self.lists.get(key, []))

    async def aclose(self):
        self.closed = True


def make_pages(count):
    return [Page(url=f"https://example.com/{i}", title=f"Page {i}", content=f"content {i}")
            for i in range(1, count + 1)]


@pytest_asyncio.fixture(params=["memory", "file", "redis"])
async def manager(request, tmp_path):
    config = DatabaseConfig(access=True, type=request.param, data_directory=str(tmp_path / "data"))
    backend = None
    if request.param == "redis":
        backend = RedisStorageBackend(RedisConfig(), client=FakeRedis())
    db = DatabaseManager(config, backend=backend)
    await db.initialize()
    yield db
    await db.close()


class TestDatabaseManager:
    @pytest.mark.asyncio
    async def test_insert_and_count(self, manager):
        for page in make_pages(3):
            assert await manager.insert_page(page)
        assert await manager.count_pages() == 3

    @pytest.mark.asyncio
    async def test_get_pages_pagination(self, manager):
        for page in make_pages(25):
            await manager.insert_page(page)

        # Newest first: listing position n holds page 26 - n.
        pages, total = await manager.get_pages(page=2, limit=10)
        assert total == 25
        assert [p.url for p in pages] == [f"https://example.com/{i}" for i in range(15, 5, -1)]

        pages, total = await manager.get_pages(page=3, limit=10)
        assert total == 25
        assert [p.url for p in pages] == [f"https://example.com/{i}" for i in range(5, 0, -1)]

        pages, total = await manager.get_pages(page=4, limit=10)
        assert pages == []
        assert total == 25

    @pytest.mark.asyncio
    async def test_search_ranks_and_filters(self, manager):
        await manager.insert_page(Page(url="https://a.com/1", title="Intro", content="python basics"))
        await manager.insert_page(Page(url="https://a.com/2", title="Python", content=""))
        await manager.insert_page(Page(url="https://a.com/3", title="Cooking", content="pasta"))
        await manager.insert_page(Page(url="https://a.com/python", title="", content=""))

        pages, total = await manager.search_pages("PYTHON", page=1, limit=10)
        assert total == 3
        assert [p.url for p in pages] == ["https://a.com/2", "https://a.com/python", "https://a.com/1"]
        assert pages[0].score > pages[1].score > pages[2].score

    @pytest.mark.asyncio
    async def test_search_pagination_keeps_total(self, manager):
        for page in make_pages(25):
            await manager.insert_page(page)
        pages, total = await manager.search_pages("page", page=3, limit=10)
        assert total == 25
        assert len(pages) == 5
        pages, total = await manager.search_pages("page", page=4, limit=10)
        assert pages == []
        assert total == 25

    @pytest.mark.asyncio
    async def test_search_equal_scores_in_insertion_order(self, manager):
        for page in make_pages(3):
            await manager.insert_page(page)
        pages, _ = await manager.search_pages("content", page=1, limit=10)
        assert [p.url for p in pages] == [f"https://example.com/{i}" for i in (1, 2, 3)]

    @pytest.mark.asyncio
    async def test_stored_pages_have_no_score(self, manager):
        await manager.insert_page(Page(url="https://a.com/", title="Go", content=""))
        await manager.search_pages("go")
        pages, _ = await manager.get_pages()
        assert pages[0].score is None
        assert "score" not in pages[0].to_dict()


class TestDisabledAccess:
    @pytest.mark.asyncio
    async def test_insert_dropped(self):
        db = DatabaseManager(DatabaseConfig(access=False))
        await db.initialize()
        assert not await db.insert_page(Page(url="https://a.com/"))
        assert await db.get_stats() == {"access": False}

    @pytest.mark.asyncio
    async def test_queries_raise(self):
        db = DatabaseManager(DatabaseConfig(access=False))
        await db.initialize()
        with pytest.raises(DatabaseError):
            await db.search_pages("x")
        with pytest.raises(DatabaseError):
            await db.get_pages()
        with pytest.raises(DatabaseError):
            await db.count_pages()

    @pytest.mark.asyncio
    async def test_unknown_backend(self):
        db = DatabaseManager(DatabaseConfig(type="nosql"))
        with pytest.raises(DatabaseError):
            await db.initialize()


class TestFileStorageBackend:
    @pytest.mark.asyncio
    async def test_pages_survive_reopen_without_clear(self, tmp_path):
        backend = FileStorageBackend(str(tmp_path))
        await backend.initialize()
        await backend.store_page(Page(url="https://a.com/", title="A", content="a"))
        await backend.close()

        reopened = FileStorageBackend(str(tmp_path))
        await reopened.initialize(clear=False)
        assert await reopened.load_pages() == [Page(url="https://a.com/", title="A", content="a")]

    @pytest.mark.asyncio
    async def test_clear_on_start(self, tmp_path):
        backend = FileStorageBackend(str(tmp_path))
        await backend.initialize()
        await backend.store_page(Page(url="https://a.com/", title="A", content="a"))

        cleared = FileStorageBackend(str(tmp_path))
        await cleared.initialize(clear=True)
        assert await cleared.count_pages() == 0
        assert list((tmp_path / "content").rglob("*.json")) == []

    @pytest.mark.asyncio
    async def test_same_url_indexed_once(self, tmp_path):
        backend = FileStorageBackend(str(tmp_path))
        await backend.initialize()
        await backend.store_page(Page(url="https://a.com/", title="Old"))
        await backend.store_page(Page(url="https://a.com/", title="New"))
        assert await backend.count_pages() == 1
        assert (await backend.load_pages())[0].title == "New"


class TestMemoryStorageBackend:
    @pytest.mark.asyncio
    async def test_clear(self):
        backend = MemoryStorageBackend()
        await backend.store_page(Page(url="https://a.com/"))
        await backend.initialize(clear=True)
        assert await backend.count_pages() == 0


class TestRedisStorageBackend:
    @pytest.mark.asyncio
    async def test_clear_on_start_removes_pages(self):
        client = FakeRedis()
        backend = RedisStorageBackend(RedisConfig(key_prefix="test"), client=client)
        await backend.initialize()
        await backend.store_page(Page(url="https://a.com/", title="A"))
        assert await backend.count_pages() == 1

        await backend.initialize(clear=True)
        assert await backend.count_pages() == 0
        assert client.hashes == {}

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        backend = RedisStorageBackend(RedisConfig(), client=FakeRedis(fail=True))
        with pytest.raises(DatabaseError):
            await backend.initialize()

    @pytest.mark.asyncio
    async def test_close(self):
        client = FakeRedis()
        backend = RedisStorageBackend(RedisConfig(), client=client)
        await backend.close()
        assert client.closed
