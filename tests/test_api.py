"""Tests for webcrawler.api.server."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from aiohttp import test_utils

from webcrawler.api.server import APIServer
from webcrawler.crawler.parser import Page
from webcrawler.storage.database import DatabaseError, DatabaseManager
from webcrawler.utils.config import DatabaseConfig
from webcrawler.utils.monitoring import CrawlerMetrics


class StubStats:
    def __init__(self, **overrides):
        self.stats = {
            "total_crawled": 12,
            "total_queued": 30,
            "queue_size": 18,
            "crawl_rate": 4.0,
            "crawled_to_queued": 0.4,
            "uptime_minutes": 3.0,
            "is_running": True,
        }
        self.stats.update(overrides)

    def get_stats(self):
        return self.stats


@pytest_asyncio.fixture
async def storage():
    db = DatabaseManager(DatabaseConfig(type="memory"))
    await db.initialize()
    for i in range(1, 26):
        await db.insert_page(Page(url=f"https://example.com/{i}", title=f"Page {i}", content="text"))
    await db.insert_page(Page(url="https://example.com/python", title="Python", content="snakes"))
    yield db
    await db.close()


@pytest_asyncio.fixture
async def api(storage):
    return APIServer(storage, StubStats(), search_limit=10)


@pytest_asyncio.fixture
async def client(api):
    async with test_utils.TestClient(test_utils.TestServer(api.create_app())) as client:
        yield client


class TestStatsEndpoint:
    @pytest.mark.asyncio
    async def test_stats(self, client):
        response = await client.get("/api/stats")
        assert response.status == 200
        assert await response.json() == {
            "totalCrawled": 12,
            "totalQueued": 30,
            "queueSize": 18,
            "crawlRate": 4.0,
            "crawledToQueued": 0.4,
            "uptimeMinutes": 3.0,
            "status": "running",
        }

    def test_finished_status(self):
        api = APIServer(None, StubStats(is_running=False))
        assert api.get_current_stats()["status"] == "finished"


class TestSearchEndpoint:
    @pytest.mark.asyncio
    async def test_search_ranked(self, client):
        response = await client.get("/api/search", params={"q": "python"})
        data = await response.json()
        assert data["totalCount"] == 1
        assert data["currentPage"] == 1
        assert data["totalPages"] == 1
        assert data["pages"][0]["url"] == "https://example.com/python"
        assert data["pages"][0]["score"] > 0

    @pytest.mark.asyncio
    async def test_search_pagination(self, client):
        response = await client.get("/api/search", params={"q": "page", "page": "3"})
        data = await response.json()
        assert data["totalCount"] == 25
        assert data["totalPages"] == 3
        assert data["currentPage"] == 3
        assert len(data["pages"]) == 5

    @pytest.mark.asyncio
    async def test_bad_page_param_defaults(self, client):
        response = await client.get("/api/search", params={"q": "page", "page": "abc"})
        data = await response.json()
        assert data["currentPage"] == 1
        assert len(data["pages"]) == 10

    @pytest.mark.asyncio
    async def test_storage_error_gives_empty_result(self, api, client):
        api.storage.search_pages = AsyncMock(side_effect=DatabaseError("down"))
        response = await client.get("/api/search", params={"q": "x"})
        assert response.status == 200
        assert await response.json() == {"pages": [], "totalCount": 0, "currentPage": 1, "totalPages": 0}


class TestPagesEndpoint:
    @pytest.mark.asyncio
    async def test_newest_first(self, client):
        response = await client.get("/api/pages", params={"page": "1", "limit": "3"})
        data = await response.json()
        assert data["totalCount"] == 26
        assert data["totalPages"] == 9
        assert [p["url"] for p in data["pages"]] == [
            "https://example.com/python",
            "https://example.com/25",
            "https://example.com/24",
        ]
        assert "score" not in data["pages"][0]

    @pytest.mark.asyncio
    async def test_past_the_end(self, client):
        response = await client.get("/api/pages", params={"page": "4", "limit": "10"})
        data = await response.json()
        assert data["pages"] == []
        assert data["totalCount"] == 26

    @pytest.mark.asyncio
    async def test_storage_disabled(self):
        db = DatabaseManager(DatabaseConfig(access=False))
        await db.initialize()
        api = APIServer(db, StubStats())
        async with test_utils.TestClient(test_utils.TestServer(api.create_app())) as client:
            response = await client.get("/api/pages")
            data = await response.json()
        assert data["pages"] == []
        assert data["totalCount"] == 0


class TestWebSocket:
    @pytest.mark.asyncio
    async def test_initial_and_broadcast(self, api, client):
        ws = await client.ws_connect("/ws/stats")
        first = await ws.receive_json()
        assert first["totalCrawled"] == 12
        assert len(api.ws_connections) == 1

        api.stats_provider.stats["total_crawled"] = 13
        await api.broadcast_stats()
        second = await ws.receive_json()
        assert second["totalCrawled"] == 13

        await ws.close()

    @pytest.mark.asyncio
    async def test_broadcast_without_clients(self, api):
        await api.broadcast_stats()
        assert api.ws_connections == set()


class TestMetricsEndpoint:
    @pytest.mark.asyncio
    async def test_metrics_exposed(self, storage):
        metrics = CrawlerMetrics()
        metrics.pages_stored.inc()
        api = APIServer(storage, StubStats(), metrics=metrics)
        async with test_utils.TestClient(test_utils.TestServer(api.create_app())) as client:
            response = await client.get("/metrics")
            assert response.status == 200
            assert response.headers["Content-Type"].startswith("text/plain")
            assert "crawler_pages_stored_total 1.0" in await response.text()

    @pytest.mark.asyncio
    async def test_no_route_without_metrics(self, client):
        response = await client.get("/metrics")
        assert response.status == 404


class TestStaticFiles:
    @pytest.mark.asyncio
    async def test_index_served(self, storage, tmp_path):
        (tmp_path / "index.html").write_text("<h1>dashboard</h1>")
        api = APIServer(storage, StubStats(), static_dir=str(tmp_path))
        async with test_utils.TestClient(test_utils.TestServer(api.create_app())) as client:
            response = await client.get("/")
            assert response.status == 200
            assert "dashboard" in await response.text()

    @pytest.mark.asyncio
    async def test_no_static_dir(self, client):
        response = await client.get("/")
        assert response.status == 404
