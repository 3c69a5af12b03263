"""
HTTP and WebSocket API exposing crawl statistics and search over stored pages.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from aiohttp import web, WSMsgType

from ..crawler.parser import Page
from ..storage.database import DatabaseError, DatabaseManager
from ..storage.ranking import total_page_count
from ..utils.monitoring import CrawlerMetrics


def _int_param(request: web.Request, name: str, default: int) -> int:
    try:
        return int(request.query.get(name, default))
    except ValueError:
        return default


class APIServer:
    """
    Serves /api/stats, /api/search, /api/pages, the /ws/stats feed and,
    when given a metrics object, the Prometheus text format on /metrics.

    ``stats_provider`` is any object with a ``get_stats()`` method returning
    the scheduler's statistics dict.
    """

    def __init__(self, storage: DatabaseManager, stats_provider,
                 static_dir: Optional[str] = None, search_limit: int = 10,
                 metrics: Optional[CrawlerMetrics] = None):
        self.storage = storage
        self.stats_provider = stats_provider
        self.metrics = metrics
        self.static_dir = static_dir
        self.search_limit = search_limit
        self.logger = logging.getLogger(__name__)

        self.ws_connections: Set[web.WebSocketResponse] = set()
        self._runner: Optional[web.AppRunner] = None

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get('/api/stats', self.handle_stats)
        app.router.add_get('/api/search', self.handle_search)
        app.router.add_get('/api/pages', self.handle_pages)
        app.router.add_get('/ws/stats', self.handle_websocket)
        if self.metrics is not None:
            app.router.add_get('/metrics', self.handle_metrics)

        if self.static_dir and (Path(self.static_dir) / 'index.html').exists():
            app.router.add_get('/', self.handle_index)
            app.router.add_static('/', self.static_dir)
            self.logger.info(f"Static files serving from: {self.static_dir}")

        app.on_shutdown.append(self._close_websockets)
        return app

    async def start(self, host: str = '0.0.0.0', port: int = 8080):
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        self.logger.info(f"API Server listening on {host}:{port}")

    async def stop(self):
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None

    def get_current_stats(self) -> Dict[str, Any]:
        stats = self.stats_provider.get_stats()
        return {
            'totalCrawled': stats['total_crawled'],
            'totalQueued': stats['total_queued'],
            'queueSize': stats['queue_size'],
            'crawlRate': stats['crawl_rate'],
            'crawledToQueued': stats['crawled_to_queued'],
            'uptimeMinutes': stats['uptime_minutes'],
            'status': 'running' if stats.get('is_running') else 'finished',
        }

    @staticmethod
    def _page_response(pages: List[Page], total: int, page: int, limit: int) -> Dict[str, Any]:
        return {
            'pages': [p.to_dict() for p in pages],
            'totalCount': total,
            'currentPage': page,
            'totalPages': total_page_count(total, limit),
        }

    async def handle_index(self, request: web.Request) -> web.StreamResponse:
        return web.FileResponse(Path(self.static_dir) / 'index.html')

    async def handle_stats(self, request: web.Request) -> web.Response:
        return web.json_response(self.get_current_stats())

    async def handle_metrics(self, request: web.Request) -> web.Response:
        response = web.Response(body=self.metrics.export())
        response.headers['Content-Type'] = self.metrics.content_type
        return response

    async def handle_search(self, request: web.Request) -> web.Response:
        query = request.query.get('q', '')
        page = _int_param(request, 'page', 1)
        limit = self.search_limit

        try:
            pages, total = await self.storage.search_pages(query, page, limit)
        except DatabaseError as e:
            self.logger.error(f"Error searching pages: {e}")
            return web.json_response(self._page_response([], 0, page, limit))

        return web.json_response(self._page_response(pages, total, page, limit))

    async def handle_pages(self, request: web.Request) -> web.Response:
        page = _int_param(request, 'page', 1)
        limit = _int_param(request, 'limit', 10)

        try:
            pages, total = await self.storage.get_pages(page, limit)
        except DatabaseError as e:
            self.logger.error(f"Error getting pages: {e}")
            return web.json_response(self._page_response([], 0, page, limit))

        return web.json_response(self._page_response(pages, total, page, limit))

    async def handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        self.ws_connections.add(ws)
        try:
            await ws.send_json(self.get_current_stats())
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    self.logger.warning(f"WebSocket closed with exception {ws.exception()}")
                    break
        finally:
            self.ws_connections.discard(ws)

        return ws

    async def broadcast_stats(self):
        """Send the current stats to every connected WebSocket client."""
        if not self.ws_connections:
            return

        stats = self.get_current_stats()
        for ws in list(self.ws_connections):
            try:
                await ws.send_json(stats)
            except (ConnectionResetError, RuntimeError) as e:
                self.logger.debug(f"Dropping WebSocket client: {e}")
                self.ws_connections.discard(ws)
                await ws.close()

    async def _close_websockets(self, app: web.Application):
        for ws in list(self.ws_connections):
            await ws.close()
        self.ws_connections.clear()
