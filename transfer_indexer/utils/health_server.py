"""
HTTP health endpoint for the running indexer.

Routes:
  GET /health - indexer status and counters
  GET /       - same as /health
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import ujson
from aiohttp import web

logger = logging.getLogger(__name__)

SERVICE_NAME = "transfer-indexer"


def _json(data: Dict[str, Any], status: int = 200) -> web.Response:
    return web.json_response(data, status=status, dumps=ujson.dumps)


class HealthServer:
    """Lightweight aiohttp server reporting the indexer state."""

    def __init__(self, indexer, host: str = "0.0.0.0", port: int = 3001):
        self.indexer = indexer
        self.host = host
        self.port = port
        self.started_at = time.time()
        self._runner: Optional[web.AppRunner] = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self.handle_health)
        app.router.add_get("/", self.handle_health)
        app.router.add_route("*", "/{tail:.*}", self.handle_not_found)
        return app

    async def start(self) -> None:
        """Start the HTTP server."""
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"Health server listening on http://{self.host}:{self.port}/health")

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Health server stopped")

    async def handle_health(self, request: web.Request) -> web.Response:
        try:
            stats = self.indexer.get_stats()
            total = await self.indexer.storage.count_transfers()
        except Exception as e:
            logger.warning(f"Health request failed: {e}")
            return _json({"status": "error", "message": str(e)}, status=500)

        return _json({
            "status": "ok" if stats.running else "stopped",
            "service": SERVICE_NAME,
            "last_indexed_slot": stats.last_checkpoint,
            "transfers_indexed_session": stats.session_inserted_count,
            "transfers_total": total,
            "pending_buffer_size": stats.pending_buffer_size,
            "reconnect_attempts": stats.reconnect_attempts,
            "connection_state": stats.connection_state,
            "uptime_seconds": int(time.time() - self.started_at),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def handle_not_found(self, request: web.Request) -> web.Response:
        return _json({"error": "Not found"}, status=404)
