"""
Request middleware: response timing headers and periodic cleanup of the
departure-board cache.
"""

import asyncio
import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from utils.cache_management import get_cache_manager

logger = logging.getLogger(__name__)


class CacheMiddleware(BaseHTTPMiddleware):

    def __init__(self, app, cleanup_interval: int = 300):
        super().__init__(app)
        self.cleanup_interval = cleanup_interval
        self.next_cleanup = time.monotonic() + cleanup_interval
        self.cache_manager = get_cache_manager()

    async def dispatch(self, request: Request, call_next):
        started = time.monotonic()
        if started >= self.next_cleanup:
            self.next_cleanup = started + self.cleanup_interval
            asyncio.create_task(self._cleanup())

        response = await call_next(request)

        stats = self.cache_manager.cache.get_stats()
        response.headers["X-Process-Time"] = f"{time.monotonic() - started:.3f}"
        response.headers["X-Cache-Size"] = str(stats["cache_size"])
        response.headers["X-Cache-Hit-Rate"] = f"{stats['hit_rate']:.3f}"
        return response

    async def _cleanup(self):
        removed = self.cache_manager.cleanup_expired_entries()
        if removed:
            logger.info(f"Departure cache cleanup: removed {removed} expired boards")


def add_cache_middleware(app, cleanup_interval: int = 300):
    app.add_middleware(CacheMiddleware, cleanup_interval=cleanup_interval)
