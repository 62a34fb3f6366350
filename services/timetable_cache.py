"""
Shared cache of the raw Estimated Timetable document.

Every estimation pass reads the same snapshot; at most one upstream
download is in flight at any time and concurrent callers await it.
"""

import asyncio
import logging
import time
from typing import Callable, Iterable, Optional

import httpx

import config
from utils.upstream import UPSTREAM_FAILURES, RateLimitedError, UpstreamError, fetch_with_status_backoff

logger = logging.getLogger(__name__)


class TimetableSnapshotCache:
    """
    TTL cache around the ET feed with stale fallback and rate-limit cooldown.

    A failed refresh keeps serving the previous payload; only a cache that
    has never held a payload lets the error through. HTTP 502/503 is
    retried on a fixed delay schedule first. HTTP 429 opens a
    cooldown window during which the background poller skips refreshes.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str = config.ET_URL,
        ttl: float = config.ET_REFRESH_S,
        cooldown: float = config.RATE_LIMIT_COOLDOWN_S,
        retries: int = 2,
        backoff: float = config.INITIAL_BACKOFF_S,
        status_delays: Iterable[float] = config.STATUS_RETRY_DELAYS_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.url = url
        self.ttl = ttl
        self.cooldown = cooldown
        self.retries = retries
        self.backoff = backoff
        self.status_delays = tuple(status_delays)
        self.clock = clock

        self.payload: Optional[str] = None
        self.fetched_at: Optional[float] = None
        self.cooldown_until: Optional[float] = None
        self.last_error: Optional[str] = None
        self.fetch_count = 0
        self._inflight: Optional[asyncio.Task] = None

    @property
    def age_seconds(self) -> Optional[float]:
        if self.fetched_at is None:
            return None
        return self.clock() - self.fetched_at

    @property
    def in_cooldown(self) -> bool:
        return self.cooldown_until is not None and self.clock() < self.cooldown_until

    @property
    def cooldown_remaining(self) -> float:
        if not self.in_cooldown:
            return 0.0
        return self.cooldown_until - self.clock()

    def is_fresh(self) -> bool:
        return self.payload is not None and self.age_seconds <= self.ttl

    async def ensure_snapshot(self) -> str:
        """
        Return the current payload, refreshing it first when older than the TTL.

        Raises:
            The refresh error, only when no payload has ever been fetched
        """
        if self.is_fresh():
            return self.payload
        return await self.refresh()

    async def refresh(self) -> str:
        """Refresh now, joining the in-flight refresh if there is one."""
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._refresh())
        return await asyncio.shield(self._inflight)

    async def _refresh(self) -> str:
        try:
            self.fetch_count += 1
            try:
                response = await fetch_with_status_backoff(
                    self.client, "GET", self.url, delays=self.status_delays,
                    timeout=config.ET_TIMEOUT_S, retries=self.retries, backoff=self.backoff,
                )
            except RateLimitedError:
                self.cooldown_until = self.clock() + self.cooldown
                logger.warning(f"Timetable feed rate limited, pausing background refresh for {self.cooldown:.0f}s")
                raise
            if response.status_code >= 400:
                raise UpstreamError(f"ET {response.status_code}", status_code=response.status_code)

            self.payload = response.text
            self.fetched_at = self.clock()
            self.last_error = None
            logger.info(f"Timetable snapshot refreshed ({len(self.payload)} bytes)")
            return self.payload
        except UPSTREAM_FAILURES as e:
            self.last_error = str(e) or type(e).__name__
            if self.payload is not None:
                logger.warning(f"Timetable refresh failed, serving cached snapshot: {self.last_error}")
                return self.payload
            raise

    async def poll_once(self) -> None:
        """One background tick: refresh unless a rate-limit cooldown is active."""
        if self.in_cooldown:
            logger.debug(f"Timetable poll skipped, cooldown {self.cooldown_remaining:.0f}s left")
            return
        try:
            await self.refresh()
        except UPSTREAM_FAILURES as e:
            logger.warning(f"Timetable poll failed with no cached snapshot: {e}")

    async def poll_forever(self, interval: Optional[float] = None) -> None:
        interval = self.ttl if interval is None else interval
        while True:
            await self.poll_once()
            await asyncio.sleep(interval)
