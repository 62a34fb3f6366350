"""
Live snapshot orchestration.

Runs the whole pipeline (stop index, timetable feed, line modes,
position estimates, route shapes, realtime vehicles, merge) and caches
the computed result for a short TTL. A failed recomputation serves the
last good result marked stale.
"""

import asyncio
import logging
import time
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import config
from models.pydantic_models import LiveSnapshot, RouteShape
from services.position_estimator import estimate_vehicles
from services.reconciler import merge
from services.shape_builder import build_shapes
from services.siri_parser import parse_estimated_timetable
from utils.upstream import UPSTREAM_FAILURES

logger = logging.getLogger(__name__)


class SnapshotUnavailableError(Exception):
    """Raised when no snapshot has ever been computed and the current attempt failed."""


def _now_ms() -> int:
    return int(time.time() * 1000)


class TransitSnapshotService:
    """
    Computes and caches the merged vehicle list and route shapes.

    Concurrent callers share one computation. The cached result is served
    as is while younger than ``ttl``.
    """

    def __init__(
        self,
        stops,
        timetable,
        line_modes,
        vehicles,
        trip_shapes,
        ttl: float = config.ESTIMATE_CACHE_TTL_S,
        clock: Callable[[], float] = time.monotonic,
        now_ms: Callable[[], int] = _now_ms,
    ):
        self.stops = stops
        self.timetable = timetable
        self.line_modes = line_modes
        self.vehicles = vehicles
        self.trip_shapes = trip_shapes
        self.ttl = ttl
        self.clock = clock
        self.now_ms = now_ms

        self.result: Optional[LiveSnapshot] = None
        self.computed_at: Optional[float] = None
        self.last_error: Optional[str] = None
        self._inflight: Optional[asyncio.Task] = None

    @property
    def age_seconds(self) -> Optional[float]:
        if self.computed_at is None:
            return None
        return self.clock() - self.computed_at

    def is_fresh(self) -> bool:
        return self.result is not None and self.age_seconds < self.ttl

    async def get(self) -> LiveSnapshot:
        """
        Current snapshot, recomputing it when older than the TTL.

        Returns:
            The snapshot; ``stale`` is set when the latest recomputation failed

        Raises:
            SnapshotUnavailableError: Nothing has ever been computed
        """
        if not self.is_fresh():
            if self._inflight is None or self._inflight.done():
                self._inflight = asyncio.create_task(self._recompute())
            await asyncio.shield(self._inflight)

        if self.result is None:
            raise SnapshotUnavailableError(self.last_error or "Live data is not available yet")
        return self._decorate(self.result)

    def _decorate(self, result: LiveSnapshot) -> LiveSnapshot:
        stale = self.last_error is not None
        return result.model_copy(update={
            "route_shapes": self.route_shapes(),
            "age_seconds": round(self.age_seconds, 1),
            "stale": stale,
            "error": self.last_error,
            "poll_interval_seconds": config.POLL_INTERVAL_BACKOFF_S if stale else config.POLL_INTERVAL_S,
        })

    async def _recompute(self) -> None:
        try:
            self.result = await self.compute()
            self.computed_at = self.clock()
            # the timetable cache falls back to its previous payload on failure
            self.last_error = self.timetable.last_error
            if self.last_error is not None:
                logger.warning(f"Snapshot computed from a stale timetable: {self.last_error}")
        except (*UPSTREAM_FAILURES, ET.ParseError) as e:
            self.last_error = str(e) or type(e).__name__
            if self.result is not None:
                logger.warning(f"Snapshot refresh failed, serving previous result: {self.last_error}")
            else:
                logger.error(f"Snapshot computation failed with nothing cached: {self.last_error}")

    async def compute(self) -> LiveSnapshot:
        """Run the full pipeline once."""
        await self.stops.ensure_loaded()
        xml_text = await self.timetable.ensure_snapshot()
        journeys = await self.line_modes.apply(parse_estimated_timetable(xml_text))

        names: Dict[str, str] = {}
        for journey in journeys:
            for call in journey.all_calls:
                if call.name:
                    names.setdefault(call.quay_id, call.name)
        await self.stops.resolve_many(dict.fromkeys(q for j in journeys for q in j.quay_ids), names)

        estimated = estimate_vehicles(journeys, self.stops.get, self.now_ms())
        shapes = build_shapes(journeys, self.stops.get)

        try:
            authoritative = await self.vehicles.get()
        except UPSTREAM_FAILURES as e:
            logger.warning(f"Realtime vehicles unavailable, serving estimates only: {e}")
            authoritative = []

        vehicles = merge(authoritative, estimated)
        logger.info(
            f"Snapshot computed: {len(journeys)} journeys, {len(authoritative)} realtime, "
            f"{len(estimated)} estimated, {len(vehicles)} merged, {len(shapes)} shapes"
        )
        return LiveSnapshot(
            vehicles=vehicles,
            route_shapes=shapes,
            updated_at=datetime.now(timezone.utc).isoformat(),
        )

    def route_shapes(self) -> List[RouteShape]:
        """Timetable shapes from the last computation followed by the rail and airport coach shapes."""
        timetable_shapes = self.result.route_shapes if self.result is not None else []
        return list(timetable_shapes) + list(self.trip_shapes.current())

    @property
    def vehicle_count(self) -> int:
        return len(self.result.vehicles) if self.result is not None else 0
