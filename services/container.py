"""
Process-wide service objects.
Built once in the application lifespan, stored on ``app.state`` and handed
to the endpoints through ``get_container``.
"""

import asyncio
import logging
from typing import List, Optional

import httpx
from fastapi import Request

import config
from database_connector import DatabaseConnector
from services.journey_planner import JourneyPlannerClient
from services.mode_classifier import LineModeResolver
from services.snapshot import TransitSnapshotService
from services.stop_index import QuayCoordinateIndex, StopCoordinateResolver
from services.timetable_cache import TimetableSnapshotCache
from services.trip_shapes import TripShapeService
from services.vehicles_cache import AuthoritativeVehicleCache
from utils.upstream import default_headers

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Owns the shared HTTP client, the stop database and every cache built on them."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, db: Optional[DatabaseConnector] = None):
        self.client = client or httpx.AsyncClient(headers=default_headers(), follow_redirects=True)
        self.db = db or DatabaseConnector()

        self.planner = JourneyPlannerClient(self.client)
        self.stops = StopCoordinateResolver(self.client, self.planner, index=QuayCoordinateIndex(self.db))
        self.timetable = TimetableSnapshotCache(self.client)
        self.line_modes = LineModeResolver(self.planner)
        self.vehicles = AuthoritativeVehicleCache(self.client)
        self.trip_shapes = TripShapeService(self.planner, self.stops)
        self.snapshot = TransitSnapshotService(
            self.stops, self.timetable, self.line_modes, self.vehicles, self.trip_shapes
        )

        self._tasks: List[asyncio.Task] = []

    def start_background_jobs(self) -> None:
        """Start the timetable poller and the route-shape rebuild job."""
        self._tasks = [
            asyncio.create_task(self.timetable.poll_forever(), name="timetable-poller"),
            asyncio.create_task(self.trip_shapes.run_forever(), name="trip-shape-job"),
        ]
        logger.info(f"Started {len(self._tasks)} background jobs")

    async def close(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self.client.aclose()
        self.db.close()
        logger.info("Service container closed")


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
