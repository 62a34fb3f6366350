"""
Authoritative vehicle positions from the realtime vehicles GraphQL API.

Stale-while-revalidate: a fresh list is returned as is, an expired list is
returned immediately while one background refresh runs, and a cold cache
waits for the single in-flight fetch.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

import httpx
from pydantic import ValidationError

import config
from models.pydantic_models import LineInfo, Location, Vehicle
from services.mode_classifier import normalize_transport_mode, refine_display_mode
from utils.upstream import UPSTREAM_FAILURES, post_graphql

logger = logging.getLogger(__name__)

VEHICLES_QUERY = f"""{{
  vehicles(boundingBox: {{ minLat: {config.BOUNDS_MIN_LAT}, maxLat: {config.BOUNDS_MAX_LAT}, minLon: {config.BOUNDS_MIN_LON}, maxLon: {config.BOUNDS_MAX_LON} }}) {{
    vehicleId
    lastUpdated
    location {{ latitude longitude }}
    line {{ publicCode }}
    mode
    bearing
    destinationName
  }}
}}"""


def parse_vehicle(record: Dict[str, Any]) -> Optional[Vehicle]:
    """Build a realtime Vehicle from one GraphQL record, or None when it is unusable."""
    if not isinstance(record, dict) or not record.get("vehicleId"):
        return None

    location = record.get("location") or {}
    lat, lon = location.get("latitude"), location.get("longitude")
    code = ((record.get("line") or {}).get("publicCode") or "?").strip() or "?"
    destination = record.get("destinationName")
    mode = normalize_transport_mode(record.get("mode"))

    try:
        return Vehicle(
            vehicle_id=str(record["vehicleId"]),
            mode=refine_display_mode(mode, code, destination),
            location=Location(latitude=lat, longitude=lon) if lat is not None and lon is not None else None,
            line=LineInfo(public_code=code),
            destination_name=destination,
            bearing=record.get("bearing"),
            last_updated=record.get("lastUpdated"),
            source="realtime",
        )
    except ValidationError as e:
        logger.debug(f"Dropping malformed vehicle record {record.get('vehicleId')}: {e}")
        return None


def parse_vehicles(data: Dict[str, Any]) -> List[Vehicle]:
    vehicles = []
    for record in data.get("vehicles") or []:
        vehicle = parse_vehicle(record)
        if vehicle is not None:
            vehicles.append(vehicle)
    return vehicles


class AuthoritativeVehicleCache:
    """Process-wide stale-while-revalidate cache of realtime vehicles."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str = config.VEHICLES_GRAPHQL_URL,
        ttl: float = config.VEHICLES_CACHE_TTL_S,
        retries: int = 2,
        backoff: float = config.INITIAL_BACKOFF_S,
        status_delays: Iterable[float] = config.STATUS_RETRY_DELAYS_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.url = url
        self.ttl = ttl
        self.retries = retries
        self.backoff = backoff
        self.status_delays = tuple(status_delays)
        self.clock = clock

        self.value: Optional[List[Vehicle]] = None
        self.fetched_at: Optional[float] = None
        self.last_error: Optional[str] = None
        self.fetch_count = 0
        self._inflight: Optional[asyncio.Task] = None

    @property
    def age_seconds(self) -> Optional[float]:
        if self.fetched_at is None:
            return None
        return self.clock() - self.fetched_at

    async def get(self) -> List[Vehicle]:
        """
        Current vehicles.

        Raises:
            The fetch error, only when nothing has ever been fetched
        """
        if self.value is not None and self.age_seconds <= self.ttl:
            return self.value

        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._refresh())

        if self.value is not None:
            return self.value
        return await asyncio.shield(self._inflight)

    async def _refresh(self) -> List[Vehicle]:
        try:
            self.fetch_count += 1
            data = await post_graphql(
                self.client, self.url, VEHICLES_QUERY,
                timeout=config.GRAPHQL_TIMEOUT_S, retries=self.retries, backoff=self.backoff,
                status_delays=self.status_delays,
            )
            vehicles = parse_vehicles(data)
        except UPSTREAM_FAILURES as e:
            self.last_error = str(e) or type(e).__name__
            if self.value is not None:
                logger.warning(f"Vehicle refresh failed, keeping {len(self.value)} cached vehicles: {self.last_error}")
                return self.value
            raise

        self.value = vehicles
        self.fetched_at = self.clock()
        self.last_error = None
        logger.debug(f"Realtime vehicles refreshed: {len(vehicles)}")
        return vehicles
