"""
Rail and airport-coach route shapes from journey-planner trip searches.

The timetable feed's stop sequences are unreliable for these modes, so
their geometry comes from trip queries between hub stations. Trips are
discovered from hub departure boards, falling back to a fixed trip list;
when every query fails a coarse static geometry set is served instead.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import config
from models.domain_models import Mode, TripRequest
from models.pydantic_models import QuayStop, RouteShape
from services.mode_classifier import FLYTOG_CODE_RE
from utils.geospatial import decode_polyline
from utils.upstream import UPSTREAM_FAILURES

logger = logging.getLogger(__name__)

OSLO_S = ("NSR:StopPlace:59872", "Oslo S")
NATIONALTHEATRET = ("NSR:StopPlace:288", "Nationaltheatret")
OSLO_LUFTHAVN = ("NSR:StopPlace:269", "Oslo lufthavn")
OSLO_BUSSTERMINAL = ("NSR:StopPlace:6505", "Oslo Bussterminal")
LILLESTROM = ("NSR:StopPlace:6234", "Lillestrøm")
SKI = ("NSR:StopPlace:6010", "Ski")
DRAMMEN = ("NSR:StopPlace:11", "Drammen stasjon")

RAIL_HUBS = [OSLO_S, NATIONALTHEATRET, OSLO_LUFTHAVN]
AIRPORT_COACH_HUBS = [OSLO_BUSSTERMINAL, OSLO_LUFTHAVN]

RAIL_MODES = ["rail"]
AIRPORT_COACH_MODES = ["bus", "coach"]
AIRPORT_COACH_CODE_RE = re.compile(r"^(FB|NW)\d*$", re.IGNORECASE)


def _both_ways(pairs: Iterable[Tuple[Tuple[str, str], Tuple[str, str]]]) -> List[TripRequest]:
    trips = []
    for a, b in pairs:
        trips.append(TripRequest(a[0], a[1], b[0], b[1]))
        trips.append(TripRequest(b[0], b[1], a[0], a[1]))
    return trips


RAIL_TRIPS = _both_ways([
    (DRAMMEN, NATIONALTHEATRET),
    (LILLESTROM, NATIONALTHEATRET),
    (SKI, NATIONALTHEATRET),
    (OSLO_LUFTHAVN, NATIONALTHEATRET),
    (OSLO_S, LILLESTROM),
    (OSLO_S, SKI),
    (OSLO_S, DRAMMEN),
])

AIRPORT_COACH_TRIPS = _both_ways([
    (OSLO_BUSSTERMINAL, OSLO_LUFTHAVN),
    (OSLO_S, OSLO_LUFTHAVN),
])


@dataclass
class TripLeg:
    """One leg of a trip pattern, before its quays are resolved."""
    mode: Mode
    line: str
    from_name: str
    to_name: str
    via: Optional[str]
    quays: List[Tuple[str, str]] = field(default_factory=list)
    encoded_points: Optional[str] = None


def discover_trips(boards: Dict[Tuple[str, str], dict], modes: Sequence[str],
                   code_filter: Optional[re.Pattern] = None) -> List[TripRequest]:
    """
    Derive hub-to-destination trips from departure boards.

    Args:
        boards: Departure board per (stop place id, name) hub
        modes: Line transport modes to keep
        code_filter: Optional pattern the line's public code must match

    Returns:
        Unique trips from each hub to the final stop place of its departures
    """
    seen = set()
    trips = []
    for (hub_id, hub_name), board in boards.items():
        for call in board.get("estimatedCalls") or []:
            journey = call.get("serviceJourney") or {}
            line = journey.get("line") or {}
            if (line.get("transportMode") or "").lower() not in modes:
                continue
            if code_filter and not code_filter.match(line.get("publicCode") or ""):
                continue
            quays = [q for q in journey.get("quays") or [] if isinstance(q, dict)]
            destination = (quays[-1].get("stopPlace") or {}) if quays else {}
            dest_id, dest_name = destination.get("id"), destination.get("name") or ""
            if not dest_id or dest_id == hub_id or (hub_id, dest_id) in seen:
                continue
            seen.add((hub_id, dest_id))
            trips.append(TripRequest(hub_id, board.get("name") or hub_name, dest_id, dest_name))
    return trips


def legs_from_trip(legs: Iterable[dict], rail: bool) -> List[TripLeg]:
    """Keep the legs of the wanted kind that carry either geometry or at least two quays."""
    result = []
    for leg in legs:
        code = ((leg.get("line") or {}).get("publicCode") or "").strip()
        if not code:
            continue
        if not rail and not AIRPORT_COACH_CODE_RE.match(code):
            continue

        from_quay = ((leg.get("fromEstimatedCall") or {}).get("quay") or {})
        to_quay = ((leg.get("toEstimatedCall") or {}).get("quay") or {})
        quays: List[Tuple[str, str]] = []
        if from_quay.get("id"):
            quays.append((from_quay["id"], from_quay.get("name") or ""))
        for call in leg.get("intermediateEstimatedCalls") or []:
            quay = (call or {}).get("quay") or {}
            if quay.get("id") and quay["id"] != from_quay.get("id"):
                quays.append((quay["id"], quay.get("name") or ""))
        if to_quay.get("id") and to_quay["id"] != from_quay.get("id"):
            quays.append((to_quay["id"], to_quay.get("name") or ""))

        encoded = (leg.get("pointsOnLink") or {}).get("points")
        if len(quays) < 2 and not encoded:
            continue

        if rail:
            mode = Mode.FLYTOG if FLYTOG_CODE_RE.match(code) else Mode.RAIL
        else:
            mode = Mode.FLYBUSS
        result.append(TripLeg(
            mode=mode,
            line=code,
            from_name=(quays[0][1] if quays else "") or (leg.get("fromPlace") or {}).get("name", "") or "",
            to_name=(quays[-1][1] if quays else "") or (leg.get("toPlace") or {}).get("name", "") or "",
            via=(quays[len(quays) // 2][1] or None) if len(quays) > 2 else None,
            quays=quays,
            encoded_points=encoded,
        ))
    return result


def shapes_from_legs(legs: Iterable[TripLeg], lookup: Callable[[str], Optional[Tuple[float, float]]]) -> List[RouteShape]:
    """
    Turn legs into shapes: decoded geometry when present, quay chaining otherwise.
    Shapes are unique by line and first point (rounded to 4 decimals).
    """
    shapes = []
    seen = set()
    for leg in legs:
        points = decode_polyline(leg.encoded_points) if leg.encoded_points else []
        if len(points) < 2:
            points = [coords for coords in (lookup(quay_id) for quay_id, _ in leg.quays) if coords]
        if len(points) < 2:
            continue

        quay_ids = [quay_id for quay_id, _ in leg.quays]
        if len(quay_ids) > 1 and quay_ids[-1] == quay_ids[0]:
            points = points[:-1]

        key = (leg.line, round(points[0][0], 4), round(points[0][1], 4))
        if key in seen:
            continue
        seen.add(key)

        stops = []
        for quay_id, name in leg.quays:
            coords = lookup(quay_id)
            if coords:
                stops.append(QuayStop(lat=coords[0], lon=coords[1], quay_id=quay_id, name=name))

        shapes.append(RouteShape(
            mode=leg.mode,
            line=leg.line,
            from_stop=leg.from_name.strip(),
            to_stop=leg.to_name.strip(),
            via=leg.via,
            points=[(float(p[0]), float(p[1])) for p in points],
            quay_stops=stops or None,
        ))
    return shapes


class TripShapeService:
    """
    Long-lived cache of rail and airport-coach shapes.

    Rebuilt when older than the TTL, or on the next job tick when the last
    build had to fall back to static geometry.
    """

    def __init__(self, planner, resolver, ttl: float = config.SHAPE_CACHE_TTL_S,
                 concurrency: int = config.LOOKUP_CONCURRENCY,
                 clock: Callable[[], float] = time.monotonic):
        self.planner = planner
        self.resolver = resolver
        self.ttl = ttl
        self.concurrency = concurrency
        self.clock = clock

        self.shapes: List[RouteShape] = []
        self.built_at: Optional[float] = None
        self.using_fallback = False
        self.last_error: Optional[str] = None
        self._inflight: Optional[asyncio.Task] = None

    def is_fresh(self) -> bool:
        return (
            self.built_at is not None
            and not self.using_fallback
            and self.clock() - self.built_at < self.ttl
        )

    async def ensure_fresh(self) -> List[RouteShape]:
        if self.is_fresh():
            return self.shapes
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._rebuild())
        await asyncio.shield(self._inflight)
        return self.shapes

    async def _boards(self, hubs: List[Tuple[str, str]]) -> Dict[Tuple[str, str], dict]:
        boards = {}
        for hub in hubs:
            try:
                boards[hub] = await self.planner.departures(hub[0], limit=50)
            except UPSTREAM_FAILURES as e:
                logger.warning(f"Departure board for hub {hub[1]} failed: {e}")
        return boards

    async def _trip_legs(self, trips: List[TripRequest], modes: List[str], rail: bool) -> Tuple[List[TripLeg], int]:
        semaphore = asyncio.Semaphore(self.concurrency)
        failures = 0

        async def run(trip: TripRequest) -> List[TripLeg]:
            nonlocal failures
            async with semaphore:
                try:
                    return legs_from_trip(await self.planner.trip_legs(trip, modes), rail)
                except UPSTREAM_FAILURES as e:
                    failures += 1
                    logger.warning(f"Trip query {trip.from_name} -> {trip.to_name} failed: {e}")
                    return []

        results = await asyncio.gather(*(run(trip) for trip in trips))
        return [leg for legs in results for leg in legs], failures

    async def _build_kind(self, hubs, modes, code_filter, static_trips, rail: bool) -> List[RouteShape]:
        trips = discover_trips(await self._boards(hubs), modes, code_filter)
        if not trips:
            logger.info(f"No trips discovered for {modes}, using the fixed trip list")
            trips = static_trips

        legs, failures = await self._trip_legs(trips, modes, rail)
        if failures == len(trips):
            return []

        quay_ids = [quay_id for leg in legs for quay_id, _ in leg.quays]
        await self.resolver.resolve_many(quay_ids)
        return shapes_from_legs(legs, self.resolver.get)

    async def _rebuild(self) -> None:
        rail = await self._build_kind(RAIL_HUBS, RAIL_MODES, None, RAIL_TRIPS, rail=True)
        coach = await self._build_kind(
            AIRPORT_COACH_HUBS, AIRPORT_COACH_MODES, AIRPORT_COACH_CODE_RE, AIRPORT_COACH_TRIPS, rail=False
        )

        self.using_fallback = not rail or not coach
        if not rail:
            rail = static_rail_shapes()
        if not coach:
            coach = static_airport_coach_shapes()
        if self.using_fallback:
            self.last_error = "Journey planner trip queries returned nothing, serving static geometry"
            logger.warning(self.last_error)
        else:
            self.last_error = None

        self.shapes = rail + coach
        self.built_at = self.clock()
        logger.info(f"Trip shapes rebuilt: {len(rail)} rail, {len(coach)} airport coach")

    def current(self) -> List[RouteShape]:
        """Built shapes, or the static geometry before the first build has finished."""
        if self.built_at is None:
            return static_rail_shapes() + static_airport_coach_shapes()
        return self.shapes

    async def run_forever(self, interval: float = config.SHAPE_REFRESH_INTERVAL_S) -> None:
        while True:
            await self.ensure_fresh()
            await asyncio.sleep(interval)


# Coarse geometry used only when every trip query fails
_OSLO_S = (59.9107, 10.7525)
_LILLESTROM = (59.9550, 11.0497)
_DRAMMEN = (59.7440, 10.2045)
_SKI = (59.7427, 10.8357)
_EIDSVOLL = (60.3285, 11.2560)
_GARDERMOEN = (60.1939, 11.1004)
_SKOYEN = (59.8340, 10.7990)
_SANDVIKA = (59.8900, 10.5260)

_E6_SOUTH = [
    (60.12, 11.08, "Olavsgaard"),
    (60.05, 11.05, "Hellerud E6"),
    (59.99, 11.02, "Kjeller"),
    (59.965, 10.95, "Strømmen"),
]
_FB1 = [(60.1939, 11.1004, "Oslo lufthavn"), *_E6_SOUTH,
        (59.9615, 10.8817, "Grorud"), (59.9385, 10.782, "Sinsen"),
        (59.9285, 10.778, "Carl Berners plass"), (59.9296, 10.7767, "Torshov"),
        (59.935, 10.7522, "Sagene"), (59.9375, 10.734, "Ullevål stadion"),
        (59.9295, 10.7162, "Majorstuen")]
_FB3 = [(60.1939, 11.1004, "Oslo lufthavn"), *_E6_SOUTH,
        (59.9615, 10.8817, "Grorud"), (59.9248, 10.7965, "Økern"),
        (59.9385, 10.782, "Sinsen"), (59.9459, 10.7773, "Storo"),
        (59.948, 10.751, "Tåsen"), (59.941, 10.699, "Smestad"),
        (59.9328, 10.698, "Radiumhospitalet")]
_FB5 = [(60.1939, 11.1004, "Oslo lufthavn"), *_E6_SOUTH,
        (59.9186, 10.7912, "Helsfyr"), (59.922, 10.797, "Hasle"),
        (59.9285, 10.778, "Carl Berners plass"), (59.923, 10.731, "Bislett"),
        (59.9107, 10.7525, "Oslo S")]


def static_rail_shapes() -> List[RouteShape]:
    lines = [
        ("L1", "Oslo S", "Lillestrøm", [_OSLO_S, _LILLESTROM]),
        ("R20", "Oslo S", "Drammen", [_OSLO_S, _SANDVIKA, _DRAMMEN]),
        ("R21", "Oslo S", "Ski", [_OSLO_S, _SKOYEN, _SKI]),
        ("R22", "Oslo S", "Eidsvoll", [_OSLO_S, _LILLESTROM, _EIDSVOLL]),
        ("F1", "Oslo S", "Oslo lufthavn", [_OSLO_S, _LILLESTROM, _GARDERMOEN]),
    ]
    shapes = []
    for code, a, b, points in lines:
        mode = Mode.FLYTOG if FLYTOG_CODE_RE.match(code) else Mode.RAIL
        shapes.append(RouteShape(mode=mode, line=code, from_stop=a, to_stop=b, points=list(points)))
        shapes.append(RouteShape(mode=mode, line=code, from_stop=b, to_stop=a, points=list(reversed(points))))
    return shapes


def static_airport_coach_shapes() -> List[RouteShape]:
    shapes = []
    for code, stops in (("FB1", _FB1), ("FB3", _FB3), ("FB5", _FB5)):
        for ordered in (stops, list(reversed(stops))):
            shapes.append(RouteShape(
                mode=Mode.FLYBUSS,
                line=code,
                from_stop=ordered[0][2],
                to_stop=ordered[-1][2],
                points=[(lat, lon) for lat, lon, _ in ordered],
                quay_stops=[QuayStop(lat=lat, lon=lon, name=name) for lat, lon, name in ordered],
            ))
    return shapes
