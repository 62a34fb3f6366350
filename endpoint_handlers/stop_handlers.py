import logging
from typing import Any, Dict, List

import config
from models.domain_models import BoundingBox
from models.pydantic_models import Departure, DepartureBoard, QuayCoordsResponse, StopSummary
from services.mode_classifier import normalize_transport_mode, refine_display_mode
from utils.cache_management import departures_cache_key
from utils.caching import cached, get_response_cache
from utils.error_handling import ErrorCode, error_handler
from utils.upstream import UPSTREAM_FAILURES
from utils.validation import (
    CoordinateValidationError,
    IDValidationError,
    validate_bbox,
    validate_limit,
    validate_search_query,
    validate_stop_id,
)

logger = logging.getLogger(__name__)

MAX_BBOX_LIMIT = 2000
MAX_SEARCH_LIMIT = 50
MAX_DEPARTURES = 50


def shape_departure(call: Dict[str, Any]) -> Departure:
    """Turn one journey-planner estimated call into a departure board row."""
    line = (call.get("serviceJourney") or {}).get("line") or {}
    quay = call.get("quay") or {}
    code = (line.get("publicCode") or "?").strip() or "?"
    destination = (call.get("destinationDisplay") or {}).get("frontText") or ""

    return Departure(
        line=code,
        mode=refine_display_mode(normalize_transport_mode(line.get("transportMode")), code, destination),
        destination=destination,
        aimed_departure_time=call.get("aimedDepartureTime"),
        expected_departure_time=call.get("expectedDepartureTime"),
        realtime=bool(call.get("realtime")),
        quay_id=quay.get("id"),
        platform=quay.get("publicCode"),
    )


@cached(
    ttl=config.DEPARTURES_CACHE_TTL_S,
    key_func=lambda planner, stop_id, limit: departures_cache_key(stop_id, limit),
)
async def get_departures_handler(planner, stop_id: str, limit: int) -> DepartureBoard:
    """
    Upcoming departures from a stop place or quay.

    Cached for 30 seconds per (stop, limit). When the journey planner
    fails, the last board produced for the same key is served as stale.
    """
    key = departures_cache_key(stop_id, limit)
    try:
        stop_id = validate_stop_id(stop_id)
        validate_limit(limit, MAX_DEPARTURES)
    except IDValidationError as e:
        error_handler.handle_validation_error("stop_id", stop_id, str(e), code=ErrorCode.INVALID_ID_FORMAT)
    except ValueError as e:
        error_handler.handle_validation_error("limit", limit, str(e))

    try:
        board = await planner.departures(stop_id, limit=limit)
    except UPSTREAM_FAILURES as e:
        previous = get_response_cache().get_stale(key)
        if previous is None:
            error_handler.handle_upstream_error("Journey planner", e)
        logger.warning(f"Journey planner failed for {stop_id}, serving previous board: {e}")
        return previous.model_copy(update={"stale": True})

    return DepartureBoard(
        stop_id=stop_id,
        name=board.get("name"),
        departures=[shape_departure(call) for call in board.get("estimatedCalls", [])],
    )


async def get_quay_coords_handler(resolver, ids: List[str]) -> QuayCoordsResponse:
    """Coordinates for every resolvable quay id; unknown ids are left out."""
    if not ids:
        return {}
    return await resolver.resolve_many(ids)


def get_stops_in_bbox_handler(index, min_lat: float, min_lon: float, max_lat: float, max_lon: float,
                              limit: int) -> List[StopSummary]:
    try:
        bbox = BoundingBox(*validate_bbox(min_lat, min_lon, max_lat, max_lon))
    except CoordinateValidationError as e:
        error_handler.handle_validation_error(
            "bbox", f"{min_lat},{min_lon},{max_lat},{max_lon}", str(e), code=ErrorCode.INVALID_COORDINATES
        )

    try:
        validate_limit(limit, MAX_BBOX_LIMIT)
    except ValueError as e:
        error_handler.handle_validation_error("limit", limit, str(e))

    return [
        StopSummary(id=record.quay_id, name=record.name, lat=record.lat, lon=record.lon)
        for record in index.within_bbox(bbox, limit)
    ]


def search_stops_handler(index, q: str, limit: int) -> List[StopSummary]:
    """
    Search stops by name.

    Results are ranked exact match first, then prefix, then substring.
    """
    try:
        q = validate_search_query(q)
    except ValueError as e:
        error_handler.handle_validation_error("q", q, str(e), code=ErrorCode.INVALID_SEARCH_QUERY)

    try:
        validate_limit(limit, MAX_SEARCH_LIMIT)
    except ValueError as e:
        error_handler.handle_validation_error("limit", limit, str(e))

    return [
        StopSummary(id=record.quay_id, name=record.name, lat=record.lat, lon=record.lon)
        for record in index.search(q, limit)
    ]
