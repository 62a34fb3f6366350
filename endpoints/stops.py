from fastapi import APIRouter, Query, Depends, Path, Response
from typing import List

from endpoint_handlers.stop_handlers import (
    get_departures_handler,
    get_quay_coords_handler,
    get_stops_in_bbox_handler,
    search_stops_handler,
)
from models.pydantic_models import DepartureBoard, ErrorResponse, QuayCoordsRequest, QuayCoordsResponse, StopSummary
from services.container import ServiceContainer, get_container
from utils.caching import get_cache_headers
import config

stop_routes = APIRouter(tags=["stops"])

VALIDATION_RESPONSES = {400: {"model": ErrorResponse}}
UPSTREAM_RESPONSES = {400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}}


@stop_routes.get("/stops/bbox", response_model=List[StopSummary], responses=VALIDATION_RESPONSES)
def get_stops_in_bbox(
    response: Response,
    min_lat: float = Query(..., alias="minLat", description="Southern edge"),
    min_lon: float = Query(..., alias="minLon", description="Western edge"),
    max_lat: float = Query(..., alias="maxLat", description="Northern edge"),
    max_lon: float = Query(..., alias="maxLon", description="Eastern edge"),
    limit: int = Query(500, description="Maximum number of stops to return", ge=1, le=2000),
    container: ServiceContainer = Depends(get_container)
):
    """
    Stops inside a bounding box, for drawing stop markers at the current map view.
    """
    cache_headers = get_cache_headers(300)  # 5 minutes
    for key, value in cache_headers.items():
        response.headers[key] = value

    return get_stops_in_bbox_handler(container.stops.index, min_lat, min_lon, max_lat, max_lon, limit)


@stop_routes.get("/stops/search", response_model=List[StopSummary], responses=VALIDATION_RESPONSES)
def search_stops(
    response: Response,
    q: str = Query(..., description="Search query for stop names", min_length=2),
    limit: int = Query(15, description="Maximum number of results", ge=1, le=50),
    container: ServiceContainer = Depends(get_container)
):
    """
    Search for stops by name.

    Exact matches come first, then names starting with the query, then any
    name containing it.
    """
    cache_headers = get_cache_headers(300)  # 5 minutes
    for key, value in cache_headers.items():
        response.headers[key] = value

    return search_stops_handler(container.stops.index, q, limit)


@stop_routes.get("/stops/{stop_id}/departures", response_model=DepartureBoard, responses=UPSTREAM_RESPONSES)
async def get_stop_departures(
    response: Response,
    stop_id: str = Path(..., description="Stop place or quay identifier, e.g. NSR:StopPlace:58366"),
    limit: int = Query(20, description="Maximum number of departures", ge=1, le=50),
    container: ServiceContainer = Depends(get_container)
):
    """
    Upcoming departures from a stop, with realtime-adjusted times where available.
    """
    board = await get_departures_handler(container.planner, stop_id, limit)

    cache_headers = get_cache_headers(config.DEPARTURES_CACHE_TTL_S, stale=board.stale)
    for key, value in cache_headers.items():
        response.headers[key] = value

    return board


@stop_routes.post("/quay-coords", response_model=QuayCoordsResponse)
async def get_quay_coords(body: QuayCoordsRequest, container: ServiceContainer = Depends(get_container)):
    """
    Resolve quay ids to [lat, lon]. Ids that cannot be resolved are left out.
    """
    return await get_quay_coords_handler(container.stops, body.ids)
