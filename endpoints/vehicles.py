from typing import List

from fastapi import APIRouter, Depends, Response

from endpoint_handlers.vehicle_handlers import get_live_snapshot_handler, get_route_shapes_handler
from models.pydantic_models import LiveSnapshot, RouteShape
from services.container import ServiceContainer, get_container
from utils.caching import get_cache_headers
import config

vehicle_routes = APIRouter(tags=["vehicles"])


@vehicle_routes.get("/vehicles", response_model=LiveSnapshot)
async def get_vehicles(response: Response, container: ServiceContainer = Depends(get_container)):
    """
    Merged realtime and estimated vehicles with the route shapes to draw them on.

    Serves the previous snapshot marked stale when the latest refresh failed,
    and 503 with empty lists when nothing has been produced yet.
    """
    snapshot, status_code = await get_live_snapshot_handler(container.snapshot)
    response.status_code = status_code

    if status_code != 200:
        cache_headers = get_cache_headers()
    else:
        cache_headers = get_cache_headers(int(config.ESTIMATE_CACHE_TTL_S), stale=snapshot.stale)
    for key, value in cache_headers.items():
        response.headers[key] = value

    return snapshot


@vehicle_routes.get("/route-shapes", response_model=List[RouteShape])
def get_route_shapes(response: Response, container: ServiceContainer = Depends(get_container)):
    """
    Route geometry for the map: timetable shapes plus rail and airport coach lines.
    """
    cache_headers = get_cache_headers(300)  # 5 minutes
    for key, value in cache_headers.items():
        response.headers[key] = value

    return get_route_shapes_handler(container.snapshot)
