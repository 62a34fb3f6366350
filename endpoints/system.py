"""
System status endpoints router.
Provides API endpoints for pipeline status and response-cache maintenance.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response
from endpoint_handlers.system_handlers import get_system_status
from models.pydantic_models import SystemStatus
from services.container import ServiceContainer, get_container
from utils.caching import get_cache_headers
from utils.cache_management import cleanup_expired_cache, get_cache_health, get_cache_manager
from utils.error_handling import error_handler

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/status", response_model=SystemStatus)
async def system_status(response: Response, container: ServiceContainer = Depends(get_container)):
    """
    Get overall pipeline status.

    Returns snapshot and timetable ages, rate-limit cooldown, stop index size,
    vehicle and shape counts and the most recent upstream error.
    """
    try:
        cache_headers = get_cache_headers()
        for key, value in cache_headers.items():
            response.headers[key] = value

        return get_system_status(container)
    except (AttributeError, TypeError, ValueError) as e:
        error_handler.handle_system_error("system status", e)


@router.get("/cache/health", response_model=Dict[str, Any])
async def cache_health():
    """
    Get response-cache health metrics and statistics.
    """
    try:
        return get_cache_health()
    except (KeyError, TypeError, ValueError) as e:
        error_handler.handle_system_error("cache health", e)


@router.post("/cache/cleanup", response_model=Dict[str, Any])
async def cache_cleanup():
    """
    Remove expired entries from the response cache.
    """
    removed_count = cleanup_expired_cache()
    return {
        "message": "Cache cleanup completed",
        "removed_entries": removed_count
    }


@router.post("/cache/invalidate/{cache_type}", response_model=Dict[str, Any])
async def invalidate_cache(
    cache_type: str,
    resource_id: Optional[str] = Query(None, description="Optional stop id to invalidate")
):
    """
    Invalidate response-cache entries by type (departures or all).
    """
    cache_manager = get_cache_manager()

    if cache_type == "departures":
        invalidated_count = cache_manager.invalidate_departure_cache(resource_id)
    elif cache_type == "all":
        cache_manager.invalidate_all_cache()
        invalidated_count = "all"
    else:
        error_handler.handle_validation_error("cache_type", cache_type, "must be one of: departures, all")

    return {
        "message": f"Cache invalidation completed for {cache_type}",
        "cache_type": cache_type,
        "resource_id": resource_id,
        "invalidated_entries": invalidated_count,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
