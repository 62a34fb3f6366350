import logging
from typing import List, Tuple

import config
from models.pydantic_models import LiveSnapshot, RouteShape
from services.snapshot import SnapshotUnavailableError

logger = logging.getLogger(__name__)


async def get_live_snapshot_handler(snapshot_service) -> Tuple[LiveSnapshot, int]:
    """
    Current merged vehicles and route shapes.

    Returns:
        (payload, status code); 503 with empty lists when no snapshot has
        ever been produced
    """
    try:
        return await snapshot_service.get(), 200
    except SnapshotUnavailableError as e:
        logger.warning(f"Serving empty snapshot: {e}")
        return LiveSnapshot(
            error=str(e),
            stale=True,
            poll_interval_seconds=config.POLL_INTERVAL_BACKOFF_S,
        ), 503


def get_route_shapes_handler(snapshot_service) -> List[RouteShape]:
    return snapshot_service.route_shapes()
