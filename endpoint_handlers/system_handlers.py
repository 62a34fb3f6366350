"""
System status endpoint handlers.
Summarises the health of every cache the live pipeline depends on.
"""

from models.pydantic_models import SystemStatus


def get_system_status(container) -> SystemStatus:
    """
    Build the status report.

    ``operational`` when a fresh snapshot exists, ``degraded`` when data is
    served stale or from fallbacks, ``down`` when nothing has been produced.
    """
    snapshot = container.snapshot
    timetable = container.timetable

    errors = [
        error for error in (
            snapshot.last_error,
            timetable.last_error,
            container.vehicles.last_error,
            container.stops.last_error,
            container.trip_shapes.last_error,
        )
        if error
    ]

    if snapshot.result is None:
        status = "down"
    elif errors or timetable.in_cooldown:
        status = "degraded"
    else:
        status = "operational"

    age = snapshot.age_seconds
    timetable_age = timetable.age_seconds
    return SystemStatus(
        status=status,
        snapshot_age_seconds=round(age, 1) if age is not None else None,
        timetable_age_seconds=round(timetable_age, 1) if timetable_age is not None else None,
        timetable_cooldown_seconds=round(timetable.cooldown_remaining, 1),
        stop_index_size=len(container.stops.index),
        vehicles=snapshot.vehicle_count,
        route_shapes=len(snapshot.route_shapes()),
        last_error=errors[0] if errors else None,
    )
