"""
Merging of realtime and estimated vehicles.
"""

from typing import Dict, Iterable, List

from models.pydantic_models import Vehicle

LEG_FIELDS = ("from_stop", "to_stop", "via", "next_stop")
# Filled from the estimate only when the realtime record lacks them
FALLBACK_FIELDS = LEG_FIELDS + ("location", "mode")


def merge(authoritative: Iterable[Vehicle], estimated: Iterable[Vehicle]) -> List[Vehicle]:
    """
    Combine both feeds into one list, unique by vehicle id.

    Realtime vehicles come first and keep their position and mode; only
    their empty fields (leg stops, and a missing position or mode) are
    filled from the estimate with the same id. Estimated vehicles the
    realtime feed has not reported follow in their own order.
    """
    estimated_by_id: Dict[str, Vehicle] = {}
    for vehicle in estimated:
        estimated_by_id.setdefault(vehicle.vehicle_id, vehicle)

    merged: List[Vehicle] = []
    seen = set()
    for vehicle in authoritative:
        if vehicle.vehicle_id in seen:
            continue
        seen.add(vehicle.vehicle_id)

        match = estimated_by_id.get(vehicle.vehicle_id)
        if match is not None:
            updates = {
                name: getattr(match, name)
                for name in FALLBACK_FIELDS
                if getattr(vehicle, name) in (None, "") and getattr(match, name) not in (None, "")
            }
            if updates:
                vehicle = vehicle.model_copy(update=updates)
        merged.append(vehicle)

    for vehicle_id, vehicle in estimated_by_id.items():
        if vehicle_id not in seen:
            seen.add(vehicle_id)
            merged.append(vehicle)

    return merged
