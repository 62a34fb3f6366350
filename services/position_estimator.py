"""
Position estimation from stop-call times.

For each journey the estimator picks the stop call the vehicle last left
and the one it is heading to, then places the vehicle on the straight
line between them in proportion to elapsed time.
"""

import dataclasses
from typing import Callable, Iterable, List, Optional, Tuple

from models.domain_models import Coordinates, Journey, StopCall
from models.pydantic_models import LineInfo, Location, Vehicle
from services.mode_classifier import public_code, refine_display_mode

CoordinateLookup = Callable[[str], Optional[Coordinates]]

# Used as the leg length when the target call carries no time at all
DEFAULT_LEG_MS = 60_000


def select_bracketing_calls(journey: Journey, now: int) -> Tuple[Optional[StopCall], Optional[StopCall]]:
    """
    Choose the (from, to) calls around ``now``.

    1. last recorded and first estimated call both exist: between them.
    2. two or more estimated calls and nothing recorded: if the first call's
       departure has passed (and the second arrives after it) the vehicle
       is taken to have left the first call, otherwise it is waiting there.
       This assumes departure without any recorded confirmation, so a
       vehicle delayed at its origin shows as already under way.
    3. only estimated calls: heading to the first one.
    4. only recorded calls: at the last one.
    """
    recorded, estimated = journey.recorded_calls, journey.estimated_calls
    last_recorded = recorded[-1] if recorded else None
    first_estimated = estimated[0] if estimated else None

    if last_recorded and first_estimated:
        return last_recorded, first_estimated

    if len(estimated) >= 2 and not recorded:
        second = estimated[1]
        t_first_dep = first_estimated.dep_time or first_estimated.arr_time
        t_second_arr = second.arr_time or second.dep_time
        if t_first_dep and t_second_arr and now >= t_first_dep and t_second_arr > t_first_dep:
            return dataclasses.replace(first_estimated, time=t_first_dep), second
        return None, first_estimated

    if first_estimated and not recorded:
        return None, first_estimated

    if last_recorded and not estimated:
        return last_recorded, None

    return None, None


def progress_between(t_from: int, t_to: int, now: int) -> float:
    """Fraction of the leg covered at ``now``, clamped to [0, 1]."""
    span = t_to - t_from
    if span == 0:
        return 1.0 if now >= t_to else 0.0
    return max(0.0, min(1.0, (now - t_from) / span))


def interpolate(start: Coordinates, end: Coordinates, progress: float) -> Coordinates:
    return (
        start[0] + progress * (end[0] - start[0]),
        start[1] + progress * (end[1] - start[1]),
    )


def estimate_position(
    journey: Journey,
    lookup: CoordinateLookup,
    now: int,
    calls: Optional[Tuple[Optional[StopCall], Optional[StopCall]]] = None,
) -> Optional[Coordinates]:
    """
    Estimate where the vehicle is at ``now`` (epoch ms).

    Returns:
        (lat, lon), or None when neither bracketing stop resolves
    """
    from_call, to_call = calls if calls is not None else select_bracketing_calls(journey, now)
    from_coords = lookup(from_call.quay_id) if from_call else None
    to_coords = lookup(to_call.quay_id) if to_call else None

    if from_coords and to_coords:
        t_from = from_call.start_time
        if t_from is None:
            return to_coords
        t_to = to_call.arr_time or to_call.dep_time or t_from + DEFAULT_LEG_MS
        return interpolate(from_coords, to_coords, progress_between(t_from, t_to, now))
    if to_coords:
        return to_coords
    if from_coords:
        return from_coords
    return None


def _midpoint_name(calls: List[StopCall]) -> Optional[str]:
    if len(calls) <= 2:
        return None
    return calls[len(calls) // 2].name or None


def estimate_vehicle(journey: Journey, lookup: CoordinateLookup, now: int) -> Optional[Vehicle]:
    """Estimated vehicle with display fields, or None when it cannot be placed."""
    from_call, to_call = select_bracketing_calls(journey, now)
    position = estimate_position(journey, lookup, now, (from_call, to_call))
    if position is None:
        return None

    calls = journey.all_calls
    first = calls[0] if calls else None
    last = calls[-1] if calls else None
    end_station = journey.destination_name or (last.name if last else "") or None
    next_stop = to_call.name if to_call and to_call.name and to_call.name != end_station else None
    code = public_code(journey.line_ref)

    return Vehicle(
        vehicle_id=journey.vehicle_id,
        mode=refine_display_mode(journey.mode, code, journey.destination_name),
        location=Location(latitude=position[0], longitude=position[1]),
        line=LineInfo(public_code=code),
        destination_name=journey.destination_name or None,
        bearing=None,
        from_stop=(from_call.name if from_call else "") or (first.name if first else "") or None,
        to_stop=(to_call.name if to_call else "") or (last.name if last else "") or journey.destination_name or None,
        via=_midpoint_name(calls),
        next_stop=next_stop,
        source="estimated",
    )


def estimate_vehicles(journeys: Iterable[Journey], lookup: CoordinateLookup, now: int) -> List[Vehicle]:
    """Estimate every journey, keeping feed order and skipping unplaceable ones."""
    vehicles = []
    for journey in journeys:
        vehicle = estimate_vehicle(journey, lookup, now)
        if vehicle is not None:
            vehicles.append(vehicle)
    return vehicles
