"""
Route shapes from timetable journeys.

Each drawable journey's stop sequence becomes a polyline; geographically
impossible stops are pruned, short results discarded, and the many
near-identical polylines of one line variant collapse into one shape.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import config
from models.domain_models import Coordinates, Journey, Mode
from models.pydantic_models import QuayStop, RouteShape
from services.mode_classifier import public_code, refine_display_mode
from utils.geospatial import haversine_distance

logger = logging.getLogger(__name__)

DRAWABLE_MODES = frozenset({Mode.BUS, Mode.TRAM, Mode.METRO, Mode.WATER})
LONG_HOP_MODES = frozenset({Mode.BUS, Mode.WATER})

# (lat, lon, quay_id, name)
ShapePoint = Tuple[float, float, str, str]
ShapeKey = Tuple[str, str, str, str]


def max_span_km(mode: Mode) -> float:
    return config.MAX_ROUTE_SPAN_KM_BUS if mode in LONG_HOP_MODES else config.MAX_ROUTE_SPAN_KM


def min_points(mode: Mode) -> int:
    return config.MIN_SHAPE_POINTS_METRO if mode == Mode.METRO else config.MIN_SHAPE_POINTS


def _distance(a, b) -> float:
    return haversine_distance(a[0], a[1], b[0], b[1])


def remove_outliers(points: List, max_km: float) -> List:
    """
    Drop points whose hop to a neighbour is longer than ``max_km``.

    The worst offender is removed first and the scan repeats until every
    hop fits or fewer than three points remain. A misplaced point and its
    neighbour share the same longest hop; the tie goes to the point whose
    shorter hop is longer, which is the misplaced one. Two points that are
    too far apart are both discarded.

    Args:
        points: Sequence of (lat, lon, ...) tuples
        max_km: Longest acceptable distance between neighbours

    Returns:
        A new list; the input is not modified
    """
    if len(points) < 2:
        return list(points)
    if len(points) == 2:
        return [] if _distance(points[0], points[1]) > max_km else list(points)

    current = list(points)
    while len(current) >= 3:
        worst, worst_index = (0.0, 0.0), -1
        for i in range(len(current)):
            hops = []
            if i > 0:
                hops.append(_distance(current[i], current[i - 1]))
            if i < len(current) - 1:
                hops.append(_distance(current[i], current[i + 1]))
            score = (round(max(hops), 6), min(hops))
            if score > worst:
                worst, worst_index = score, i
        if worst[0] <= max_km:
            break
        del current[worst_index]

    if len(current) == 2 and _distance(current[0], current[1]) > max_km:
        return []
    return current


def journey_points(journey: Journey, lookup: Callable[[str], Optional[Coordinates]]) -> List[ShapePoint]:
    """Resolved stop points in call order; a circular trip loses its closing point."""
    calls = journey.all_calls
    first_quay = calls[0].quay_id if calls else None
    points: List[ShapePoint] = []
    for i, call in enumerate(calls):
        coords = lookup(call.quay_id)
        if not coords:
            continue
        if i == len(calls) - 1 and call.quay_id == first_quay:
            break
        points.append((coords[0], coords[1], call.quay_id, call.name or ""))
    return points


def shape_key(shape: RouteShape) -> ShapeKey:
    return (shape.mode.value, shape.line, shape.from_stop, shape.to_stop)


def build_shape(journey: Journey, lookup: Callable[[str], Optional[Coordinates]]) -> Optional[RouteShape]:
    """Polyline for one journey, or None when it is not drawable or too short after cleaning."""
    if journey.mode not in DRAWABLE_MODES:
        return None

    cleaned = remove_outliers(journey_points(journey, lookup), max_span_km(journey.mode))
    if len(cleaned) < min_points(journey.mode):
        return None

    calls = journey.all_calls
    code = public_code(journey.line_ref)
    return RouteShape(
        mode=refine_display_mode(journey.mode, code, journey.destination_name),
        line=code,
        from_stop=calls[0].name or "",
        to_stop=calls[-1].name or "",
        via=(calls[len(calls) // 2].name or None) if len(calls) > 2 else None,
        points=[(p[0], p[1]) for p in cleaned],
        quay_stops=[QuayStop(lat=p[0], lon=p[1], quay_id=p[2], name=p[3]) for p in cleaned],
    )


def build_shapes(journeys: Iterable[Journey], lookup: Callable[[str], Optional[Coordinates]]) -> List[RouteShape]:
    """
    Deduplicated shapes for all drawable journeys.

    One shape survives per (mode, line, from, to); a later journey replaces
    an earlier one only when it has more points, keeping the first slot.
    """
    shapes: Dict[ShapeKey, RouteShape] = {}
    for journey in journeys:
        shape = build_shape(journey, lookup)
        if shape is None:
            continue
        key = shape_key(shape)
        existing = shapes.get(key)
        if existing is None or len(shape.points) > len(existing.points):
            shapes[key] = shape

    logger.debug(f"Built {len(shapes)} route shapes")
    return list(shapes.values())
