"""
Input validation utilities for the live transit API.
Provides validation functions for coordinates, stop identifiers and query parameters.
"""

import re
from typing import List, Tuple

import config


class CoordinateValidationError(ValueError):
    """Raised for out-of-range coordinates and inverted bounding boxes."""


class IDValidationError(ValueError):
    """Raised for identifiers that are not NSR quay or stop place ids."""


QUAY_ID_RE = re.compile(config.QUAY_ID_PATTERN)
STOP_ID_RE = re.compile(r'^NSR:(Quay|StopPlace):\d+$')


def _validate_degrees(value: float, name: str, bound: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise CoordinateValidationError(f"{name} must be a number, got {type(value).__name__}")
    if not -bound <= value <= bound:
        raise CoordinateValidationError(f"{name} must be between -{bound} and {bound}, got {value}")
    return float(value)


def validate_latitude(lat: float) -> float:
    return _validate_degrees(lat, "Latitude", 90)


def validate_longitude(lon: float) -> float:
    return _validate_degrees(lon, "Longitude", 180)


def validate_bbox(min_lat: float, min_lon: float, max_lat: float, max_lon: float) -> Tuple[float, float, float, float]:
    """
    Validate a bounding box given as two corners.

    Returns:
        The validated (min_lat, min_lon, max_lat, max_lon)

    Raises:
        CoordinateValidationError: If a corner is invalid or the box is inverted
    """
    min_lat, max_lat = validate_latitude(min_lat), validate_latitude(max_lat)
    min_lon, max_lon = validate_longitude(min_lon), validate_longitude(max_lon)

    if min_lat > max_lat or min_lon > max_lon:
        raise CoordinateValidationError(
            f"Bounding box corners are inverted: ({min_lat}, {min_lon}) > ({max_lat}, {max_lon})"
        )

    return min_lat, min_lon, max_lat, max_lon


def validate_stop_id(stop_id: str) -> str:
    """
    Validate a quay or stop place identifier (NSR:Quay:123 / NSR:StopPlace:123).

    Raises:
        IDValidationError: If ID format is invalid
    """
    if not isinstance(stop_id, str):
        raise IDValidationError(f"stop_id must be a string, got {type(stop_id)}")

    stop_id = stop_id.strip()
    if not stop_id:
        raise IDValidationError("stop_id cannot be empty")

    if not STOP_ID_RE.match(stop_id):
        raise IDValidationError(f"stop_id must look like NSR:Quay:123 or NSR:StopPlace:123, got {stop_id}")

    return stop_id


def is_quay_id(value: str) -> bool:
    return isinstance(value, str) and bool(QUAY_ID_RE.match(value))


def filter_quay_ids(ids: List[str]) -> List[str]:
    """Keep well-formed quay identifiers, preserving order and dropping duplicates."""
    seen = set()
    result = []
    for quay_id in ids:
        if is_quay_id(quay_id) and quay_id not in seen:
            seen.add(quay_id)
            result.append(quay_id)
    return result


def validate_search_query(query: str, min_length: int = 2, max_length: int = 100) -> str:
    """
    Validate search query string.

    Returns:
        Validated and sanitized query

    Raises:
        ValueError: If query is invalid
    """
    if not isinstance(query, str):
        raise ValueError(f"Search query must be a string, got {type(query)}")

    query = query.strip()

    if len(query) < min_length:
        raise ValueError(f"Search query must be at least {min_length} characters long")

    if len(query) > max_length:
        raise ValueError(f"Search query cannot exceed {max_length} characters")

    # LIKE wildcards are matched literally
    query = re.sub(r'[%_\\]', '', query)

    if len(query) < min_length:
        raise ValueError(f"Search query must be at least {min_length} characters long")

    return query


def validate_limit(limit: int, max_limit: int) -> int:
    """
    Validate a result limit.

    Raises:
        ValueError: If limit is not between 1 and max_limit
    """
    if not isinstance(limit, int) or limit < 1 or limit > max_limit:
        raise ValueError(f"limit must be between 1 and {max_limit}, got {limit}")
    return limit
