"""
Geospatial utility functions for route geometry.
Provides distance calculations and polyline decoding.
"""

import math
from typing import List, Tuple


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float, unit: str = "kilometers") -> float:
    """
    Calculate the great circle distance between two points on Earth using the Haversine formula.

    Args:
        lat1, lon1: Latitude and longitude of first point in decimal degrees
        lat2, lon2: Latitude and longitude of second point in decimal degrees
        unit: Distance unit - "kilometers" or "meters"

    Returns:
        Distance between the two points in the specified unit
    """
    lat1, lon1, lat2, lon2 = map(math.radians, [lat1, lon1, lat2, lon2])

    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = math.sin(dlat/2)**2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon/2)**2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    earth_radius = {
        "kilometers": 6371,
        "meters": 6371000
    }

    if unit not in earth_radius:
        raise ValueError(f"Unsupported unit: {unit}. Use 'kilometers' or 'meters'")

    return c * earth_radius[unit]


def decode_polyline(encoded: str, precision: int = 5) -> List[Tuple[float, float]]:
    """
    Decode a Google encoded polyline into (lat, lon) pairs.

    Args:
        encoded: Encoded polyline string
        precision: Number of decimals encoded (5 for the journey planner)

    Returns:
        List of (lat, lon) tuples; empty for empty input
    """
    points: List[Tuple[float, float]] = []
    factor = 10 ** precision
    index, lat, lon = 0, 0, 0
    length = len(encoded or "")

    while index < length:
        deltas = []
        for _ in range(2):
            shift, result = 0, 0
            while True:
                if index >= length:
                    return points
                b = ord(encoded[index]) - 63
                index += 1
                result |= (b & 0x1F) << shift
                shift += 5
                if b < 0x20:
                    break
            deltas.append(~(result >> 1) if result & 1 else result >> 1)
        lat += deltas[0]
        lon += deltas[1]
        points.append((lat / factor, lon / factor))

    return points
