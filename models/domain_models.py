"""
Internal model definitions for the position-estimation engine.
These models represent feed records after parsing, before they are shaped
into API responses.
"""

from enum import Enum
from typing import List, Optional, Tuple
from dataclasses import dataclass, field


Coordinates = Tuple[float, float]


class Mode(str, Enum):
    """Transport modes the service knows how to group and colour."""
    BUS = "bus"
    METRO = "metro"
    TRAM = "tram"
    WATER = "water"
    RAIL = "rail"
    FLYTOG = "flytog"
    FLYBUSS = "flybuss"


@dataclass(frozen=True)
class BoundingBox:
    """Geographic rectangle in decimal degrees."""
    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float

    def contains(self, lat: float, lon: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lon <= lon <= self.max_lon


@dataclass(frozen=True)
class QuayRecord:
    """A single quay from the static stop dataset."""
    quay_id: str
    name: str
    lat: float
    lon: float

    @property
    def coordinates(self) -> Coordinates:
        return (self.lat, self.lon)


@dataclass
class StopCall:
    """
    A vehicle's passage (recorded) or prediction (estimated) at one quay.

    Recorded calls carry ``time``; estimated calls carry ``arr_time`` and
    ``dep_time``. All times are epoch milliseconds.
    """
    quay_id: str
    name: str = ""
    time: Optional[int] = None
    arr_time: Optional[int] = None
    dep_time: Optional[int] = None

    @property
    def start_time(self) -> Optional[int]:
        """Time the vehicle left (or will leave) this call."""
        if self.time is not None:
            return self.time
        if self.dep_time is not None:
            return self.dep_time
        return self.arr_time


@dataclass
class Journey:
    """
    One vehicle trip as reported by the estimated-timetable feed.

    ``mode`` starts as the line-number guess and is replaced by the
    journey planner's declared mode when one is known.
    """
    vehicle_id: str
    mode: Optional[Mode]
    line_ref: str
    destination_name: str = ""
    recorded_calls: List[StopCall] = field(default_factory=list)
    estimated_calls: List[StopCall] = field(default_factory=list)

    @property
    def all_calls(self) -> List[StopCall]:
        return self.recorded_calls + self.estimated_calls

    @property
    def quay_ids(self) -> List[str]:
        return [call.quay_id for call in self.all_calls if call.quay_id]


@dataclass(frozen=True)
class TripRequest:
    """A journey-planner trip query between two stop places."""
    from_place: str
    from_name: str
    to_place: str
    to_name: str
