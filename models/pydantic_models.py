from typing import List, Optional, Tuple, Dict
from pydantic import BaseModel, ConfigDict, Field, field_validator
import re

from models.domain_models import Mode

QUAY_ID_RE = re.compile(r'^NSR:Quay:\d+$')


class CamelModel(BaseModel):
    """Base model serialising with the camelCase names the map client expects."""
    model_config = ConfigDict(populate_by_name=True)


# Vehicle Models
class Location(BaseModel):
    latitude: float = Field(..., ge=-90, le=90, description="Latitude in decimal degrees")
    longitude: float = Field(..., ge=-180, le=180, description="Longitude in decimal degrees")


class LineInfo(CamelModel):
    public_code: str = Field("?", alias="publicCode", description="Human-facing line number")


class Vehicle(CamelModel):
    """A vehicle on the map, either reported by the realtime feed or estimated from the timetable."""
    vehicle_id: str = Field(..., alias="vehicleId", description="Unique vehicle identifier")
    mode: Optional[Mode] = Field(None, description="Transport mode used for grouping and colouring")
    location: Optional[Location] = Field(None, description="Current (reported or interpolated) position")
    line: LineInfo = Field(default_factory=LineInfo, description="Line the vehicle is serving")
    destination_name: Optional[str] = Field(None, alias="destinationName", description="Destination display text")
    bearing: Optional[float] = Field(None, description="Direction of travel in degrees, when reported")
    last_updated: Optional[str] = Field(None, alias="lastUpdated", description="Timestamp of the realtime report")
    from_stop: Optional[str] = Field(None, alias="from", description="Stop the current leg started at")
    to_stop: Optional[str] = Field(None, alias="to", description="Stop the current leg ends at")
    via: Optional[str] = Field(None, description="Representative stop halfway along the journey")
    next_stop: Optional[str] = Field(None, alias="nextStop", description="Next stop, when different from the destination")
    source: str = Field("estimated", description="realtime or estimated")

    @field_validator('vehicle_id')
    @classmethod
    def validate_vehicle_id(cls, v):
        if not v or not v.strip():
            raise ValueError('vehicleId cannot be empty')
        return v.strip()


# Route Shape Models
class QuayStop(CamelModel):
    """A stop marker drawn on top of a route shape."""
    lat: float
    lon: float
    quay_id: Optional[str] = Field(None, alias="quayId")
    name: str = ""


class RouteShape(CamelModel):
    """Deduplicated polyline for one directional line variant."""
    mode: Mode = Field(..., description="Transport mode of the line")
    line: str = Field(..., description="Public line code")
    from_stop: str = Field("", alias="from", description="First stop name")
    to_stop: str = Field("", alias="to", description="Last stop name")
    via: Optional[str] = Field(None, description="Stop halfway along the shape")
    points: List[Tuple[float, float]] = Field(default_factory=list, description="Ordered (lat, lon) pairs")
    quay_stops: Optional[List[QuayStop]] = Field(None, alias="quayStops", description="Stops along the shape")


class LiveSnapshot(CamelModel):
    """Combined vehicles + shapes payload served to the map client."""
    vehicles: List[Vehicle] = Field(default_factory=list)
    route_shapes: List[RouteShape] = Field(default_factory=list, alias="routeShapes")
    updated_at: Optional[str] = Field(None, alias="updatedAt", description="When the snapshot was computed")
    age_seconds: Optional[float] = Field(None, alias="ageSeconds", description="Age of the snapshot")
    stale: bool = Field(False, description="True when the last refresh failed and older data is served")
    error: Optional[str] = Field(None, description="Message of the last failed refresh")
    poll_interval_seconds: int = Field(30, alias="pollIntervalSeconds", description="Suggested client poll interval")


# Stop Models
class StopSummary(BaseModel):
    """Stop returned by bounding-box and name searches."""
    id: str = Field(..., description="Quay identifier")
    name: str = Field("", description="Stop name")
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class QuayCoordsRequest(BaseModel):
    ids: List[str] = Field(default_factory=list, max_length=500, description="Quay identifiers to resolve")

    @field_validator('ids')
    @classmethod
    def keep_quay_ids(cls, v):
        return [i.strip() for i in v if isinstance(i, str) and QUAY_ID_RE.match(i.strip())]


QuayCoordsResponse = Dict[str, Tuple[float, float]]


class Departure(CamelModel):
    """One row on a stop departure board."""
    line: str = Field(..., description="Public line code")
    mode: Optional[Mode] = Field(None, description="Transport mode of the line")
    destination: str = Field("", description="Destination display text")
    aimed_departure_time: Optional[str] = Field(None, alias="aimedDepartureTime")
    expected_departure_time: Optional[str] = Field(None, alias="expectedDepartureTime")
    realtime: bool = Field(False, description="Whether the expected time is realtime-adjusted")
    quay_id: Optional[str] = Field(None, alias="quayId")
    platform: Optional[str] = Field(None, description="Public platform code")


class DepartureBoard(CamelModel):
    stop_id: str = Field(..., alias="stopId")
    name: Optional[str] = None
    departures: List[Departure] = Field(default_factory=list)
    stale: bool = Field(False, description="Served from an earlier board because the journey planner failed")


# System Models
class SystemStatus(CamelModel):
    """Overall service status information."""
    status: str = Field(..., description="System status (operational, degraded, down)")
    snapshot_age_seconds: Optional[float] = Field(None, alias="snapshotAgeSeconds")
    timetable_age_seconds: Optional[float] = Field(None, alias="timetableAgeSeconds")
    timetable_cooldown_seconds: float = Field(0, alias="timetableCooldownSeconds")
    stop_index_size: int = Field(0, ge=0, alias="stopIndexSize")
    vehicles: int = Field(0, ge=0)
    route_shapes: int = Field(0, ge=0, alias="routeShapes")
    last_error: Optional[str] = Field(None, alias="lastError")

    @field_validator('status')
    @classmethod
    def validate_status(cls, v):
        if v not in ['operational', 'degraded', 'down']:
            raise ValueError('status must be one of: operational, degraded, down')
        return v


# Error Models
class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: dict = Field(..., description="Error information")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Invalid stop identifier",
                "details": {
                    "field": "stop_id",
                    "value": "abc",
                    "constraint": "must look like NSR:Quay:123 or NSR:StopPlace:123"
                },
                "request_id": "req_123456789"
            }
        }
    })
