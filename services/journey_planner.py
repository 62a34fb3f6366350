"""
Journey-planner GraphQL client.
Holds every query the service sends to the journey planner: batched quay
coordinates, batched line modes, trip searches, departure boards and the
geocoder name search.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import httpx

import config
from models.domain_models import TripRequest
from utils.upstream import UpstreamError, fetch_with_retry, post_graphql

logger = logging.getLogger(__name__)


def _quote(value: str) -> str:
    return json.dumps(value)


class JourneyPlannerClient:
    """Thin async wrapper over the journey-planner GraphQL endpoint."""

    def __init__(self, client: httpx.AsyncClient, url: str = config.JP_GRAPHQL_URL, backoff: float = config.INITIAL_BACKOFF_S):
        self.client = client
        self.url = url
        self.backoff = backoff

    async def query(self, query: str, variables: Optional[Dict[str, Any]] = None, timeout: float = config.GRAPHQL_TIMEOUT_S) -> Dict[str, Any]:
        return await post_graphql(
            self.client, self.url, query, variables, timeout=timeout, backoff=self.backoff
        )

    async def quay_coordinates(self, quay_ids: Sequence[str]) -> Dict[str, tuple]:
        """
        Look up coordinates for one batch of quay ids.

        Returns:
            Mapping of quay id to (lat, lon) for every quay the planner knows
        """
        if not quay_ids:
            return {}
        fields = "\n".join(
            f"q{i}: quay(id: {_quote(quay_id)}) {{ latitude longitude }}"
            for i, quay_id in enumerate(quay_ids)
        )
        data = await self.query(f"query {{ {fields} }}")

        result = {}
        for i, quay_id in enumerate(quay_ids):
            quay = data.get(f"q{i}")
            if not isinstance(quay, dict):
                continue
            lat, lon = quay.get("latitude"), quay.get("longitude")
            if lat is not None and lon is not None:
                result[quay_id] = (float(lat), float(lon))
        return result

    async def line_modes(self, line_refs: Sequence[str]) -> Dict[str, Optional[str]]:
        """
        Look up the declared transport mode for one batch of lines.

        Returns:
            Mapping of line ref to the raw transport mode string, None when
            the planner answered but declared no mode
        """
        if not line_refs:
            return {}
        fields = "\n".join(
            f"l{i}: line(id: {_quote(line_ref)}) {{ transportMode }}"
            for i, line_ref in enumerate(line_refs)
        )
        data = await self.query(f"query {{ {fields} }}")

        result = {}
        for i, line_ref in enumerate(line_refs):
            line = data.get(f"l{i}")
            mode = line.get("transportMode") if isinstance(line, dict) else None
            result[line_ref] = mode if isinstance(mode, str) else None
        return result

    async def trip_legs(self, trip: TripRequest, modes: Sequence[str], now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Run a trip search between two stop places and return every leg of every pattern."""
        date_time = (now or datetime.now()).strftime("%Y-%m-%dT%H:%M:%S")
        modes_arg = ", ".join(f"{{ transportMode: {mode} }}" for mode in modes)
        query = f"""{{
  trip(
    from: {{ place: {_quote(trip.from_place)}, name: {_quote(trip.from_name)} }}
    to: {{ place: {_quote(trip.to_place)}, name: {_quote(trip.to_name)} }}
    dateTime: {_quote(date_time)}
    numTripPatterns: 10
    modes: {{ transportModes: [{modes_arg}] }}
  ) {{
    tripPatterns {{
      legs {{
        mode
        line {{ publicCode }}
        fromPlace {{ name }}
        toPlace {{ name }}
        fromEstimatedCall {{ quay {{ id name }} }}
        toEstimatedCall {{ quay {{ id name }} }}
        intermediateEstimatedCalls {{ quay {{ id name }} }}
        pointsOnLink {{ points }}
      }}
    }}
  }}
}}"""
        data = await self.query(query, timeout=config.TRIP_QUERY_TIMEOUT_S)
        legs = []
        for pattern in (data.get("trip") or {}).get("tripPatterns") or []:
            for leg in (pattern or {}).get("legs") or []:
                if isinstance(leg, dict):
                    legs.append(leg)
        return legs

    async def departures(self, stop_id: str, limit: int = 20) -> Dict[str, Any]:
        """
        Departure board for a stop place or a single quay.

        Returns:
            ``{"name": ..., "estimatedCalls": [...]}``; empty calls when the id is unknown
        """
        field = "quay" if ":Quay:" in stop_id else "stopPlace"
        query = f"""{{
  place: {field}(id: {_quote(stop_id)}) {{
    name
    estimatedCalls(numberOfDepartures: {int(limit)}) {{
      realtime
      aimedDepartureTime
      expectedDepartureTime
      destinationDisplay {{ frontText }}
      quay {{ id name publicCode stopPlace {{ id name }} }}
      serviceJourney {{
        line {{ publicCode transportMode }}
        quays {{ id name stopPlace {{ id name }} }}
      }}
    }}
  }}
}}"""
        data = await self.query(query)
        place = data.get("place")
        if not isinstance(place, dict):
            return {"name": None, "estimatedCalls": []}
        return {
            "name": place.get("name"),
            "estimatedCalls": [c for c in place.get("estimatedCalls") or [] if isinstance(c, dict)],
        }

    async def geocode(self, text: str) -> Optional[tuple]:
        """
        Name search against the geocoder, focused on the metro centre and
        restricted to the service bounding box.

        Returns:
            (lat, lon) of the best match, or None
        """
        params = {
            "text": text,
            "size": 5,
            "layers": "venue",
            "focus.point.lat": config.CENTER_LAT,
            "focus.point.lon": config.CENTER_LON,
            "boundary.rect.min_lat": config.BOUNDS_MIN_LAT,
            "boundary.rect.max_lat": config.BOUNDS_MAX_LAT,
            "boundary.rect.min_lon": config.BOUNDS_MIN_LON,
            "boundary.rect.max_lon": config.BOUNDS_MAX_LON,
        }
        response = await fetch_with_retry(
            self.client, "GET", config.GEOCODER_URL, params=params,
            timeout=config.GRAPHQL_TIMEOUT_S, backoff=self.backoff
        )
        if response.status_code >= 400:
            raise UpstreamError(f"Geocoder {response.status_code}", status_code=response.status_code)

        for feature in response.json().get("features") or []:
            coords = ((feature or {}).get("geometry") or {}).get("coordinates") or []
            if len(coords) >= 2:
                lon, lat = float(coords[0]), float(coords[1])
                if (config.BOUNDS_MIN_LAT <= lat <= config.BOUNDS_MAX_LAT
                        and config.BOUNDS_MIN_LON <= lon <= config.BOUNDS_MAX_LON):
                    return (lat, lon)
        return None
