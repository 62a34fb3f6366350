"""Tests for the live snapshot pipeline."""

import asyncio
import unittest
from datetime import datetime, timezone

import httpx

from models.domain_models import Mode
from models.pydantic_models import LineInfo, Location, RouteShape, Vehicle
from services.mode_classifier import LineModeResolver
from services.snapshot import SnapshotUnavailableError, TransitSnapshotService
from services.timetable_cache import TimetableSnapshotCache
from utils.upstream import UpstreamError

COORDS = {
    "NSR:Quay:1": (59.90, 10.70),
    "NSR:Quay:2": (59.92, 10.80),
    "NSR:Quay:3": (59.95, 10.85),
}

ET_XML = """<?xml version="1.0" encoding="UTF-8"?>
<Siri xmlns="http://www.siri.org.uk/siri" version="2.0">
  <ServiceDelivery>
    <EstimatedTimetableDelivery>
      <EstimatedJourneyVersionFrame>
        <EstimatedVehicleJourney>
          <LineRef>RUT:Line:31</LineRef>
          <DestinationDisplay>Tonsenhagen</DestinationDisplay>
          <VehicleRef>RUT:VehicleRef:7001</VehicleRef>
          <RecordedCalls>
            <RecordedCall>
              <StopPointRef>NSR:Quay:1</StopPointRef>
              <StopPointName>Snarøya</StopPointName>
              <ActualDepartureTime>2024-05-17T10:00:00Z</ActualDepartureTime>
            </RecordedCall>
          </RecordedCalls>
          <EstimatedCalls>
            <EstimatedCall>
              <StopPointRef>NSR:Quay:2</StopPointRef>
              <StopPointName>Fornebu</StopPointName>
              <ExpectedArrivalTime>2024-05-17T10:10:00Z</ExpectedArrivalTime>
            </EstimatedCall>
            <EstimatedCall>
              <StopPointRef>NSR:Quay:3</StopPointRef>
              <StopPointName>Tonsenhagen</StopPointName>
              <ExpectedArrivalTime>2024-05-17T10:20:00Z</ExpectedArrivalTime>
            </EstimatedCall>
          </EstimatedCalls>
        </EstimatedVehicleJourney>
      </EstimatedJourneyVersionFrame>
    </EstimatedTimetableDelivery>
  </ServiceDelivery>
</Siri>"""

NOW_MS = int(datetime(2024, 5, 17, 10, 5, tzinfo=timezone.utc).timestamp() * 1000)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeStops:
    def __init__(self):
        self.load_calls = 0

    async def ensure_loaded(self):
        self.load_calls += 1
        await asyncio.sleep(0)
        return True

    async def resolve_many(self, quay_ids, names=None):
        return {q: COORDS[q] for q in quay_ids if q in COORDS}

    def get(self, quay_id):
        return COORDS.get(quay_id)


class FakeTimetable:
    last_error = None

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)

    async def ensure_snapshot(self):
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakePlanner:
    async def line_modes(self, line_refs):
        return {}


class FakeVehicles:
    def __init__(self, vehicles=None, error=None):
        self.vehicles = vehicles or []
        self.error = error

    async def get(self):
        if self.error:
            raise self.error
        return self.vehicles


class FakeTripShapes:
    def current(self):
        return [RouteShape(mode=Mode.RAIL, line="L1", from_stop="Oslo S", to_stop="Lillestrøm",
                           points=[(59.91, 10.75), (59.95, 11.05)])]


def make_service(timetable, vehicles=None, clock=None):
    return TransitSnapshotService(
        FakeStops(), timetable, LineModeResolver(FakePlanner()), vehicles or FakeVehicles(), FakeTripShapes(),
        ttl=15, clock=clock or FakeClock(), now_ms=lambda: NOW_MS,
    )


class TestTransitSnapshotService(unittest.IsolatedAsyncioTestCase):

    async def test_estimates_vehicles_from_timetable(self):
        service = make_service(FakeTimetable(ET_XML))

        snapshot = await service.get()

        self.assertEqual(len(snapshot.vehicles), 1)
        vehicle = snapshot.vehicles[0]
        self.assertEqual(vehicle.vehicle_id, "RUT:VehicleRef:7001")
        self.assertEqual(vehicle.source, "estimated")
        self.assertEqual(vehicle.from_stop, "Snarøya")
        self.assertEqual(vehicle.to_stop, "Fornebu")
        self.assertAlmostEqual(vehicle.location.latitude, 59.91)
        self.assertAlmostEqual(vehicle.location.longitude, 10.75)
        self.assertFalse(snapshot.stale)
        self.assertEqual(snapshot.poll_interval_seconds, 30)

    async def test_route_shapes_include_rail_shapes(self):
        service = make_service(FakeTimetable(ET_XML))

        snapshot = await service.get()

        self.assertIn("L1", [s.line for s in snapshot.route_shapes])
        self.assertEqual(snapshot.route_shapes[-1].mode, Mode.RAIL)

    async def test_realtime_vehicle_wins_and_gets_leg_fields(self):
        realtime = Vehicle(vehicle_id="RUT:VehicleRef:7001", mode=Mode.BUS, source="realtime",
                           location=Location(latitude=59.915, longitude=10.76), line=LineInfo(public_code="31"))
        service = make_service(FakeTimetable(ET_XML), FakeVehicles([realtime]))

        snapshot = await service.get()

        self.assertEqual(len(snapshot.vehicles), 1)
        self.assertEqual(snapshot.vehicles[0].source, "realtime")
        self.assertEqual(snapshot.vehicles[0].location.latitude, 59.915)
        self.assertEqual(snapshot.vehicles[0].from_stop, "Snarøya")

    async def test_realtime_failure_serves_estimates_only(self):
        service = make_service(FakeTimetable(ET_XML), FakeVehicles(error=UpstreamError("down", status_code=503)))

        snapshot = await service.get()

        self.assertEqual([v.source for v in snapshot.vehicles], ["estimated"])
        self.assertFalse(snapshot.stale)

    async def test_concurrent_requests_share_one_computation(self):
        service = make_service(FakeTimetable(ET_XML))

        await asyncio.gather(*(service.get() for _ in range(5)))

        self.assertEqual(service.stops.load_calls, 1)

    async def test_nothing_computed_yet_raises(self):
        service = make_service(FakeTimetable(UpstreamError("ET 500", status_code=500)))

        with self.assertRaises(SnapshotUnavailableError):
            await service.get()
        self.assertEqual(service.route_shapes()[0].line, "L1")

    async def test_failed_refresh_serves_previous_snapshot_as_stale(self):
        clock = FakeClock()
        service = make_service(FakeTimetable(ET_XML, UpstreamError("ET 500", status_code=500)), clock=clock)

        await service.get()
        clock.now += 20
        snapshot = await service.get()

        self.assertTrue(snapshot.stale)
        self.assertEqual(snapshot.error, "ET 500")
        self.assertEqual(snapshot.poll_interval_seconds, 45)
        self.assertEqual(len(snapshot.vehicles), 1)
        self.assertEqual(snapshot.age_seconds, 20)

    async def test_timetable_served_from_cache_after_failure_is_stale(self):
        clock = FakeClock()
        responses = [httpx.Response(200, text=ET_XML), httpx.Response(500)]
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: responses.pop(0)))
        timetable = TimetableSnapshotCache(client, url="https://example.test/et", ttl=90, retries=0, backoff=0,
                                           status_delays=(), clock=clock)
        service = make_service(timetable, clock=clock)

        first = await service.get()
        clock.now += 100
        snapshot = await service.get()
        await client.aclose()

        self.assertFalse(first.stale)
        self.assertTrue(snapshot.stale)
        self.assertEqual(snapshot.error, "ET 500")
        self.assertEqual(snapshot.poll_interval_seconds, 45)
        self.assertEqual(len(snapshot.vehicles), 1)

    async def test_malformed_feed_is_a_failed_refresh(self):
        service = make_service(FakeTimetable("<Siri><unclosed>"))

        with self.assertRaises(SnapshotUnavailableError):
            await service.get()
        self.assertIsNotNone(service.last_error)


if __name__ == '__main__':
    unittest.main()
