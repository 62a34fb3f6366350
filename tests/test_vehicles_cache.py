"""Tests for the realtime vehicle cache."""

import asyncio
import unittest

import httpx

from models.domain_models import Mode
from services.vehicles_cache import AuthoritativeVehicleCache, parse_vehicle
from utils.upstream import GraphQLError

URL = "https://example.test/vehicles"


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def record(vehicle_id, mode="BUS", code="31", destination="Ringen"):
    return {
        "vehicleId": vehicle_id,
        "lastUpdated": "2024-05-17T10:00:00Z",
        "location": {"latitude": 59.91, "longitude": 10.75},
        "line": {"publicCode": code},
        "mode": mode,
        "bearing": 90.0,
        "destinationName": destination,
    }


class Upstream:
    def __init__(self, *payloads):
        self.payloads = list(payloads)
        self.calls = 0

    def __call__(self, request):
        self.calls += 1
        payload = self.payloads.pop(0) if len(self.payloads) > 1 else self.payloads[0]
        if isinstance(payload, int):
            return httpx.Response(payload)
        return httpx.Response(200, json=payload)


def make_cache(upstream, clock):
    client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    cache = AuthoritativeVehicleCache(client, url=URL, ttl=20, retries=0, backoff=0,
                                      status_delays=(0,), clock=clock)
    return cache, client


class TestParseVehicle(unittest.TestCase):

    def test_modes_are_normalised(self):
        self.assertEqual(parse_vehicle(record("1", mode="FERRY")).mode, Mode.WATER)
        self.assertEqual(parse_vehicle(record("2", mode="COACH")).mode, Mode.BUS)
        self.assertEqual(parse_vehicle(record("3", mode="BUS", code="FB2")).mode, Mode.FLYBUSS)
        self.assertEqual(parse_vehicle(record("4", mode="RAIL", code="R10", destination="Oslo lufthavn")).mode, Mode.FLYTOG)

    def test_realtime_fields(self):
        vehicle = parse_vehicle(record("RUT:Vehicle:7"))

        self.assertEqual(vehicle.vehicle_id, "RUT:Vehicle:7")
        self.assertEqual(vehicle.source, "realtime")
        self.assertEqual(vehicle.line.public_code, "31")
        self.assertEqual(vehicle.location.latitude, 59.91)

    def test_malformed_records_are_dropped(self):
        self.assertIsNone(parse_vehicle({"vehicleId": None}))
        self.assertIsNone(parse_vehicle("not a record"))
        bad = record("9")
        bad["location"] = {"latitude": 200, "longitude": 10}
        self.assertIsNone(parse_vehicle(bad))


class TestAuthoritativeVehicleCache(unittest.IsolatedAsyncioTestCase):

    async def test_cold_cache_waits_for_single_fetch(self):
        upstream = Upstream({"data": {"vehicles": [record("1"), record("2")]}})
        cache, client = make_cache(upstream, FakeClock())

        results = await asyncio.gather(*(cache.get() for _ in range(4)))
        await client.aclose()

        self.assertEqual(upstream.calls, 1)
        self.assertTrue(all(len(r) == 2 for r in results))

    async def test_expired_value_is_served_while_refreshing(self):
        clock = FakeClock()
        upstream = Upstream({"data": {"vehicles": [record("1")]}}, {"data": {"vehicles": [record("1"), record("2")]}})
        cache, client = make_cache(upstream, clock)

        await cache.get()
        clock.now += 30
        stale = await cache.get()
        await cache._inflight
        fresh = await cache.get()
        await client.aclose()

        self.assertEqual(len(stale), 1)
        self.assertEqual(len(fresh), 2)
        self.assertEqual(upstream.calls, 2)

    async def test_bad_gateway_is_retried(self):
        upstream = Upstream(502, {"data": {"vehicles": [record("1")]}})
        cache, client = make_cache(upstream, FakeClock())

        vehicles = await cache.get()
        await client.aclose()

        self.assertEqual([v.vehicle_id for v in vehicles], ["1"])
        self.assertEqual(upstream.calls, 2)

    async def test_failed_background_refresh_keeps_value(self):
        clock = FakeClock()
        upstream = Upstream({"data": {"vehicles": [record("1")]}}, 503)
        cache, client = make_cache(upstream, clock)

        await cache.get()
        clock.now += 30
        await cache.get()
        await cache._inflight
        vehicles = await cache.get()
        await client.aclose()

        self.assertEqual([v.vehicle_id for v in vehicles], ["1"])
        self.assertIsNotNone(cache.last_error)

    async def test_graphql_errors_without_data_raise(self):
        upstream = Upstream({"errors": [{"message": "bad query"}]})
        cache, client = make_cache(upstream, FakeClock())

        with self.assertRaises(GraphQLError):
            await cache.get()
        await client.aclose()


if __name__ == '__main__':
    unittest.main()
