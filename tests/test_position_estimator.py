"""Tests for position estimation between stop calls."""

import unittest

from models.domain_models import Journey, Mode, StopCall
from services.position_estimator import (
    estimate_position,
    estimate_vehicle,
    estimate_vehicles,
    progress_between,
    select_bracketing_calls,
)

COORDS = {
    "NSR:Quay:A": (59.90, 10.70),
    "NSR:Quay:B": (59.92, 10.80),
    "NSR:Quay:C": (59.95, 10.75),
    "NSR:Quay:D": (59.96, 10.76),
}


def lookup(quay_id):
    return COORDS.get(quay_id)


def make_journey(recorded=(), estimated=(), destination="Ringen"):
    return Journey(
        vehicle_id="RUT:VehicleRef:1",
        mode=Mode.BUS,
        line_ref="RUT:Line:31",
        destination_name=destination,
        recorded_calls=list(recorded),
        estimated_calls=list(estimated),
    )


class TestBracketingCalls(unittest.TestCase):

    def test_between_last_recorded_and_first_estimated(self):
        a = StopCall("NSR:Quay:A", "A", time=1000)
        b = StopCall("NSR:Quay:B", "B", arr_time=3000, dep_time=3000)

        self.assertEqual(select_bracketing_calls(make_journey([a], [b]), 2000), (a, b))

    def test_estimated_only_before_first_departure(self):
        b = StopCall("NSR:Quay:B", "B", arr_time=3000, dep_time=3000)
        c = StopCall("NSR:Quay:C", "C", arr_time=5000, dep_time=5000)

        from_call, to_call = select_bracketing_calls(make_journey(estimated=[b, c]), 2000)

        self.assertIsNone(from_call)
        self.assertIs(to_call, b)

    def test_estimated_only_after_first_departure_is_under_way(self):
        b = StopCall("NSR:Quay:B", "B", arr_time=3000, dep_time=3200)
        c = StopCall("NSR:Quay:C", "C", arr_time=5000, dep_time=5000)

        from_call, to_call = select_bracketing_calls(make_journey(estimated=[b, c]), 4000)

        self.assertEqual(from_call.quay_id, "NSR:Quay:B")
        self.assertEqual(from_call.start_time, 3200)
        self.assertIs(to_call, c)

    def test_recorded_only_stays_at_last_call(self):
        a = StopCall("NSR:Quay:A", "A", time=1000)
        d = StopCall("NSR:Quay:D", "D", time=2000)

        self.assertEqual(select_bracketing_calls(make_journey([a, d]), 5000), (d, None))


class TestEstimatePosition(unittest.TestCase):

    def test_halfway_between_recorded_and_estimated(self):
        journey = make_journey(
            [StopCall("NSR:Quay:A", "A", time=1000)],
            [StopCall("NSR:Quay:B", "B", arr_time=3000, dep_time=3000)],
        )

        lat, lon = estimate_position(journey, lookup, 2000)

        self.assertAlmostEqual(lat, 59.91, places=6)
        self.assertAlmostEqual(lon, 10.75, places=6)

    def test_single_estimated_call_pins_to_stop(self):
        journey = make_journey(estimated=[StopCall("NSR:Quay:C", "Carl Berners plass", arr_time=9000, dep_time=9000)])

        self.assertEqual(estimate_position(journey, lookup, 2000), (59.95, 10.75))

        vehicle = estimate_vehicle(journey, lookup, 2000)
        self.assertEqual(vehicle.next_stop, "Carl Berners plass")

    def test_next_stop_hidden_when_it_is_the_destination(self):
        journey = make_journey(
            estimated=[StopCall("NSR:Quay:C", "Ringen", arr_time=9000, dep_time=9000)],
            destination="Ringen",
        )

        self.assertIsNone(estimate_vehicle(journey, lookup, 2000).next_stop)

    def test_position_stays_on_segment_for_any_time(self):
        journey = make_journey(
            [StopCall("NSR:Quay:A", "A", time=1000)],
            [StopCall("NSR:Quay:B", "B", arr_time=3000, dep_time=3000)],
        )

        for now in (-10_000, 0, 1000, 2500, 3000, 50_000):
            lat, lon = estimate_position(journey, lookup, now)
            self.assertTrue(59.90 - 1e-9 <= lat <= 59.92 + 1e-9, now)
            self.assertTrue(10.70 - 1e-9 <= lon <= 10.80 + 1e-9, now)

    def test_unresolvable_from_falls_back_to_target(self):
        journey = make_journey(
            [StopCall("NSR:Quay:unknown", "X", time=1000)],
            [StopCall("NSR:Quay:B", "B", arr_time=3000, dep_time=3000)],
        )

        self.assertEqual(estimate_position(journey, lookup, 2000), (59.92, 10.80))

    def test_nothing_resolvable_is_skipped(self):
        journey = make_journey(estimated=[StopCall("NSR:Quay:unknown", "X", arr_time=3000, dep_time=3000)])

        self.assertIsNone(estimate_position(journey, lookup, 2000))
        self.assertEqual(estimate_vehicles([journey], lookup, 2000), [])

    def test_progress_is_clamped(self):
        self.assertEqual(progress_between(1000, 3000, 0), 0.0)
        self.assertEqual(progress_between(1000, 3000, 9000), 1.0)
        self.assertEqual(progress_between(1000, 1000, 1000), 1.0)
        self.assertEqual(progress_between(1000, 1000, 999), 0.0)


class TestEstimatedVehicle(unittest.TestCase):

    def test_display_fields(self):
        journey = make_journey(
            [StopCall("NSR:Quay:A", "Tonsenhagen", time=1000)],
            [
                StopCall("NSR:Quay:B", "Sinsen", arr_time=3000, dep_time=3000),
                StopCall("NSR:Quay:C", "Torshov", arr_time=5000, dep_time=5000),
            ],
        )

        vehicle = estimate_vehicle(journey, lookup, 2000)

        self.assertEqual(vehicle.vehicle_id, "RUT:VehicleRef:1")
        self.assertEqual(vehicle.line.public_code, "31")
        self.assertEqual(vehicle.from_stop, "Tonsenhagen")
        self.assertEqual(vehicle.to_stop, "Sinsen")
        self.assertEqual(vehicle.via, "Sinsen")
        self.assertEqual(vehicle.next_stop, "Sinsen")
        self.assertEqual(vehicle.source, "estimated")
        self.assertEqual(vehicle.mode, Mode.BUS)


if __name__ == '__main__':
    unittest.main()
