"""Tests for timetable route shapes."""

import unittest

from models.domain_models import Journey, Mode, StopCall
from services.shape_builder import build_shape, build_shapes, journey_points, remove_outliers
from utils.geospatial import haversine_distance

# Roughly 1.1 km apart, heading north-east from Oslo S
LINE = [(59.91 + i * 0.01, 10.75 + i * 0.001) for i in range(8)]
COORDS = {f"NSR:Quay:{i}": point for i, point in enumerate(LINE)}


def lookup(quay_id):
    return COORDS.get(quay_id)


def make_journey(quay_numbers, mode=Mode.BUS, line_ref="RUT:Line:31", vehicle_id="v1"):
    calls = [StopCall(f"NSR:Quay:{n}", f"Stop {n}", arr_time=1000 * i, dep_time=1000 * i)
             for i, n in enumerate(quay_numbers)]
    return Journey(vehicle_id=vehicle_id, mode=mode, line_ref=line_ref, estimated_calls=calls)


class TestRemoveOutliers(unittest.TestCase):

    def test_long_pair_depends_on_mode_threshold(self):
        a = (59.90, 10.75)
        b = (60.2597, 10.75)
        self.assertAlmostEqual(haversine_distance(a[0], a[1], b[0], b[1]), 40, delta=0.5)

        self.assertEqual(remove_outliers([a, b], 50), [a, b])
        self.assertEqual(remove_outliers([a, b], 25), [])

    def test_single_outlier_is_removed(self):
        points = [LINE[0], LINE[1], (61.5, 10.7), LINE[2]]

        self.assertEqual(remove_outliers(points, 25), [LINE[0], LINE[1], LINE[2]])

    def test_result_is_idempotent(self):
        points = [LINE[0], (58.0, 9.0), LINE[1], LINE[2], (61.5, 12.0), LINE[3]]

        once = remove_outliers(points, 25)

        self.assertEqual(remove_outliers(once, 25), once)

    def test_terminates_when_every_hop_is_too_long(self):
        points = [(59.0, 10.0), (60.0, 10.0), (61.0, 10.0), (62.0, 10.0)]

        self.assertEqual(remove_outliers(points, 25), [])

    def test_input_is_not_modified(self):
        points = [LINE[0], (61.5, 10.7), LINE[1], LINE[2]]
        original = list(points)

        remove_outliers(points, 25)

        self.assertEqual(points, original)


class TestBuildShapes(unittest.TestCase):

    def test_bus_shape(self):
        shape = build_shape(make_journey([0, 1, 2, 3]), lookup)

        self.assertEqual(shape.mode, Mode.BUS)
        self.assertEqual(shape.line, "31")
        self.assertEqual(shape.from_stop, "Stop 0")
        self.assertEqual(shape.to_stop, "Stop 3")
        self.assertEqual(shape.via, "Stop 2")
        self.assertEqual(shape.points, LINE[:4])
        self.assertEqual([s.quay_id for s in shape.quay_stops], [f"NSR:Quay:{i}" for i in range(4)])

    def test_metro_needs_more_points(self):
        self.assertIsNone(build_shape(make_journey([0, 1, 2, 3], mode=Mode.METRO, line_ref="RUT:Line:5"), lookup))
        self.assertIsNotNone(build_shape(make_journey([0, 1, 2, 3, 4], mode=Mode.METRO, line_ref="RUT:Line:5"), lookup))

    def test_rail_is_not_drawn_from_timetable(self):
        self.assertIsNone(build_shape(make_journey([0, 1, 2, 3], mode=Mode.RAIL), lookup))

    def test_circular_journey_drops_closing_point(self):
        points = journey_points(make_journey([0, 1, 2, 3, 0]), lookup)

        self.assertEqual([p[2] for p in points], [f"NSR:Quay:{i}" for i in range(4)])

    def test_unresolved_calls_are_skipped(self):
        journey = make_journey([0, 1, 99, 2])

        self.assertEqual([p[2] for p in journey_points(journey, lookup)], ["NSR:Quay:0", "NSR:Quay:1", "NSR:Quay:2"])

    def test_duplicates_collapse_to_longest(self):
        shorter = make_journey([0, 1, 2, 7], vehicle_id="v1")
        longer = make_journey([0, 1, 2, 3, 4, 7], vehicle_id="v2")
        other_line = make_journey([0, 1, 2, 7], line_ref="RUT:Line:32", vehicle_id="v3")

        shapes = build_shapes([shorter, longer, other_line], lookup)

        self.assertEqual([s.line for s in shapes], ["31", "32"])
        self.assertEqual(len(shapes[0].points), 6)


if __name__ == '__main__':
    unittest.main()
