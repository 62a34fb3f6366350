"""Tests for transport mode classification."""

import unittest

from models.domain_models import Journey, Mode, StopCall
from services.mode_classifier import (
    LineModeResolver,
    classify,
    classify_by_line_number,
    normalize_transport_mode,
    public_code,
    refine_display_mode,
)
from utils.upstream import UpstreamError


class FakePlanner:
    def __init__(self, modes, fail=False):
        self.modes = modes
        self.fail = fail
        self.requests = []

    async def line_modes(self, refs):
        self.requests.append(list(refs))
        if self.fail:
            raise UpstreamError("down", status_code=503)
        return {ref: self.modes.get(ref) for ref in refs}


def journey(line_ref):
    return Journey(
        vehicle_id=f"v-{line_ref}",
        mode=classify_by_line_number(line_ref),
        line_ref=line_ref,
        estimated_calls=[StopCall("NSR:Quay:1", "A", arr_time=1000, dep_time=1000)],
    )


class TestClassification(unittest.TestCase):

    def test_line_number_ranges(self):
        self.assertEqual(classify_by_line_number("RUT:Line:1"), Mode.METRO)
        self.assertEqual(classify_by_line_number("RUT:Line:6"), Mode.METRO)
        self.assertEqual(classify_by_line_number("RUT:Line:11"), Mode.TRAM)
        self.assertEqual(classify_by_line_number("RUT:Line:19"), Mode.TRAM)
        self.assertEqual(classify_by_line_number("RUT:Line:20"), Mode.BUS)
        self.assertEqual(classify_by_line_number("RUT:Line:110"), Mode.BUS)

    def test_unclassifiable_line_numbers(self):
        self.assertIsNone(classify_by_line_number("RUT:Line:7"))
        self.assertIsNone(classify_by_line_number("RUT:Line:0"))
        self.assertIsNone(classify_by_line_number("RUT:Line:B1"))
        self.assertIsNone(classify_by_line_number(None))

    def test_declared_mode_wins_over_line_number(self):
        self.assertEqual(classify("RUT:Line:3", "tram"), Mode.TRAM)
        self.assertEqual(classify("RUT:Line:3", "TRAM"), Mode.TRAM)

    def test_unknown_declared_mode_keeps_guess(self):
        self.assertEqual(classify("RUT:Line:3", None), Mode.METRO)
        self.assertEqual(classify("RUT:Line:3", "cableway"), Mode.METRO)

    def test_synonyms(self):
        self.assertEqual(normalize_transport_mode("FERRY"), Mode.WATER)
        self.assertEqual(normalize_transport_mode("coach"), Mode.BUS)
        self.assertIsNone(normalize_transport_mode(""))

    def test_public_code(self):
        self.assertEqual(public_code("RUT:Line:31"), "31")
        self.assertEqual(public_code("RUT:Line:X"), "?")

    def test_airport_refinement(self):
        self.assertEqual(refine_display_mode(Mode.BUS, "FB1"), Mode.FLYBUSS)
        self.assertEqual(refine_display_mode(Mode.RAIL, "FX"), Mode.FLYTOG)
        self.assertEqual(refine_display_mode(Mode.RAIL, "R10", "Oslo lufthavn"), Mode.FLYTOG)
        self.assertEqual(refine_display_mode(Mode.RAIL, "R10", "Drammen"), Mode.RAIL)
        self.assertEqual(refine_display_mode(Mode.BUS, "31", "Oslo lufthavn"), Mode.BUS)


class TestLineModeResolver(unittest.IsolatedAsyncioTestCase):

    async def test_declared_mode_overrides_metro_guess(self):
        resolver = LineModeResolver(FakePlanner({"RUT:Line:3": "tram"}))

        kept = await resolver.apply([journey("RUT:Line:3")])

        self.assertEqual(kept[0].mode, Mode.TRAM)

    async def test_unknown_mode_is_rescued_or_dropped(self):
        resolver = LineModeResolver(FakePlanner({"RUT:Line:8": "water"}))

        kept = await resolver.apply([journey("RUT:Line:8"), journey("RUT:Line:9")])

        self.assertEqual([(j.line_ref, j.mode) for j in kept], [("RUT:Line:8", Mode.WATER)])

    async def test_answers_are_cached_including_missing_modes(self):
        planner = FakePlanner({"RUT:Line:31": "bus"})
        resolver = LineModeResolver(planner)

        await resolver.apply([journey("RUT:Line:31"), journey("RUT:Line:32")])
        await resolver.apply([journey("RUT:Line:31"), journey("RUT:Line:32")])

        self.assertEqual(len(planner.requests), 1)
        self.assertEqual(len(resolver), 2)
        self.assertIsNone(resolver.get("RUT:Line:32"))

    async def test_lines_are_looked_up_in_batches(self):
        planner = FakePlanner({})
        resolver = LineModeResolver(planner, batch_size=2)

        await resolver.resolve([f"RUT:Line:{n}" for n in range(20, 25)])

        self.assertEqual(sorted(len(batch) for batch in planner.requests), [1, 2, 2])

    async def test_failed_lookup_caches_nothing_and_keeps_guess(self):
        resolver = LineModeResolver(FakePlanner({}, fail=True))

        kept = await resolver.apply([journey("RUT:Line:31")])

        self.assertEqual(len(resolver), 0)
        self.assertEqual(kept[0].mode, Mode.BUS)


if __name__ == '__main__':
    unittest.main()
