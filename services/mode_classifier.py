"""
Transport mode classification.

A line's mode is first guessed from the number embedded in its reference
(metro 1-6, tram 11-19, bus from 20) and then replaced by the journey
planner's declared mode whenever one is known.
"""

import asyncio
import logging
import re
from typing import Dict, Iterable, List, Optional

import config
from models.domain_models import Journey, Mode
from utils.upstream import UPSTREAM_FAILURES

logger = logging.getLogger(__name__)

LINE_NUMBER_RE = re.compile(r":Line:(\d+)")
METRO_LINE_NUMBERS = frozenset(range(1, 7))
TRAM_LINE_NUMBERS = frozenset(range(11, 20))
BUS_MIN_LINE_NUMBER = 20

FLYTOG_CODE_RE = re.compile(r"^F\d*$|^FX$")
FLYBUSS_CODE_RE = re.compile(r"^FB\d*$", re.IGNORECASE)
AIRPORT_WORDS = ("lufthavn", "gardermoen")

_MODE_SYNONYMS = {
    "metro": Mode.METRO,
    "bus": Mode.BUS,
    "coach": Mode.BUS,
    "tram": Mode.TRAM,
    "water": Mode.WATER,
    "ferry": Mode.WATER,
    "ferje": Mode.WATER,
    "rail": Mode.RAIL,
}


def line_number(line_ref: Optional[str]) -> Optional[int]:
    match = LINE_NUMBER_RE.search(line_ref or "")
    return int(match.group(1)) if match else None


def public_code(line_ref: Optional[str]) -> str:
    """Human-facing line number, ``?`` when the reference carries none."""
    match = LINE_NUMBER_RE.search(line_ref or "")
    return match.group(1) if match else "?"


def classify_by_line_number(line_ref: Optional[str]) -> Optional[Mode]:
    """Guess a mode from the numeric line range; low unnamed numbers are unknown."""
    number = line_number(line_ref)
    if not number:
        return None
    if number in METRO_LINE_NUMBERS:
        return Mode.METRO
    if number in TRAM_LINE_NUMBERS:
        return Mode.TRAM
    if number >= BUS_MIN_LINE_NUMBER:
        return Mode.BUS
    return None


def normalize_transport_mode(raw: Optional[str]) -> Optional[Mode]:
    """Map a declared transport mode string (any case, with synonyms) onto Mode."""
    if not raw or not isinstance(raw, str):
        return None
    return _MODE_SYNONYMS.get(raw.strip().lower())


def classify(line_ref: Optional[str], authoritative: Optional[str] = None) -> Optional[Mode]:
    """The declared mode wins whenever it normalizes; otherwise fall back to the line-number guess."""
    declared = normalize_transport_mode(authoritative)
    if declared is not None:
        return declared
    return classify_by_line_number(line_ref)


def is_airport_destination(destination: Optional[str]) -> bool:
    text = (destination or "").lower()
    return any(word in text for word in AIRPORT_WORDS)


def refine_display_mode(mode: Optional[Mode], code: Optional[str], destination: Optional[str] = None) -> Optional[Mode]:
    """
    Relabel airport services for display grouping.

    bus with an FB line code becomes flybuss; rail with an F/FX line code
    or an airport destination becomes flytog. Other modes pass through.
    """
    code = (code or "").strip()
    if mode == Mode.BUS and FLYBUSS_CODE_RE.match(code):
        return Mode.FLYBUSS
    if mode == Mode.RAIL and (FLYTOG_CODE_RE.match(code) or is_airport_destination(destination)):
        return Mode.FLYTOG
    return mode


def _batches(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class LineModeResolver:
    """
    Process-wide cache of declared line modes.

    Answers are kept for the process lifetime, including "no mode declared",
    so a line is looked up at most once. Failed batches cache nothing.
    """

    def __init__(self, planner, batch_size: int = config.LINE_MODE_BATCH_SIZE,
                 concurrency: int = config.LOOKUP_CONCURRENCY):
        self.planner = planner
        self.batch_size = batch_size
        self.concurrency = concurrency
        self._cache: Dict[str, Optional[str]] = {}

    def __len__(self):
        return len(self._cache)

    def get(self, line_ref: str) -> Optional[str]:
        return self._cache.get(line_ref)

    async def resolve(self, line_refs: Iterable[str]) -> None:
        missing = list(dict.fromkeys(ref for ref in line_refs if ref and ref not in self._cache))
        if not missing:
            return

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(batch: List[str]) -> None:
            async with semaphore:
                try:
                    self._cache.update(await self.planner.line_modes(batch))
                except UPSTREAM_FAILURES as e:
                    logger.warning(f"Line mode lookup failed for {len(batch)} lines: {e}")

        await asyncio.gather(*(run(batch) for batch in _batches(missing, self.batch_size)))

    async def apply(self, journeys: List[Journey]) -> List[Journey]:
        """
        Override each journey's guessed mode with the declared one and drop
        journeys whose mode is still unknown.
        """
        await self.resolve(j.line_ref for j in journeys)

        kept = []
        for journey in journeys:
            journey.mode = classify(journey.line_ref, self._cache.get(journey.line_ref))
            if journey.mode is not None:
                kept.append(journey)

        if len(kept) < len(journeys):
            logger.debug(f"Dropped {len(journeys) - len(kept)} journeys with unknown mode")
        return kept
