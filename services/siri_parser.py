"""
SIRI Estimated Timetable parsing.
Turns the raw ET XML document into Journey records, dropping any call
without a usable time and any journey without calls.
"""

import logging
import re
import xml.etree.ElementTree as ET
from datetime import datetime
from typing import List, Optional

from models.domain_models import Journey, StopCall
from services.mode_classifier import classify_by_line_number

logger = logging.getLogger(__name__)

SIRI_NS = "http://www.siri.org.uk/siri"
NS = {"siri": SIRI_NS}

# fromisoformat before 3.11 only takes 3 or 6 fractional digits
FRACTION_RE = re.compile(r"\.(\d+)")


def _pad_fraction(match: "re.Match") -> str:
    return "." + match.group(1)[:6].ljust(6, "0")


def parse_iso_time(value: Optional[str]) -> Optional[int]:
    """Parse an ISO-8601 timestamp into epoch milliseconds, or None."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = FRACTION_RE.sub(_pad_fraction, text, count=1)
    try:
        return int(datetime.fromisoformat(text).timestamp() * 1000)
    except ValueError:
        return None


def _text(element: ET.Element, tag: str) -> Optional[str]:
    child = element.find(f".//siri:{tag}", NS)
    if child is None or child.text is None:
        return None
    return child.text.strip()


def _parse_recorded_call(element: ET.Element) -> Optional[StopCall]:
    quay_id = _text(element, "StopPointRef")
    time = parse_iso_time(_text(element, "ActualDepartureTime")) or parse_iso_time(
        _text(element, "ActualArrivalTime")
    )
    if not quay_id or not time:
        return None
    return StopCall(quay_id=quay_id, name=_text(element, "StopPointName") or "", time=time)


def _parse_estimated_call(element: ET.Element) -> Optional[StopCall]:
    quay_id = _text(element, "StopPointRef")
    dep = parse_iso_time(_text(element, "ExpectedDepartureTime"))
    arr = parse_iso_time(_text(element, "ExpectedArrivalTime")) or dep
    if not quay_id or not (arr or dep):
        return None
    return StopCall(
        quay_id=quay_id,
        name=_text(element, "StopPointName") or "",
        arr_time=arr or dep,
        dep_time=dep or arr,
    )


def parse_estimated_timetable(xml_text: str) -> List[Journey]:
    """
    Parse a SIRI ET document.

    Journeys keep their line-number mode guess, which may be None; the
    caller decides after the authoritative lookup whether to drop them.

    Raises:
        ET.ParseError: If the document itself is not well-formed XML
    """
    root = ET.fromstring(xml_text)
    journeys: List[Journey] = []
    dropped_calls = 0

    for jel in root.iter(f"{{{SIRI_NS}}}EstimatedVehicleJourney"):
        line_ref = _text(jel, "LineRef")
        if not line_ref:
            continue

        recorded = []
        for cel in jel.iter(f"{{{SIRI_NS}}}RecordedCall"):
            call = _parse_recorded_call(cel)
            if call:
                recorded.append(call)
            else:
                dropped_calls += 1

        estimated = []
        for cel in jel.iter(f"{{{SIRI_NS}}}EstimatedCall"):
            call = _parse_estimated_call(cel)
            if call:
                estimated.append(call)
            else:
                dropped_calls += 1

        if not recorded and not estimated:
            continue

        vehicle_ref = _text(jel, "VehicleRef")
        journeys.append(Journey(
            vehicle_id=vehicle_ref or f"et-{line_ref}-{len(journeys)}",
            mode=classify_by_line_number(line_ref),
            line_ref=line_ref,
            destination_name=_text(jel, "DestinationDisplay") or "",
            recorded_calls=recorded,
            estimated_calls=estimated,
        ))

    if dropped_calls:
        logger.debug(f"Dropped {dropped_calls} stop calls without stop reference or time")
    return journeys
