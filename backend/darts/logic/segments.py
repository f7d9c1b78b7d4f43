"""Segment label parsing.

Labels are the persisted encoding of a dart: ``Miss``, ``SB`` (outer bull),
``DB`` (inner bull) or a ring letter followed by a wedge number (``S20``,
``D16``, ``T19``). Historical rows must always replay, so unknown labels map
to a miss instead of raising.
"""

import re

from pydantic import BaseModel, ConfigDict

from darts.logic.enums import SegmentKind

_LABEL_PATTERN = re.compile(r"^([SDT])(\d{1,2})$")
_RING_KINDS = {"S": SegmentKind.SINGLE, "D": SegmentKind.DOUBLE, "T": SegmentKind.TRIPLE}
_RING_MULTIPLIERS = {"S": 1, "D": 2, "T": 3}

MIN_WEDGE = 1
MAX_WEDGE = 20
OUTER_BULL_SCORE = 25
INNER_BULL_SCORE = 50


class Segment(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    kind: SegmentKind
    scored: int

    @property
    def is_double(self) -> bool:
        """Inner bull counts as a double for finishing purposes."""
        return self.kind in (SegmentKind.DOUBLE, SegmentKind.INNER_BULL)


MISS = Segment(label="Miss", kind=SegmentKind.MISS, scored=0)


def _parse(label: str) -> Segment | None:
    if label == "Miss":
        return MISS
    if label == "SB":
        return Segment(label="SB", kind=SegmentKind.OUTER_BULL, scored=OUTER_BULL_SCORE)
    if label == "DB":
        return Segment(label="DB", kind=SegmentKind.INNER_BULL, scored=INNER_BULL_SCORE)
    match = _LABEL_PATTERN.match(label)
    if match is None:
        return None
    ring, wedge = match.group(1), int(match.group(2))
    if not MIN_WEDGE <= wedge <= MAX_WEDGE:
        return None
    return Segment(label=label, kind=_RING_KINDS[ring], scored=wedge * _RING_MULTIPLIERS[ring])


def parse_segment_label(label: str | None) -> Segment:
    """Parse a label into a Segment, mapping anything unrecognised to a miss."""
    if not label:
        return MISS
    return _parse(label) or MISS


def score_from_segment(label: str | None) -> int | None:
    """Score implied by a label, or None when the label cannot be parsed."""
    if not label:
        return None
    segment = _parse(label)
    return segment.scored if segment is not None else None


def all_segments() -> list[Segment]:
    """Every scoring segment on the board (misses excluded)."""
    segments = [parse_segment_label(f"{ring}{n}") for ring in "SDT" for n in range(MIN_WEDGE, MAX_WEDGE + 1)]
    segments.append(parse_segment_label("SB"))
    segments.append(parse_segment_label("DB"))
    return segments
