from enum import StrEnum


class FinishRule(StrEnum):
    SINGLE_OUT = "single_out"
    DOUBLE_OUT = "double_out"


class SegmentKind(StrEnum):
    """Ring hit by a dart."""

    MISS = "Miss"
    SINGLE = "Single"
    DOUBLE = "Double"
    TRIPLE = "Triple"
    OUTER_BULL = "OuterBull"
    INNER_BULL = "InnerBull"


class FairEndingPhase(StrEnum):
    NORMAL = "normal"
    COMPLETING_ROUND = "completing_round"
    TIEBREAK = "tiebreak"
    RESOLVED = "resolved"


class CelebrationLevel(StrEnum):
    """Reaction shown when a turn completes, ordered roughly by excitement."""

    BUST = "bust"
    INFO = "info"
    GOOD = "good"
    EXCELLENT = "excellent"
    GODLIKE = "godlike"
    MAX = "max"


VALID_START_SCORES = (201, 301, 501)
DARTS_PER_TURN = 3
