"""Celebration level for a completed turn, and once-per-turn bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from darts.logic.enums import CelebrationLevel

if TYPE_CHECKING:
    from collections.abc import Iterable

MAX_TURN_SCORE = 180


@dataclass(frozen=True)
class Celebration:
    level: CelebrationLevel
    duration_seconds: float


# (minimum score, level, seconds), highest first
_THRESHOLDS = (
    (MAX_TURN_SCORE, CelebrationLevel.MAX, 6.0),
    (120, CelebrationLevel.GODLIKE, 5.5),
    (70, CelebrationLevel.EXCELLENT, 5.0),
    (50, CelebrationLevel.GOOD, 4.0),
    (1, CelebrationLevel.INFO, 2.0),
)


def celebration_for(total_scored: int, *, busted: bool) -> Celebration | None:
    if busted:
        return Celebration(CelebrationLevel.BUST, 3.0)
    for minimum, level, seconds in _THRESHOLDS:
        if total_scored >= minimum:
            return Celebration(level, seconds)
    return None


class CelebrationTracker:
    """Turn ids already celebrated in the active leg."""

    def __init__(self) -> None:
        self._leg_id: str | None = None
        self._celebrated: set[str] = set()

    def __contains__(self, turn_id: object) -> bool:
        return turn_id in self._celebrated

    def mark(self, turn_id: str) -> bool:
        """Record ``turn_id``; False if it was already celebrated."""
        if turn_id in self._celebrated:
            return False
        self._celebrated.add(turn_id)
        return True

    def mark_all(self, turn_ids: Iterable[str]) -> None:
        self._celebrated.update(turn_ids)

    def reset_for_leg(self, leg_id: str | None) -> None:
        if leg_id != self._leg_id:
            self._leg_id = leg_id
            self._celebrated.clear()
