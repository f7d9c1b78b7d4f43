"""X01 throw rule evaluator.

Every scoring decision in the system goes through ``apply_throw``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from darts.logic.enums import DARTS_PER_TURN, FinishRule
from darts.logic.segments import Segment, parse_segment_label
from darts.logic.types import TurnWithThrows

if TYPE_CHECKING:
    from collections.abc import Iterable

    from darts.logic.types import TurnRecord


@dataclass(frozen=True)
class TurnOutcome:
    new_score: int
    busted: bool
    finished: bool


def apply_throw(current_score: int, segment: Segment | str, finish_rule: FinishRule) -> TurnOutcome:
    """Apply a single dart to a remaining score.

    A bust leaves ``new_score`` at ``current_score``. Under double-out a
    checkout must land on a double or the inner bull, and a remainder of 1
    is a bust.
    """
    if isinstance(segment, str):
        segment = parse_segment_label(segment)
    remaining = current_score - segment.scored

    if remaining < 0:
        return TurnOutcome(new_score=current_score, busted=True, finished=False)

    if remaining == 0:
        if finish_rule == FinishRule.DOUBLE_OUT and not segment.is_double:
            return TurnOutcome(new_score=current_score, busted=True, finished=False)
        return TurnOutcome(new_score=0, busted=False, finished=True)

    if finish_rule == FinishRule.DOUBLE_OUT and remaining == 1:
        return TurnOutcome(new_score=current_score, busted=True, finished=False)

    return TurnOutcome(new_score=remaining, busted=False, finished=False)


def three_dart_average(turns: Iterable[TurnRecord]) -> float:
    """Points per three darts across non-busted turns.

    Turns loaded with their throws count the darts actually thrown (a
    checkout may take fewer than three); bare turn rows count as three.
    """
    points = 0
    darts = 0
    for turn in turns:
        if turn.busted:
            continue
        points += turn.total_scored
        if isinstance(turn, TurnWithThrows) and turn.throws:
            darts += len(turn.throws)
        else:
            darts += DARTS_PER_TURN
    if darts == 0:
        return 0.0
    return points / darts * DARTS_PER_TURN
