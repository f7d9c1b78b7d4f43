"""Deterministic leg replay.

The same fold is used for live scoring and for recomputing a leg after a
historical throw is edited or deleted, so both paths always agree on busts,
totals and the leg winner.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from darts.logic.enums import DARTS_PER_TURN
from darts.logic.x01 import apply_throw

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from darts.logic.enums import FinishRule
    from darts.logic.types import ThrowRecord, TurnWithThrows


@dataclass(frozen=True)
class TurnReplay:
    total_scored: int
    busted: bool
    finished: bool
    score_after: int
    darts_used: int = 0


@dataclass(frozen=True)
class TurnResult:
    turn_id: str
    player_id: str
    turn_number: int
    total_scored: int
    busted: bool
    finished: bool
    score_after: int
    tiebreak_round: int | None = None


@dataclass(frozen=True)
class LegReplay:
    turn_results: tuple[TurnResult, ...]
    player_scores: dict[str, int] = field(default_factory=dict)
    leg_winner_id: str | None = None


def is_turn_complete(throw_count: int, *, busted: bool, finished: bool = False) -> bool:
    """A turn is closed after three darts or an early bust or checkout."""
    return busted or finished or throw_count >= DARTS_PER_TURN


def replay_turn(throws: Iterable[ThrowRecord], start_score: int, finish_rule: FinishRule) -> TurnReplay:
    """Fold a turn's darts through the rule evaluator.

    Darts after a bust or a checkout are never evaluated. A bust scores
    nothing and leaves the player on ``start_score``.
    """
    current = start_score
    total = 0
    darts_used = 0
    for throw in sorted(throws, key=lambda t: t.dart_index):
        darts_used += 1
        outcome = apply_throw(current, throw.segment, finish_rule)
        if outcome.busted:
            return TurnReplay(total_scored=0, busted=True, finished=False, score_after=start_score, darts_used=darts_used)
        total += current - outcome.new_score
        current = outcome.new_score
        if outcome.finished:
            return TurnReplay(total_scored=total, busted=False, finished=True, score_after=0, darts_used=darts_used)
    return TurnReplay(total_scored=total, busted=False, finished=False, score_after=current, darts_used=darts_used)


def replay_leg(
    turns: Sequence[TurnWithThrows],
    player_ids: Sequence[str],
    start_score: int,
    finish_rule: FinishRule,
    *,
    stop_at_finish: bool = True,
) -> LegReplay:
    """Replay every turn of a leg in turn-number order.

    Running scores only move on non-busted turns. The walk stops at the
    first checkout unless ``stop_at_finish`` is False, which fair-ending legs
    use so the turns of the completing round are still recomputed.
    Tiebreak turns never touch running scores; their result is the plain
    sum of their darts.
    """
    scores = dict.fromkeys(player_ids, start_score)
    results: list[TurnResult] = []
    winner: str | None = None

    for turn in sorted(turns, key=lambda t: t.turn_number):
        if turn.tiebreak_round is not None:
            results.append(
                TurnResult(
                    turn_id=turn.id,
                    player_id=turn.player_id,
                    turn_number=turn.turn_number,
                    total_scored=sum(t.scored for t in turn.throws),
                    busted=False,
                    finished=False,
                    score_after=scores.get(turn.player_id, start_score),
                    tiebreak_round=turn.tiebreak_round,
                ),
            )
            continue

        before = scores.get(turn.player_id, start_score)
        replayed = replay_turn(turn.throws, before, finish_rule)
        if not replayed.busted:
            scores[turn.player_id] = replayed.score_after
        results.append(
            TurnResult(
                turn_id=turn.id,
                player_id=turn.player_id,
                turn_number=turn.turn_number,
                total_scored=replayed.total_scored,
                busted=replayed.busted,
                finished=replayed.finished,
                score_after=replayed.score_after,
            ),
        )
        if replayed.finished:
            if winner is None:
                winner = turn.player_id
            if stop_at_finish:
                break

    return LegReplay(turn_results=tuple(results), player_scores=scores, leg_winner_id=winner)


def score_at_turn_start(
    turns: Iterable[TurnWithThrows],
    turn_number: int,
    player_id: str,
    start_score: int,
    finish_rule: FinishRule,
) -> int:
    """Remaining score of ``player_id`` before their turn ``turn_number``."""
    score = start_score
    previous = sorted(
        (t for t in turns if t.player_id == player_id and t.turn_number < turn_number and t.tiebreak_round is None),
        key=lambda t: t.turn_number,
    )
    for turn in previous:
        replayed = replay_turn(turn.throws, score, finish_rule)
        if not replayed.busted:
            score = replayed.score_after
    return score

