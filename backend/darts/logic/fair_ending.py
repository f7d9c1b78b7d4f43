"""Fair ending for X01 legs.

The player who starts a leg throws first, so a plain "first to zero wins"
rule favours them. With fair ending enabled every player completes the round
in which someone checked out, and simultaneous checkouts are settled by
high-score tiebreak rounds among exactly the players who checked out.

Round completion compares completed ordinary-turn counts per player, which
assumes every player gets exactly one turn per round.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from darts.logic.enums import FairEndingPhase
from darts.logic.replay import is_turn_complete
from darts.logic.types import TurnWithThrows

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from darts.logic.types import TurnRecord


class FairEndingState(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: FairEndingPhase = FairEndingPhase.NORMAL
    checked_out_player_ids: tuple[str, ...] = ()
    tiebreak_round: int = 0
    tiebreak_player_ids: tuple[str, ...] = ()
    tiebreak_scores: dict[str, int] = Field(default_factory=dict)
    winner_id: str | None = None


NORMAL_STATE = FairEndingState()


def _throw_count(turn: TurnRecord, throw_counts: Mapping[str, int] | None) -> int | None:
    if throw_counts is not None and turn.id in throw_counts:
        return throw_counts[turn.id]
    if isinstance(turn, TurnWithThrows):
        return len(turn.throws)
    return None


def latest_turn_number(turns: Sequence[TurnRecord]) -> int | None:
    return max((t.turn_number for t in turns), default=None)


def is_closed_turn(
    turn: TurnRecord,
    throw_counts: Mapping[str, int] | None = None,
    *,
    latest: int | None = None,
) -> bool:
    """Whether a turn counts towards a round.

    Only the latest turn of a leg can be in progress (one or two darts, not
    busted, no recorded total); an earlier turn left short by a deleted dart
    stays closed. Rows whose dart count is unknown are treated as closed.
    """
    if latest is not None and turn.turn_number < latest:
        return True
    count = _throw_count(turn, throw_counts)
    if count is None:
        return True
    return is_turn_complete(count, busted=turn.busted, finished=turn.total_scored > 0)


def _remaining_scores(turns: Sequence[TurnRecord], player_ids: Sequence[str], start_score: int) -> dict[str, int]:
    scores = dict.fromkeys(player_ids, start_score)
    for turn in turns:
        if turn.tiebreak_round is not None or turn.busted:
            continue
        if turn.player_id in scores:
            scores[turn.player_id] -= turn.total_scored
    return scores


def _completed_counts(
    turns: Sequence[TurnRecord],
    player_ids: Sequence[str],
    throw_counts: Mapping[str, int] | None,
) -> dict[str, int]:
    counts = dict.fromkeys(player_ids, 0)
    latest = latest_turn_number(turns)
    for turn in turns:
        if turn.tiebreak_round is not None or turn.player_id not in counts:
            continue
        if is_closed_turn(turn, throw_counts, latest=latest):
            counts[turn.player_id] += 1
    return counts


def compute_fair_ending_state(
    turns: Sequence[TurnRecord],
    play_order: Sequence[str],
    start_score: int,
    *,
    fair_ending: bool,
    throw_counts: Mapping[str, int] | None = None,
) -> FairEndingState:
    """Reconstruct the fair-ending phase of a leg from its turns.

    ``play_order`` lists player ids starting with the leg's starting player.
    ``throw_counts`` overrides the dart count per turn id, for callers that
    track counts separately from the turn rows.
    """
    if not fair_ending or not play_order:
        return NORMAL_STATE

    scores = _remaining_scores(turns, play_order, start_score)
    checked_out = tuple(pid for pid in play_order if scores[pid] == 0)
    if not checked_out:
        return NORMAL_STATE

    counts = _completed_counts(turns, play_order, throw_counts)
    if min(counts.values()) != max(counts.values()):
        return FairEndingState(phase=FairEndingPhase.COMPLETING_ROUND, checked_out_player_ids=checked_out)

    if len(checked_out) == 1:
        return FairEndingState(
            phase=FairEndingPhase.RESOLVED,
            checked_out_player_ids=checked_out,
            winner_id=checked_out[0],
        )

    tiebreak_turns = [t for t in turns if t.tiebreak_round is not None and t.tiebreak_round > 0]
    if not tiebreak_turns:
        return FairEndingState(
            phase=FairEndingPhase.TIEBREAK,
            checked_out_player_ids=checked_out,
            tiebreak_round=1,
            tiebreak_player_ids=checked_out,
        )

    cohort = checked_out
    latest = latest_turn_number(turns)
    last_round = max(t.tiebreak_round for t in tiebreak_turns)
    for round_number in range(1, last_round + 1):
        round_turns = [t for t in tiebreak_turns if t.tiebreak_round == round_number and t.player_id in cohort]
        round_scores = dict.fromkeys(cohort, 0)
        thrown: set[str] = set()
        for turn in round_turns:
            round_scores[turn.player_id] = 0 if turn.busted else turn.total_scored
            if is_closed_turn(turn, throw_counts, latest=latest):
                thrown.add(turn.player_id)

        if not all(pid in thrown for pid in cohort):
            return FairEndingState(
                phase=FairEndingPhase.TIEBREAK,
                checked_out_player_ids=checked_out,
                tiebreak_round=round_number,
                tiebreak_player_ids=cohort,
                tiebreak_scores=round_scores,
            )

        best = max(round_scores.values())
        leaders = tuple(pid for pid in cohort if round_scores[pid] == best)
        if len(leaders) == 1:
            return FairEndingState(
                phase=FairEndingPhase.RESOLVED,
                checked_out_player_ids=checked_out,
                tiebreak_round=round_number,
                tiebreak_player_ids=cohort,
                tiebreak_scores=round_scores,
                winner_id=leaders[0],
            )
        cohort = leaders

    return FairEndingState(
        phase=FairEndingPhase.TIEBREAK,
        checked_out_player_ids=checked_out,
        tiebreak_round=last_round + 1,
        tiebreak_player_ids=cohort,
    )


def get_next_fair_ending_player(
    state: FairEndingState,
    play_order: Sequence[str],
    turns: Sequence[TurnRecord],
    throw_counts: Mapping[str, int] | None = None,
) -> str | None:
    """Who must throw next while the round completes or a tiebreak runs."""
    if state.phase == FairEndingPhase.COMPLETING_ROUND:
        counts = _completed_counts(turns, play_order, throw_counts)
        highest = max(counts.values(), default=0)
        return next((pid for pid in play_order if counts[pid] < highest), None)

    if state.phase == FairEndingPhase.TIEBREAK:
        latest = latest_turn_number(turns)
        thrown = {
            t.player_id
            for t in turns
            if t.tiebreak_round == state.tiebreak_round and is_closed_turn(t, throw_counts, latest=latest)
        }
        return next(
            (pid for pid in play_order if pid in state.tiebreak_player_ids and pid not in thrown),
            None,
        )

    return None


def is_tiebreak_phase(state: FairEndingState) -> bool:
    return state.phase == FairEndingPhase.TIEBREAK


def fair_ending_banner(state: FairEndingState, names: Mapping[str, str]) -> str | None:
    """Short banner text for the scoreboard, or None in normal play."""

    def label(ids: Sequence[str]) -> str:
        return ", ".join(names.get(pid, pid) for pid in ids)

    if state.phase == FairEndingPhase.COMPLETING_ROUND:
        return f"Completing round: {label(state.checked_out_player_ids)} checked out"
    if state.phase == FairEndingPhase.TIEBREAK:
        return f"Tiebreak round {state.tiebreak_round}: {label(state.tiebreak_player_ids)}, highest score wins"
    if state.phase == FairEndingPhase.RESOLVED and state.winner_id is not None:
        return f"{names.get(state.winner_id, state.winner_id)} wins the leg"
    return None
