"""Pure derivations over MatchData for the scoreboard.

Nothing here touches the store. The realtime layer calls ``build_scoreboard``
after every applied change, so the output is always a fresh immutable value.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from darts.logic.enums import DARTS_PER_TURN, FairEndingPhase
from darts.logic.fair_ending import (
    NORMAL_STATE,
    FairEndingState,
    compute_fair_ending_state,
    fair_ending_banner,
    get_next_fair_ending_player,
)
from darts.logic.replay import is_turn_complete
from darts.logic.types import LocalTurn, TurnWithThrows

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from darts.logic.types import LegRecord, MatchData, MatchRecord, Player, TurnRecord


class PlayerStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_scores: dict[str, int] = Field(default_factory=dict)
    averages: dict[str, float] = Field(default_factory=dict)
    last_turns: dict[str, TurnWithThrows | None] = Field(default_factory=dict)


class PlayerLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    player_id: str
    display_name: str
    remaining: int
    average: float
    legs_won: int
    checked_out: bool = False


class Scoreboard(BaseModel):
    """Everything the UI renders for a match."""

    model_config = ConfigDict(frozen=True)

    current_leg_id: str | None = None
    current_player_id: str | None = None
    players: tuple[PlayerLine, ...] = ()
    fair_ending: FairEndingState = NORMAL_STATE
    banner: str | None = None
    match_winner_id: str | None = None
    winner_announcement: str | None = None


def select_current_leg(legs: Sequence[LegRecord]) -> LegRecord | None:
    """First leg without a winner, else the last leg."""
    if not legs:
        return None
    return next((leg for leg in legs if leg.winner_player_id is None), legs[-1])


def select_order_players(players: Sequence[Player], current_leg: LegRecord | None) -> list[Player]:
    """Roster rotated so the leg's starting player comes first."""
    if current_leg is None or not players:
        return []
    ids = [p.id for p in players]
    if current_leg.starting_player_id not in ids:
        return list(players)
    start = ids.index(current_leg.starting_player_id)
    return [*players[start:], *players[:start]]


def count_leg_wins(legs: Sequence[LegRecord]) -> dict[str, int]:
    wins: dict[str, int] = {}
    for leg in legs:
        if leg.winner_player_id is not None:
            wins[leg.winner_player_id] = wins.get(leg.winner_player_id, 0) + 1
    return wins


def select_match_winner_id(match: MatchRecord | None, legs: Sequence[LegRecord]) -> str | None:
    if match is None:
        return None
    if match.winner_player_id is not None:
        return match.winner_player_id
    wins = count_leg_wins(legs)
    return next((pid for pid, count in wins.items() if count >= match.legs_to_win), None)


def select_player_stats(
    players: Sequence[Player],
    turns: Sequence[TurnWithThrows],
    current_leg_id: str | None,
    start_score: int,
) -> PlayerStats:
    """Turn-start scores, per-turn averages and each player's latest turn."""
    base_scores = {p.id: start_score for p in players}
    sums = dict.fromkeys(base_scores, 0)
    counts = dict.fromkeys(base_scores, 0)
    last_turns: dict[str, TurnWithThrows | None] = dict.fromkeys(base_scores)

    for turn in turns:
        pid = turn.player_id
        if pid not in base_scores:
            continue
        previous = last_turns[pid]
        if previous is None or turn.turn_number >= previous.turn_number:
            last_turns[pid] = turn
        if turn.leg_id == current_leg_id and not turn.busted and turn.tiebreak_round is None:
            base_scores[pid] -= turn.total_scored
            sums[pid] += turn.total_scored
            counts[pid] += 1

    averages = {pid: (sums[pid] / counts[pid] if counts[pid] else 0.0) for pid in base_scores}
    return PlayerStats(base_scores=base_scores, averages=averages, last_turns=last_turns)


def _throw_count(turn: TurnWithThrows, throw_counts: Mapping[str, int]) -> int:
    return throw_counts.get(turn.id, len(turn.throws))


def get_score_for_player(
    player_id: str,
    start_score: int,
    stats: PlayerStats,
    local_turn: LocalTurn,
    throw_counts: Mapping[str, int],
    ongoing_turn_id: str | None = None,
) -> int:
    """Live remaining score, including the darts of a turn still in progress.

    Our own turn shows the local subtotal. Another client's open turn shows
    the sum of its known darts on top of whatever total is already persisted.
    """
    current = stats.base_scores.get(player_id, start_score)
    last = stats.last_turns.get(player_id)

    if local_turn.player_id == player_id:
        # The persisted row may already carry the partial subtotal after an undo.
        already_counted = (
            last is not None
            and last.id == ongoing_turn_id
            and 0 < _throw_count(last, throw_counts) < DARTS_PER_TURN
            and last.total_scored > 0
        )
        return max(0, current - (0 if already_counted else local_turn.subtotal))

    if last is not None and not last.busted and 0 < _throw_count(last, throw_counts) < DARTS_PER_TURN:
        in_progress = sum(t.scored for t in last.throws)
        current -= in_progress - last.total_scored

    return max(0, current)


def select_current_player(
    order_players: Sequence[Player],
    current_leg: LegRecord | None,
    turns: Sequence[TurnRecord],
    throw_counts: Mapping[str, int],
    local_turn: LocalTurn | None = None,
    fair_ending: FairEndingState = NORMAL_STATE,
) -> Player | None:
    """Who is at the oche.

    A local turn in progress wins; then an open last turn; then the player the
    fair-ending state machine calls up; otherwise plain rotation.
    """
    if not order_players or current_leg is None:
        return None
    by_id = {p.id: p for p in order_players}

    if local_turn is not None and local_turn.player_id is not None:
        return by_id.get(local_turn.player_id, order_players[0])

    ordered = sorted(turns, key=lambda t: t.turn_number)
    if ordered:
        last = ordered[-1]
        count = throw_counts.get(last.id, len(last.throws) if isinstance(last, TurnWithThrows) else 0)
        if not is_turn_complete(count, busted=last.busted, finished=last.total_scored > 0 and count > 0):
            return by_id.get(last.player_id, order_players[0])

    if fair_ending.phase in (FairEndingPhase.COMPLETING_ROUND, FairEndingPhase.TIEBREAK):
        next_id = get_next_fair_ending_player(fair_ending, list(by_id), turns, throw_counts)
        if next_id is not None:
            return by_id[next_id]

    ordinary = [t for t in ordered if t.tiebreak_round is None]
    return order_players[len(ordinary) % len(order_players)]


def build_scoreboard(
    data: MatchData,
    local_turn: LocalTurn | None = None,
    ongoing_turn_id: str | None = None,
) -> Scoreboard:
    """Derive the full UI view of a match from loaded data and the local overlay."""
    local = local_turn or LocalTurn()
    match = data.match
    current_leg = select_current_leg(data.legs)
    order = select_order_players(data.players, current_leg)
    order_ids = [p.id for p in order]
    names = {p.id: p.display_name for p in data.players}
    leg_id = current_leg.id if current_leg else None
    leg_turns = [t for t in data.turns if t.leg_id == leg_id]

    fair = compute_fair_ending_state(
        leg_turns,
        order_ids,
        match.start_score,
        fair_ending=match.fair_ending,
        throw_counts=data.turn_throw_counts,
    )
    stats = select_player_stats(data.players, leg_turns, leg_id, match.start_score)
    wins = count_leg_wins(data.legs)
    winner_id = select_match_winner_id(match, data.legs)
    checked_out = set(fair.checked_out_player_ids)

    lines = tuple(
        PlayerLine(
            player_id=p.id,
            display_name=p.display_name,
            remaining=get_score_for_player(
                p.id,
                match.start_score,
                stats,
                local,
                data.turn_throw_counts,
                ongoing_turn_id,
            ),
            average=stats.averages.get(p.id, 0.0),
            legs_won=wins.get(p.id, 0),
            checked_out=p.id in checked_out,
        )
        for p in data.players
    )

    current = None
    if winner_id is None:
        current = select_current_player(
            order,
            current_leg,
            leg_turns,
            data.turn_throw_counts,
            local,
            fair,
        )

    return Scoreboard(
        current_leg_id=leg_id,
        current_player_id=current.id if current else None,
        players=lines,
        fair_ending=fair,
        banner=fair_ending_banner(fair, names),
        match_winner_id=winner_id,
        winner_announcement=f"{names.get(winner_id, winner_id)} wins the match!" if winner_id else None,
    )
