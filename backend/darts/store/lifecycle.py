"""Turn and leg bookkeeping on top of a MatchStore.

These are the write paths every scorer shares: opening a turn without a
lock, recomputing a leg after an edit, and completing a leg.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from darts.logic.enums import DARTS_PER_TURN
from darts.logic.replay import is_turn_complete, replay_leg
from darts.logic.selectors import count_leg_wins
from darts.store.exceptions import DuplicateRowError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from darts.logic.replay import LegReplay
    from darts.logic.types import LegRecord, MatchRecord, TurnRecord, TurnWithThrows
    from darts.store.repository import MatchStore

logger = structlog.get_logger()

_TURN_CREATE_ATTEMPTS = 2


@dataclass(frozen=True)
class LegCompletion:
    leg: LegRecord
    next_leg: LegRecord | None = None
    match_winner_id: str | None = None


def is_incomplete_turn(turn: TurnWithThrows) -> bool:
    """Open: not busted, fewer than three darts and no recorded total.

    Only meaningful for the latest turn of a leg.
    """
    return not is_turn_complete(len(turn.throws), busted=turn.busted, finished=turn.total_scored > 0)


async def resolve_or_create_turn(
    store: MatchStore,
    *,
    match_id: str,
    leg_id: str,
    player_id: str,
    tiebreak_round: int | None = None,
) -> TurnRecord:
    """Return the player's open turn in the leg, or create the next one.

    Only the leg's latest turn is ever reused. An earlier turn left short by a
    deleted dart is history.

    A reused turn comes back with its throws, which may include darts
    another scorer entered.

    There is no lock across clients: if another writer takes the turn number
    first the unique constraint rejects the insert and we re-read once.
    """
    for attempt in range(1, _TURN_CREATE_ATTEMPTS + 1):
        turns = await store.list_turns(leg_id)
        latest = max(turns, key=lambda t: t.turn_number, default=None)
        if (
            latest is not None
            and latest.player_id == player_id
            and latest.tiebreak_round == tiebreak_round
            and is_incomplete_turn(latest)
        ):
            return latest
        next_number = latest.turn_number + 1 if latest is not None else 1
        try:
            return await store.insert_turn(
                match_id=match_id,
                leg_id=leg_id,
                player_id=player_id,
                turn_number=next_number,
                tiebreak_round=tiebreak_round,
            )
        except DuplicateRowError:
            logger.info("turn number taken, retrying", leg_id=leg_id, turn_number=next_number, attempt=attempt)
    raise DuplicateRowError(f"could not open a turn for player {player_id} in leg {leg_id}")


async def recompute_leg_turns(store: MatchStore, match: MatchRecord, leg_id: str, player_ids: Sequence[str]) -> LegReplay:
    """Replay a leg from its throws and persist every turn whose outcome changed.

    Every turn after an edit is recomputed, including turns thrown after a
    checkout that the edit has undone. The latest turn keeps a zero total
    while it is still open. Tiebreak turns are left alone.
    """
    turns = await store.list_turns(leg_id)
    replay = replay_leg(turns, player_ids, match.start_score, match.finish_rule, stop_at_finish=False)
    by_id = {t.id: t for t in turns}
    latest = max((t.turn_number for t in turns if t.tiebreak_round is None), default=0)
    updated = 0
    for result in replay.turn_results:
        if result.tiebreak_round is not None:
            continue
        turn = by_id[result.turn_id]
        in_progress = turn.turn_number == latest and not (
            result.busted or result.finished or len(turn.throws) >= DARTS_PER_TURN
        )
        total = 0 if in_progress else result.total_scored
        if turn.total_scored != total or turn.busted != result.busted:
            await store.update_turn(turn.id, total_scored=total, busted=result.busted)
            updated += 1
    logger.info("recomputed leg", leg_id=leg_id, turns=len(turns), updated=updated, winner=replay.leg_winner_id)
    return replay


def next_starting_player(player_ids: Sequence[str], current_starter: str) -> str:
    """The starter of the next leg rotates one seat along the roster."""
    if current_starter not in player_ids:
        return player_ids[0]
    return player_ids[(player_ids.index(current_starter) + 1) % len(player_ids)]


async def complete_leg(
    store: MatchStore,
    match: MatchRecord,
    leg: LegRecord,
    winner_id: str,
    player_ids: Sequence[str],
) -> LegCompletion:
    """Record a leg winner, then open the next leg or finish the match.

    Idempotent: a leg that already has a winner is left as it is.
    """
    if leg.winner_player_id is not None:
        logger.info("leg already complete", leg_id=leg.id, winner=leg.winner_player_id)
        return LegCompletion(leg=leg)

    leg = await store.set_leg_winner(leg.id, winner_id)
    legs = await store.list_legs(match.id)
    wins = count_leg_wins(legs)

    if wins.get(winner_id, 0) >= match.legs_to_win:
        await store.set_match_winner(match.id, winner_id)
        logger.info("match won", match_id=match.id, winner=winner_id, legs=wins[winner_id])
        return LegCompletion(leg=leg, match_winner_id=winner_id)

    leg_number = max(existing.leg_number for existing in legs) + 1
    try:
        next_leg = await store.insert_leg(
            match_id=match.id,
            leg_number=leg_number,
            starting_player_id=next_starting_player(player_ids, leg.starting_player_id),
        )
    except DuplicateRowError:
        logger.info("next leg already created", match_id=match.id, leg_number=leg_number)
        return LegCompletion(leg=leg)
    logger.info("leg won", match_id=match.id, leg_id=leg.id, winner=winner_id, next_leg_id=next_leg.id)
    return LegCompletion(leg=leg, next_leg=next_leg)
