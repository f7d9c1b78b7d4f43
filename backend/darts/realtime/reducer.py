"""Idempotent application of turn and throw notifications to a leg's turn list.

Aggregates are always recomputed from the throws currently held for a turn,
so replaying a notification, or applying a stale one after a fresher
reconcile, converges to the same state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from darts.logic.enums import DARTS_PER_TURN
from darts.logic.segments import score_from_segment
from darts.logic.types import ThrowRecord, TurnWithThrows
from darts.messaging.types import ChangeOp

if TYPE_CHECKING:
    from darts.messaging.types import ThrowChange, TurnChange

_TURN_COLUMNS = ("leg_id", "player_id", "turn_number", "total_scored", "busted", "tiebreak_round", "match_id")


@dataclass(frozen=True)
class ReducerState:
    current_leg_id: str | None
    turns: tuple[TurnWithThrows, ...]
    turn_throw_counts: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class ReducerEffects:
    needs_reconcile: bool = False
    completed_turn_id: str | None = None


@dataclass(frozen=True)
class ReducerResult:
    turns: tuple[TurnWithThrows, ...]
    turn_throw_counts: dict[str, int]
    effects: ReducerEffects = ReducerEffects()


def _unchanged(state: ReducerState, effects: ReducerEffects | None = None) -> ReducerResult:
    return ReducerResult(state.turns, state.turn_throw_counts, effects or ReducerEffects())


def _sorted_turns(turns: list[TurnWithThrows]) -> tuple[TurnWithThrows, ...]:
    return tuple(sorted(turns, key=lambda t: t.turn_number))


def _find_throw(throws: list[ThrowRecord], throw_id: str | None, dart_index: int | None) -> int:
    if throw_id is not None:
        for i, t in enumerate(throws):
            if t.id == throw_id:
                return i
    if dart_index is not None:
        for i, t in enumerate(throws):
            if t.dart_index == dart_index:
                return i
    return -1


def apply_throw_change(change: ThrowChange, state: ReducerState) -> ReducerResult:
    """Merge one throw notification into its turn.

    A throw for a turn not in ``state`` yields ``needs_reconcile``; the caller
    buffers it and fetches the turn. Reaching three darts reports the turn
    in ``completed_turn_id``.
    """
    record = change.record
    turn_id = change.field("turn_id")
    if record is None or turn_id is None:
        return _unchanged(state)

    turns = list(state.turns)
    turn_idx = next((i for i, t in enumerate(turns) if t.id == turn_id), -1)
    if turn_idx < 0:
        return _unchanged(state, ReducerEffects(needs_reconcile=True))

    target = turns[turn_idx]
    if state.current_leg_id is not None and target.leg_id != state.current_leg_id:
        return _unchanged(state)

    throws = list(target.throws)
    previous_count = len(throws)
    existing_idx = _find_throw(throws, record.id, record.dart_index)
    existing = throws[existing_idx] if existing_idx >= 0 else None

    if change.op == ChangeOp.DELETE:
        if existing is not None:
            del throws[existing_idx]
    else:
        scored = record.scored if record.scored is not None else score_from_segment(record.segment)
        dart_index = record.dart_index or (existing.dart_index if existing else len(throws) + 1)
        merged = ThrowRecord(
            id=record.id or (existing.id if existing else f"temp-{turn_id}-{dart_index}"),
            turn_id=turn_id,
            dart_index=dart_index,
            segment=record.segment or (existing.segment if existing else "Miss"),
            scored=scored if scored is not None else (existing.scored if existing else 0),
            match_id=record.match_id or (existing.match_id if existing else None),
        )
        if existing is not None:
            throws[existing_idx] = merged
        else:
            throws.append(merged)

    throws.sort(key=lambda t: t.dart_index)
    turns[turn_idx] = target.model_copy(update={"throws": tuple(throws)})
    counts = {**state.turn_throw_counts, target.id: len(throws)}

    completed = target.id if previous_count < DARTS_PER_TURN <= len(throws) else None
    return ReducerResult(_sorted_turns(turns), counts, ReducerEffects(completed_turn_id=completed))


def apply_turn_change(change: TurnChange, state: ReducerState) -> ReducerResult:
    """Merge one turn notification into the leg's turn list.

    An update for a turn we do not hold cannot be applied safely and yields
    ``needs_reconcile``. A turn completes when it becomes busted or its
    recorded total changes to a positive value.
    """
    turn_id = change.field("id")
    if turn_id is None:
        return _unchanged(state)

    leg_id = change.field("leg_id")
    if state.current_leg_id is not None and leg_id is not None and leg_id != state.current_leg_id:
        return _unchanged(state)

    turns = list(state.turns)
    turn_idx = next((i for i, t in enumerate(turns) if t.id == turn_id), -1)
    previous = turns[turn_idx] if turn_idx >= 0 else None

    if change.op == ChangeOp.DELETE:
        if previous is None:
            return _unchanged(state)
        del turns[turn_idx]
        counts = {k: v for k, v in state.turn_throw_counts.items() if k != turn_id}
        return ReducerResult(_sorted_turns(turns), counts)

    image = change.new
    if image is None:
        return _unchanged(state)

    if previous is None:
        if change.op == ChangeOp.UPDATE or None in (image.leg_id, image.player_id, image.turn_number):
            return _unchanged(state, ReducerEffects(needs_reconcile=True))
        inserted = TurnWithThrows(
            id=turn_id,
            leg_id=image.leg_id,
            player_id=image.player_id,
            turn_number=image.turn_number,
            total_scored=image.total_scored or 0,
            busted=bool(image.busted),
            tiebreak_round=image.tiebreak_round,
            match_id=image.match_id,
        )
        turns.append(inserted)
        counts = {**state.turn_throw_counts, turn_id: state.turn_throw_counts.get(turn_id, 0)}
        return ReducerResult(_sorted_turns(turns), counts)

    update = {
        column: getattr(image, column)
        for column in _TURN_COLUMNS
        if column in image.model_fields_set and (getattr(image, column) is not None or column == "tiebreak_round")
    }
    merged = previous.model_copy(update=update)
    turns[turn_idx] = merged

    became_busted = merged.busted and not previous.busted
    total_recorded = merged.total_scored > 0 and merged.total_scored != previous.total_scored
    completed = turn_id if became_busted or total_recorded else None
    return ReducerResult(
        _sorted_turns(turns),
        {**state.turn_throw_counts, turn_id: len(merged.throws)},
        ReducerEffects(completed_turn_id=completed),
    )
