"""
Scorer actions: recording, undoing and editing throws.

Each action is serialized per client with an asyncio.Lock. The view's local
state decides who throws next; the store stays the source of truth and every
write is folded back into the view ahead of its notification.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from darts.logic.enums import DARTS_PER_TURN, FairEndingPhase
from darts.logic.fair_ending import compute_fair_ending_state, is_closed_turn, is_tiebreak_phase
from darts.logic.replay import score_at_turn_start
from darts.logic.segments import parse_segment_label
from darts.logic.selectors import select_current_leg, select_match_winner_id, select_order_players
from darts.logic.types import TurnWithThrows
from darts.logic.x01 import TurnOutcome, apply_throw
from darts.realtime.exceptions import (
    MatchActionError,
    MatchNotActiveError,
    NoCurrentTurnError,
    ThrowNotFoundError,
    ThrowPersistenceError,
)
from darts.store.exceptions import StoreError
from darts.store.lifecycle import complete_leg, recompute_leg_turns, resolve_or_create_turn

if TYPE_CHECKING:
    from darts.logic.replay import LegReplay
    from darts.logic.segments import Segment
    from darts.logic.types import LegRecord, MatchData, ThrowRecord
    from darts.realtime.events import LegSnapshot
    from darts.realtime.overlay import OngoingTurn
    from darts.realtime.view import MatchView
    from shared.storage import SnapshotStorage

logger = structlog.get_logger()


class ScoringClient:
    """Write path for one scorer client on top of its MatchView."""

    def __init__(self, view: MatchView, *, snapshot_storage: SnapshotStorage | None = None) -> None:
        self._view = view
        self._store = view.store
        self._storage = snapshot_storage
        self._lock = asyncio.Lock()
        self._log = logger.bind(match_id=view.match_id)

    @property
    def view(self) -> MatchView:
        return self._view

    # -- recording ------------------------------------------------------------

    async def record_throw(self, label: str) -> TurnOutcome:
        """Record one dart for the player at the oche.

        The dart shows up locally before the store confirms it. If the write
        fails the dart is rolled back and ThrowPersistenceError is raised.
        """
        async with self._lock:
            return await self._record_throw(parse_segment_label(label))

    async def _record_throw(self, segment: Segment) -> TurnOutcome:
        view = self._view
        data = self._require_active()
        leg = view.current_leg
        if leg is None or leg.winner_player_id is not None:
            raise MatchNotActiveError("no leg in progress")
        match = data.match

        ongoing = self._resume_turn(data)
        tiebreak = ongoing.tiebreak_round is not None
        outcome = self._evaluate(ongoing, segment)
        view.overlay.push(segment)
        view.report_local_change()

        try:
            if ongoing.turn_id is None:
                turn = await resolve_or_create_turn(
                    self._store,
                    match_id=match.id,
                    leg_id=leg.id,
                    player_id=ongoing.player_id,
                    tiebreak_round=ongoing.tiebreak_round,
                )
                view.overlay.bind(turn.id)
                await view.note_turn(turn)
                known = turn.throws if isinstance(turn, TurnWithThrows) else ()
                if known:
                    # Someone else already threw into this turn: continue after their darts.
                    ongoing.darts = [*(parse_segment_label(t.segment) for t in known), segment]
                    outcome = self._evaluate(ongoing, segment, exclude_last=True)
            dart_index = len(ongoing.darts)
            throw = await self._store.insert_throw(
                match_id=match.id,
                turn_id=ongoing.turn_id,
                dart_index=dart_index,
                segment=segment.label,
                scored=segment.scored,
            )
        except StoreError as e:
            view.overlay.clear()
            self._log.warning("throw not saved", segment=segment.label, error=str(e))
            view.report_persistence_failure("record_throw", str(e))
            raise ThrowPersistenceError(segment.label, str(e)) from e

        await view.note_throw(throw)
        self._log.debug("throw recorded", turn_id=throw.turn_id, dart_index=dart_index, segment=segment.label)

        if tiebreak:
            closed = dart_index >= DARTS_PER_TURN
        else:
            closed = outcome.busted or outcome.finished or dart_index >= DARTS_PER_TURN
        if closed:
            await self._finish_turn(ongoing, busted=outcome.busted and not tiebreak)
            await self._maybe_complete_leg(leg, ongoing.player_id, finished=outcome.finished and not tiebreak)
        return outcome

    def _resume_turn(self, data: MatchData) -> OngoingTurn:
        """The overlay turn, rebuilt from state if a reload dropped it."""
        view = self._view
        ongoing = view.overlay.ongoing
        if ongoing is not None:
            return ongoing

        board = view.scoreboard()
        player_id = board.current_player_id
        if player_id is None:
            raise NoCurrentTurnError("no player is at the oche")
        fair = board.fair_ending
        tiebreak_round = fair.tiebreak_round if is_tiebreak_phase(fair) else None
        match = data.match

        # Only the latest turn can still be open.
        latest = max(data.turns, key=lambda t: t.turn_number, default=None)
        if (
            latest is not None
            and latest.player_id == player_id
            and latest.tiebreak_round == tiebreak_round
            and not is_closed_turn(latest, data.turn_throw_counts)
        ):
            start = score_at_turn_start(data.turns, latest.turn_number, player_id, match.start_score, match.finish_rule)
            ongoing = view.overlay.begin(player_id, start, tiebreak_round)
            view.overlay.bind(latest.id)
            ongoing.darts = [parse_segment_label(t.segment) for t in latest.throws]
            return ongoing

        next_number = latest.turn_number + 1 if latest is not None else 1
        start = score_at_turn_start(data.turns, next_number, player_id, match.start_score, match.finish_rule)
        return view.overlay.begin(player_id, start, tiebreak_round)

    def _evaluate(self, ongoing: OngoingTurn, segment: Segment, *, exclude_last: bool = False) -> TurnOutcome:
        """Outcome of ``segment`` on top of the darts already in the turn."""
        before = ongoing.darts[:-1] if exclude_last else ongoing.darts
        if ongoing.tiebreak_round is not None:
            return TurnOutcome(new_score=ongoing.start_score, busted=False, finished=False)
        current = ongoing.start_score - sum(d.scored for d in before)
        return apply_throw(current, segment, self._view.match().finish_rule)

    async def _finish_turn(self, ongoing: OngoingTurn, *, busted: bool) -> None:
        view = self._view
        total = 0 if busted else ongoing.subtotal
        try:
            turn = await self._store.update_turn(ongoing.turn_id, total_scored=total, busted=busted)
        except StoreError as e:
            self._log.warning("turn total not saved", turn_id=ongoing.turn_id, error=str(e))
            view.report_persistence_failure("finish_turn", str(e))
            view.overlay.clear()
            await view.reconcile_current_leg()
            raise MatchActionError(f"could not close turn {ongoing.turn_id}: {e}") from e
        view.overlay.clear()
        await view.note_turn(turn)
        await view.reconcile_current_leg()

    async def _maybe_complete_leg(self, leg: LegRecord, player_id: str, *, finished: bool) -> None:
        data = self._view.require_data()
        if data.match.fair_ending:
            state = self._view.scoreboard().fair_ending
            if state.phase != FairEndingPhase.RESOLVED or state.winner_id is None:
                return
            winner_id = state.winner_id
        elif finished:
            winner_id = player_id
        else:
            return
        await self._complete_leg(leg, winner_id)

    async def _complete_leg(self, leg: LegRecord, winner_id: str) -> None:
        view = self._view
        data = view.require_data()
        snapshot = view.leg_snapshot()
        try:
            completion = await complete_leg(self._store, data.match, leg, winner_id, [p.id for p in data.players])
        except StoreError as e:
            self._log.warning("leg completion not saved", leg_id=leg.id, error=str(e))
            view.report_persistence_failure("complete_leg", str(e))
            raise MatchActionError(f"could not complete leg {leg.id}: {e}") from e
        await view.reload_legs()
        if completion.match_winner_id is not None:
            await view.reload_match()
        await self._save_snapshot(completion.leg, snapshot)

    async def _save_snapshot(self, leg: LegRecord, snapshot: LegSnapshot) -> None:
        if self._storage is None:
            return
        name = f"{leg.match_id}-leg-{leg.leg_number}"
        content = snapshot.model_copy(update={"leg": leg}).model_dump_json()
        try:
            await asyncio.to_thread(self._storage.save_snapshot, name, content)
        except (OSError, ValueError):
            self._log.exception("failed to save leg snapshot", leg_id=leg.id)

    # -- corrections ----------------------------------------------------------

    async def undo_last_throw(self) -> ThrowRecord:
        """Delete the most recent dart of the current leg and replay the leg."""
        async with self._lock:
            view = self._view
            data = self._require_active()
            leg = view.current_leg
            if leg is None:
                raise NoCurrentTurnError("nothing to undo")
            try:
                turns = await self._store.list_turns(leg.id)
                last = next((t for t in sorted(turns, key=lambda t: -t.turn_number) if t.throws), None)
                if last is None:
                    raise NoCurrentTurnError("nothing to undo")
                throw = last.throws[-1]
                await self._store.delete_throw(throw.id)
                if len(last.throws) == 1:
                    await self._store.delete_turn(last.id)
                await recompute_leg_turns(self._store, data.match, leg.id, [p.id for p in data.players])
            except StoreError as e:
                self._log.warning("undo not saved", leg_id=leg.id, error=str(e))
                view.report_persistence_failure("undo", str(e))
                raise MatchActionError(f"could not undo: {e}") from e
            self._log.info("undid throw", throw_id=throw.id, turn_id=last.id)
            view.overlay.clear()
            await view.reconcile_current_leg()
            return throw

    async def edit_throw(self, throw_id: str, label: str) -> ThrowRecord:
        """Change the segment of a recorded dart and replay its leg."""
        segment = parse_segment_label(label)
        async with self._lock:
            throw, leg_id = await self._locate_throw(throw_id)
            try:
                updated = await self._store.update_throw(throw.id, segment=segment.label, scored=segment.scored)
            except StoreError as e:
                self._view.report_persistence_failure("edit_throw", str(e))
                raise MatchActionError(f"could not edit throw {throw_id}: {e}") from e
            await self._after_edit(leg_id)
            return updated

    async def delete_throw(self, throw_id: str) -> None:
        async with self._lock:
            throw, leg_id = await self._locate_throw(throw_id)
            try:
                await self._store.delete_throw(throw.id)
            except StoreError as e:
                self._view.report_persistence_failure("delete_throw", str(e))
                raise MatchActionError(f"could not delete throw {throw_id}: {e}") from e
            await self._after_edit(leg_id)

    async def _locate_throw(self, throw_id: str) -> tuple[ThrowRecord, str]:
        # Finished matches stay editable.
        data = self._view.require_data()
        try:
            throw = await self._store.get_throw(throw_id)
            turn = await self._store.get_turn(throw.turn_id) if throw else None
        except StoreError as e:
            raise MatchActionError(f"could not load throw {throw_id}: {e}") from e
        if throw is None or turn is None or turn.leg_id not in {leg.id for leg in data.legs}:
            raise ThrowNotFoundError(f"throw {throw_id} not found in match {data.match.id}")
        return throw, turn.leg_id

    async def _after_edit(self, leg_id: str) -> None:
        view = self._view
        data = view.require_data()
        try:
            replay = await recompute_leg_turns(self._store, data.match, leg_id, [p.id for p in data.players])
            await self._sync_leg_winner(leg_id, replay)
        except StoreError as e:
            view.report_persistence_failure("recompute_leg", str(e))
            raise MatchActionError(f"could not recompute leg {leg_id}: {e}") from e
        view.overlay.clear()
        await view.reload_legs()
        await view.reload_match()
        await view.reconcile_current_leg()

    async def _sync_leg_winner(self, leg_id: str, replay: LegReplay) -> None:
        """Add or remove the winner of the latest leg after its throws changed.

        Earlier legs are never reopened; a changed outcome there is only logged.
        """
        data = self._view.require_data()
        match = data.match
        legs = await self._store.list_legs(match.id)
        leg = next(leg for leg in legs if leg.id == leg_id)
        latest = max(legs, key=lambda candidate: candidate.leg_number)

        if match.fair_ending:
            turns = await self._store.list_turns(leg_id)
            order = [p.id for p in select_order_players(data.players, leg)]
            state = compute_fair_ending_state(turns, order, match.start_score, fair_ending=True)
            winner_id = state.winner_id if state.phase == FairEndingPhase.RESOLVED else None
        else:
            winner_id = replay.leg_winner_id

        if winner_id == leg.winner_player_id:
            return
        if leg.id != latest.id:
            self._log.warning(
                "edit changed the outcome of a closed leg",
                leg_id=leg.id,
                recorded_winner=leg.winner_player_id,
                replayed_winner=winner_id,
            )
            return
        if winner_id is None:
            await self._store.set_leg_winner(leg.id, None)
            if match.winner_player_id is not None:
                await self._store.set_match_winner(match.id, None)
            self._log.info("leg winner removed", leg_id=leg.id)
            return
        await complete_leg(self._store, match, leg, winner_id, [p.id for p in data.players])
        self._log.info("leg won after edit", leg_id=leg.id, winner=winner_id)

    def _require_active(self) -> MatchData:
        data = self._view.require_data()
        match = data.match
        if match.ended_early or select_match_winner_id(match, data.legs) is not None:
            raise MatchNotActiveError(f"match {match.id} is over")
        if select_current_leg(data.legs) is None:
            raise MatchNotActiveError(f"match {match.id} has no legs")
        return data
