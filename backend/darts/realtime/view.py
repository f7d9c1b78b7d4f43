"""
Convergent per-client view of one match.

A MatchView loads the match from the shared store, then folds the change feed
into its local copy. The feed is shared by every match and delivers
at-least-once in no particular order, so the view:

- ignores everything until its first load has established its own leg ids,
  and drops notifications of other matches before touching state or metrics;
- buffers throws whose turn it has not seen and re-fetches that turn after a
  short delay if the turn never shows up;
- applies turn and throw notifications through idempotent reducers;
- reloads the affected slice on leg, match and roster changes;
- falls back to polling (spectators) while the live channel is down.

All per-client state lives on the instance and is dropped by ``close()``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from darts.logic.fair_ending import is_closed_turn, latest_turn_number
from darts.logic.replay import replay_leg
from darts.logic.selectors import (
    build_scoreboard,
    select_current_leg,
    select_match_winner_id,
    select_order_players,
    select_player_stats,
)
from darts.logic.types import MatchData, TurnWithThrows
from darts.messaging.payload import payload_leg_id, payload_match_id, payload_turn_id
from darts.messaging.types import (
    ChangeOp,
    LegChange,
    MatchChange,
    RosterChange,
    ThrowChange,
    ThrowPatch,
    TurnChange,
    TurnPatch,
    parse_change_notification,
)
from darts.realtime.celebration import CelebrationTracker, celebration_for
from darts.realtime.events import (
    LegChangedEvent,
    LegSnapshot,
    MatchChangedEvent,
    PersistenceFailedEvent,
    StateChangedEvent,
    TurnCompletedEvent,
)
from darts.realtime.exceptions import MatchNotActiveError
from darts.realtime.metrics import RealtimeMetrics
from darts.realtime.overlay import LocalOverlay
from darts.realtime.pending import PendingThrowBuffer
from darts.realtime.reducer import ReducerState, apply_throw_change, apply_turn_change
from darts.realtime.settings import RealtimeSettings
from darts.realtime.timers import FallbackPoller, ReconcileScheduler, RefreshDebouncer
from darts.store.exceptions import RecordNotFoundError, StoreError
from darts.store.repository import ConnectionStatus

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import TracebackType

    from darts.logic.selectors import Scoreboard
    from darts.logic.types import LegRecord, MatchRecord, Player, ThrowRecord, TurnRecord
    from darts.messaging.types import ChangeNotification
    from darts.realtime.events import ViewEvent
    from darts.realtime.reducer import ReducerResult
    from darts.store.repository import ChangeFeed, MatchStore, Subscription

logger = structlog.get_logger()

ViewListener = Callable[["ViewEvent"], None]


class MatchView:
    """Local state of one match for one client.

    Scorers (``spectator=False``) coalesce bursts of notifications into one
    debounced re-fetch of the leg. Spectators rely on the reducers alone and
    poll while the live channel is not connected.
    """

    def __init__(
        self,
        match_id: str,
        store: MatchStore,
        feed: ChangeFeed | None = None,
        *,
        spectator: bool = False,
        settings: RealtimeSettings | None = None,
    ) -> None:
        self.match_id = match_id
        self.spectator = spectator
        self._store = store
        self._feed = feed
        self._settings = settings or RealtimeSettings()
        self.metrics = RealtimeMetrics()
        self.overlay = LocalOverlay()

        self._data: MatchData | None = None
        self._known_leg_ids: set[str] = set()
        self._known_turn_ids: set[str] = set()
        self._pending = PendingThrowBuffer(self._settings.pending_buffer_limit)
        self._celebrations = CelebrationTracker()
        self._listeners: list[ViewListener] = []

        self._reconciles = ReconcileScheduler(self._settings.reconcile_delay_seconds, self.reconcile_turn)
        self._refresh = RefreshDebouncer(
            self._settings.refresh_debounce_seconds,
            self._settings.max_coalesced_refreshes,
            self.reconcile_current_leg,
        )
        self._poller = FallbackPoller(self._settings.poll_interval_seconds, self._poll_tick)
        self._leg_refresh: asyncio.Task[None] | None = None
        self._leg_refresh_queued = False

        self._subscription: Subscription | None = None
        self._status: ConnectionStatus | None = None
        self._open = False
        self._loading = False
        self._changed_while_loading = False
        self._log = logger.bind(match_id=match_id, spectator=spectator)

    # -- lifecycle ----------------------------------------------------------

    async def __aenter__(self) -> MatchView:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def open(self) -> None:
        """Load the match, then start listening (or polling, without a feed)."""
        self._open = True
        await self.load_all()
        if self._feed is not None:
            self._subscription = await self._feed.subscribe(self.handle_raw_notification, self.handle_status)
        elif self.spectator:
            self._poller.start()
        self._log.info("match view opened", has_feed=self._feed is not None)

    async def close(self) -> None:
        if not self._open:
            return
        self._open = False
        self._reconciles.cancel_all()
        self._refresh.cancel()
        self._poller.stop()
        if self._leg_refresh is not None and not self._leg_refresh.done():
            self._leg_refresh.cancel()
        self._leg_refresh = None
        if self._subscription is not None:
            await self._subscription.close()
            self._subscription = None
        self._pending.clear()
        self._known_leg_ids.clear()
        self._known_turn_ids.clear()
        self._celebrations.reset_for_leg(None)
        self.overlay.clear()
        self._listeners.clear()
        self._log.info("match view closed")

    @property
    def store(self) -> MatchStore:
        return self._store

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def is_polling(self) -> bool:
        return self._poller.is_running

    @property
    def data(self) -> MatchData | None:
        return self._data

    @property
    def known_leg_ids(self) -> frozenset[str]:
        return frozenset(self._known_leg_ids)

    @property
    def known_turn_ids(self) -> frozenset[str]:
        return frozenset(self._known_turn_ids)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def current_leg(self) -> LegRecord | None:
        return select_current_leg(self._data.legs) if self._data else None

    def require_data(self) -> MatchData:
        if self._data is None:
            raise MatchNotActiveError(f"match {self.match_id} is not loaded")
        return self._data

    # -- listeners and derived output --------------------------------------

    def add_listener(self, listener: ViewListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ViewListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def scoreboard(self) -> Scoreboard:
        return build_scoreboard(self.require_data(), self.overlay.local_turn(), self.overlay.turn_id)

    def player_ids(self) -> list[str]:
        """Player ids in play order for the current leg."""
        data = self.require_data()
        return [p.id for p in select_order_players(data.players, self.current_leg)]

    def leg_snapshot(self) -> LegSnapshot:
        data = self.require_data()
        leg = self.current_leg
        return LegSnapshot(
            leg=leg,
            turns=data.turns,
            stats=select_player_stats(data.players, data.turns, leg.id if leg else None, data.match.start_score),
        )

    def report_persistence_failure(self, action: str, message: str) -> None:
        self._emit(PersistenceFailedEvent(match_id=self.match_id, action=action, message=message))
        self._emit_state()

    def report_local_change(self) -> None:
        """Publish the scoreboard after the overlay changed."""
        self._emit_state()

    def _emit(self, event: ViewEvent) -> None:
        for listener in list(self._listeners):
            listener(event)

    def _emit_state(self) -> None:
        if self._data is not None:
            self._emit(StateChangedEvent(match_id=self.match_id, scoreboard=self.scoreboard()))

    async def wait_idle(self) -> None:
        """Wait for scheduled reconciles, the debounced refresh and leg re-fetches to finish."""
        current = asyncio.current_task()
        while True:
            tasks = [*self._reconciles.tasks(), self._refresh.task, self._leg_refresh]
            waiting = [t for t in tasks if t is not None and not t.done() and t is not current]
            if not waiting:
                return
            await asyncio.gather(*waiting, return_exceptions=True)

    # -- loading ------------------------------------------------------------

    async def load_all(self) -> None:
        """Fetch match, roster, legs and the current leg's turns."""
        self.metrics.increment("full_reloads")
        self._loading = True
        self._changed_while_loading = False
        try:
            match = await self._store.get_match(self.match_id)
            if match is None:
                raise RecordNotFoundError(f"match {self.match_id} not found")
            players = await self._store.list_players(self.match_id)
            legs = await self._store.list_legs(self.match_id)
            current = select_current_leg(legs)
            turns = await self._store.list_turns(current.id) if current else []
        finally:
            self._loading = False
        if not self._open:
            return

        previous_leg = self.current_leg
        same_leg = previous_leg is not None and current is not None and previous_leg.id == current.id
        snapshot = self.leg_snapshot() if previous_leg is not None else None
        was_closed = self._closed_turn_ids() if same_leg else set()
        self._data = MatchData(match=match, players=tuple(players), legs=tuple(legs))
        self._known_leg_ids = {leg.id for leg in legs}
        self._install_turns(turns, reset_known=True)
        self._log.debug("loaded match", legs=len(legs), turns=len(turns))
        if same_leg:
            self._celebrate_newly_closed(was_closed)
        else:
            self._after_leg_switch(previous_leg, current, snapshot)
        self._emit_state()

        if self._changed_while_loading:
            self._changed_while_loading = False
            self._refresh.trigger()

    async def reload_legs(self) -> None:
        """Re-read the legs; switch to a new current leg if one appeared."""
        if not self._open or self._data is None:
            return
        try:
            legs = await self._store.list_legs(self.match_id)
            current = select_current_leg(legs)
            previous = self.current_leg
            switched = (current.id if current else None) != (previous.id if previous else None)
            turns = await self._store.list_turns(current.id) if current and switched else None
        except StoreError:
            self._log.warning("leg reload failed, reloading everything")
            await self._reload_everything()
            return
        if not self._open or self._data is None:
            return

        self._data = self._data.model_copy(update={"legs": tuple(legs)})
        self._known_leg_ids = {leg.id for leg in legs}
        if turns is not None:
            snapshot = self.leg_snapshot() if previous else None
            self.overlay.clear()
            self._install_turns(turns, reset_known=True)
            self._after_leg_switch(previous, current, snapshot)
        self._emit_state()

    async def reload_match(self) -> None:
        if not self._open or self._data is None:
            return
        try:
            match = await self._store.get_match(self.match_id)
        except StoreError:
            self._log.warning("match reload failed, reloading everything")
            await self._reload_everything()
            return
        if match is None or not self._open or self._data is None:
            return
        before = select_match_winner_id(self._data.match, self._data.legs)
        self._data = self._data.model_copy(update={"match": match})
        after = select_match_winner_id(match, self._data.legs)
        if before != after:
            self._emit(MatchChangedEvent(match_id=self.match_id, winner_player_id=after))
        self._emit_state()

    async def reload_roster(self) -> None:
        if not self._open or self._data is None:
            return
        try:
            players = await self._store.list_players(self.match_id)
        except StoreError:
            self._log.warning("roster reload failed, reloading everything")
            await self._reload_everything()
            return
        if self._open and self._data is not None:
            self._data = self._data.model_copy(update={"players": tuple(players)})
            self._emit_state()

    async def _reload_everything(self) -> None:
        try:
            await self.load_all()
        except StoreError:
            self._log.exception("full reload failed")

    def _install_turns(self, turns: Sequence[TurnWithThrows], *, reset_known: bool) -> None:
        ordered = tuple(sorted(turns, key=lambda t: t.turn_number))
        counts = {t.id: len(t.throws) for t in ordered}
        ids = {t.id for t in ordered}
        self._known_turn_ids = ids if reset_known else self._known_turn_ids | ids
        self._pending.discard_known(self._known_turn_ids)
        self._data = self.require_data().model_copy(update={"turns": ordered, "turn_throw_counts": counts})
        own = next((t for t in ordered if t.id == self.overlay.turn_id), None)
        if own is not None:
            self.overlay.sync(own)

    def _after_leg_switch(
        self,
        previous: LegRecord | None,
        current: LegRecord | None,
        snapshot: LegSnapshot | None = None,
    ) -> None:
        previous_id = previous.id if previous else None
        current_id = current.id if current else None
        self._celebrations.reset_for_leg(current_id)
        # Turns already closed when we load them are history, not news.
        self._celebrations.mark_all(self._closed_turn_ids())
        if previous_id is not None and previous_id != current_id:
            self._log.info("leg changed", previous_leg_id=previous_id, current_leg_id=current_id)
            self._emit(
                LegChangedEvent(
                    match_id=self.match_id,
                    previous_leg_id=previous_id,
                    current_leg_id=current_id,
                    snapshot=snapshot or LegSnapshot(leg=previous),
                ),
            )

    # -- notifications ------------------------------------------------------

    async def handle_raw_notification(self, payload: dict[str, Any]) -> None:
        if not self._open:
            return
        try:
            change = parse_change_notification(payload)
        except ValidationError as e:
            self._log.warning("dropped malformed notification", entity=payload.get("entity"), error=str(e))
            return
        await self.handle_change(change)

    async def handle_change(self, change: ChangeNotification) -> None:
        if not self._open or self._data is None or not self._known_leg_ids:
            return

        if isinstance(change, ThrowChange) and payload_match_id(change) is None:
            turn_id = change.field("turn_id")
            if turn_id is not None and turn_id not in self._known_turn_ids:
                # Cannot tell whose throw this is until its turn shows up.
                self._pending.set(turn_id, change)
                return

        if not self._belongs_here(change):
            return

        self.metrics.record_event(change.entity)
        self.metrics.record_delivery(change.commit_timestamp)
        if self._loading:
            self._changed_while_loading = True

        if isinstance(change, ThrowChange):
            self._on_throw(change)
        elif isinstance(change, TurnChange):
            await self._on_turn(change)
        elif isinstance(change, LegChange):
            await self.reload_legs()
        elif isinstance(change, MatchChange):
            await self.reload_match()
        elif isinstance(change, RosterChange):
            await self.reload_roster()

    def _belongs_here(self, change: ChangeNotification) -> bool:
        match_id = payload_match_id(change)
        if match_id is not None:
            return match_id == self.match_id
        # The leg id decides when present.
        leg_id = payload_leg_id(change)
        if leg_id is not None:
            return leg_id in self._known_leg_ids
        turn_id = payload_turn_id(change)
        if turn_id is not None:
            return turn_id in self._known_turn_ids
        return False

    async def apply_local(self, change: ThrowChange | TurnChange) -> None:
        """Apply a row this client wrote itself, ahead of its notification."""
        if not self._open or self._data is None:
            return
        if isinstance(change, ThrowChange):
            self._on_throw(change)
        else:
            await self._on_turn(change)

    async def note_turn(self, turn: TurnRecord) -> None:
        row = turn.as_turn() if isinstance(turn, TurnWithThrows) else turn
        await self.apply_local(TurnChange(op=ChangeOp.INSERT, new=TurnPatch(**row.model_dump())))

    async def note_throw(self, throw: ThrowRecord) -> None:
        await self.apply_local(ThrowChange(op=ChangeOp.INSERT, new=ThrowPatch(**throw.model_dump())))

    def _reducer_state(self) -> ReducerState:
        data = self.require_data()
        leg = self.current_leg
        return ReducerState(
            current_leg_id=leg.id if leg else None,
            turns=data.turns,
            turn_throw_counts=dict(data.turn_throw_counts),
        )

    def _on_throw(self, change: ThrowChange) -> None:
        turn_id = change.field("turn_id")
        if turn_id is None:
            return
        if turn_id not in self._known_turn_ids:
            self._pending.set(turn_id, change)
            self._reconciles.schedule(turn_id)
            return
        self._apply_throw(change)
        if not self.spectator:
            self._refresh.trigger()

    def _apply_throw(self, change: ThrowChange) -> None:
        turn_id = change.field("turn_id")
        result = apply_throw_change(change, self._reducer_state())
        if result.effects.needs_reconcile:
            self._pending.set(turn_id, change)
            self._reconciles.schedule(turn_id)
            return
        self._commit(result, turn_id)

    async def _on_turn(self, change: TurnChange) -> None:
        turn_id = change.field("id")
        leg_id = change.field("leg_id")
        if turn_id is None:
            return
        if leg_id is not None and leg_id not in self._known_leg_ids:
            # A turn of a leg we have not seen yet: the leg list is stale.
            await self.reload_legs()
            return

        if change.is_delete:
            self._known_turn_ids.discard(turn_id)
            self._pending.take(turn_id)
            self._reconciles.cancel(turn_id)
            self.overlay.sync(None, turn_id=turn_id)
        else:
            self._known_turn_ids.add(turn_id)

        result = apply_turn_change(change, self._reducer_state())
        if result.effects.needs_reconcile:
            self._reconciles.schedule(turn_id)
            return
        self._commit(result, turn_id)

        buffered = self._pending.take(turn_id)
        if buffered is not None:
            self._apply_throw(buffered)
        if not self.spectator:
            self._refresh.trigger()

    def _commit(self, result: ReducerResult, turn_id: str | None) -> None:
        self._data = self.require_data().model_copy(
            update={"turns": result.turns, "turn_throw_counts": result.turn_throw_counts},
        )
        if turn_id is not None:
            own = next((t for t in result.turns if t.id == turn_id), None)
            if own is not None:
                self.overlay.sync(own)
        if result.effects.completed_turn_id is not None:
            self._celebrate(result.effects.completed_turn_id)
        self._emit_state()

    def _celebrate(self, turn_id: str) -> None:
        data = self.require_data()
        turn = next((t for t in data.turns if t.id == turn_id), None)
        if turn is None or not self._celebrations.mark(turn_id):
            return
        replay = replay_leg(
            data.turns,
            self.player_ids(),
            data.match.start_score,
            data.match.finish_rule,
            stop_at_finish=False,
        )
        result = next((r for r in replay.turn_results if r.turn_id == turn_id), None)
        total = result.total_scored if result else turn.total_scored
        busted = result.busted if result else turn.busted
        remaining = result.score_after if result else replay.player_scores.get(turn.player_id, 0)
        celebration = celebration_for(total, busted=busted)
        names = {p.id: p.display_name for p in data.players}
        self._log.info("turn completed", turn_id=turn_id, player_id=turn.player_id, total=total, busted=busted)
        self._emit(
            TurnCompletedEvent(
                match_id=self.match_id,
                turn=turn,
                player_name=names.get(turn.player_id, turn.player_id),
                total_scored=total,
                busted=busted,
                remaining=remaining,
                level=celebration.level if celebration else None,
                duration_seconds=celebration.duration_seconds if celebration else 0.0,
                snapshot=self.leg_snapshot(),
            ),
        )

    # -- reconcile ----------------------------------------------------------

    async def reconcile_turn(self, turn_id: str) -> None:
        """Replace one turn with the authoritative row, then apply any buffered throw."""
        if not self._open or self._data is None:
            return
        self.metrics.increment("reconcile_turn_calls")
        try:
            turn = await self._store.get_turn(turn_id)
        except StoreError:
            self._log.warning("turn reconcile failed, re-fetching leg", turn_id=turn_id)
            await self.reconcile_current_leg()
            return
        if not self._open or self._data is None:
            return

        if turn is None:
            self._pending.take(turn_id)
            self._drop_turn(turn_id)
            return
        if turn.match_id is not None and turn.match_id != self.match_id:
            self._pending.take(turn_id)
            return
        if turn.leg_id not in self._known_leg_ids:
            self._pending.take(turn_id)
            await self.reload_legs()
            return
        current = self.current_leg
        if current is None or turn.leg_id != current.id:
            self._pending.take(turn_id)
            return

        data = self._data
        before = next((t for t in data.turns if t.id == turn_id), None)
        was_closed = before is not None and is_closed_turn(
            before, data.turn_throw_counts, latest=latest_turn_number(data.turns)
        )
        turns = [t for t in data.turns if t.id != turn_id]
        turns.append(turn)
        self._known_turn_ids.add(turn_id)
        self._data = data.model_copy(
            update={
                "turns": tuple(sorted(turns, key=lambda t: t.turn_number)),
                "turn_throw_counts": {**data.turn_throw_counts, turn_id: len(turn.throws)},
            },
        )
        buffered = self._pending.take(turn_id)
        if buffered is not None:
            result = apply_throw_change(buffered, self._reducer_state())
            self._data = self._data.model_copy(
                update={"turns": result.turns, "turn_throw_counts": result.turn_throw_counts},
            )
        merged = next(t for t in self._data.turns if t.id == turn_id)
        self.overlay.sync(merged)
        if not was_closed and is_closed_turn(
            merged, self._data.turn_throw_counts, latest=latest_turn_number(self._data.turns)
        ):
            self._celebrate(turn_id)
        self._emit_state()

    def _drop_turn(self, turn_id: str) -> None:
        data = self.require_data()
        self._known_turn_ids.discard(turn_id)
        self.overlay.sync(None, turn_id=turn_id)
        if any(t.id == turn_id for t in data.turns):
            self._data = data.model_copy(
                update={
                    "turns": tuple(t for t in data.turns if t.id != turn_id),
                    "turn_throw_counts": {k: v for k, v in data.turn_throw_counts.items() if k != turn_id},
                },
            )
        self._emit_state()

    async def reconcile_current_leg(self) -> None:
        """Re-fetch every turn of the current leg.

        Single flight: a call while a re-fetch is running queues one more run
        and waits for it.
        """
        if not self._open:
            return
        if self._leg_refresh is not None and not self._leg_refresh.done():
            self._leg_refresh_queued = True
        else:
            self._leg_refresh = asyncio.create_task(self._run_leg_refresh())
        await asyncio.shield(self._leg_refresh)

    async def _run_leg_refresh(self) -> None:
        while True:
            self._leg_refresh_queued = False
            await self._refetch_current_leg()
            if not self._leg_refresh_queued or not self._open:
                return

    async def _refetch_current_leg(self) -> None:
        leg = self.current_leg
        if leg is None:
            return
        self.metrics.increment("reconcile_current_leg_calls")
        try:
            turns = await self._store.list_turns(leg.id)
        except StoreError:
            self._log.warning("leg re-fetch failed, reloading everything", leg_id=leg.id)
            await self._reload_everything()
            return
        current = self.current_leg
        if not self._open or current is None or current.id != leg.id:
            return

        was_closed = self._closed_turn_ids()
        self._install_turns(turns, reset_known=False)
        self._celebrate_newly_closed(was_closed)
        self._emit_state()

    def _closed_turn_ids(self) -> set[str]:
        data = self.require_data()
        latest = latest_turn_number(data.turns)
        return {t.id for t in data.turns if is_closed_turn(t, data.turn_throw_counts, latest=latest)}

    def _celebrate_newly_closed(self, was_closed: set[str]) -> None:
        newly_closed = self._closed_turn_ids() - was_closed
        for turn in self.require_data().turns:
            if turn.id in newly_closed:
                self._celebrate(turn.id)

    # -- connection ---------------------------------------------------------

    async def handle_status(self, status: ConnectionStatus) -> None:
        if not self._open:
            return
        self.metrics.record_status(status)
        previous, self._status = self._status, status
        self._log.info("channel status", status=status.value, previous=previous.value if previous else None)

        if status == ConnectionStatus.SUBSCRIBED:
            self._poller.stop()
            if previous is not None and previous != ConnectionStatus.SUBSCRIBED:
                # Notifications sent while we were away are lost.
                await self._reload_everything()
            return
        if self.spectator:
            self._poller.start()

    async def _poll_tick(self) -> None:
        if not self._open or self._loading:
            return
        self.metrics.increment("fallback_poll_ticks")
        try:
            await self.load_all()
        except StoreError:
            self._log.warning("poll reload failed")

    # -- accessors used by scorers -----------------------------------------

    def turns(self) -> tuple[TurnWithThrows, ...]:
        return self.require_data().turns

    def match(self) -> MatchRecord:
        return self.require_data().match

    def players(self) -> tuple[Player, ...]:
        return self.require_data().players
