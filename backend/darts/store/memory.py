"""In-process store and change feed.

Used by tests and local play. The feed mirrors a hosted realtime channel: one
channel for every match, at-least-once delivery, and a connection status that
can drop. Notifications can be held back and re-delivered in any order, with
duplicates or gaps, to exercise convergence.
"""

from __future__ import annotations

import asyncio
import contextlib
import uuid
from collections import Counter
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from darts.logic.types import LegRecord, MatchRecord, Player, RosterEntry, ThrowRecord, TurnRecord, TurnWithThrows
from darts.messaging.types import ChangeOp, EntityType
from darts.store.exceptions import DuplicateRowError, RecordNotFoundError, StoreError
from darts.store.repository import ChangeFeed, ConnectionStatus, MatchStore, Subscription

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable, Sequence

    from pydantic import BaseModel

    from darts.store.repository import ChangeCallback, StatusCallback

logger = structlog.get_logger()


class _MemorySubscription(Subscription):
    def __init__(self, feed: InMemoryChangeFeed, on_change: ChangeCallback, on_status: StatusCallback) -> None:
        self._feed = feed
        self._on_change = on_change
        self.on_status = on_status
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._task = asyncio.create_task(self._pump())

    def enqueue(self, payload: dict[str, Any]) -> None:
        self._queue.put_nowait(payload)

    async def join(self) -> None:
        await self._queue.join()

    async def close(self) -> None:
        self._feed.remove(self)
        self._task.cancel()

    async def _pump(self) -> None:
        while True:
            payload = await self._queue.get()
            try:
                await self._on_change(payload)
            except (StoreError, ValidationError, RuntimeError, ValueError):
                logger.exception("change handler failed", entity=payload.get("entity"))
            finally:
                self._queue.task_done()


class InMemoryChangeFeed(ChangeFeed):
    def __init__(self, *, connected: bool = True) -> None:
        self._subscriptions: list[_MemorySubscription] = []
        self._held: list[dict[str, Any]] = []
        self._paused = False
        self.status = ConnectionStatus.SUBSCRIBED if connected else ConnectionStatus.CLOSED
        self.published: list[dict[str, Any]] = []

    @property
    def connected(self) -> bool:
        return self.status == ConnectionStatus.SUBSCRIBED

    async def subscribe(self, on_change: ChangeCallback, on_status: StatusCallback) -> Subscription:
        subscription = _MemorySubscription(self, on_change, on_status)
        self._subscriptions.append(subscription)
        await on_status(self.status)
        return subscription

    def remove(self, subscription: _MemorySubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, payload: dict[str, Any]) -> None:
        """Fan a notification out to every subscriber. Lost while disconnected."""
        self.published.append(payload)
        if not self.connected:
            return
        if self._paused:
            self._held.append(payload)
            return
        for subscription in self._subscriptions:
            subscription.enqueue(payload)

    def pause(self) -> None:
        """Hold notifications instead of delivering them."""
        self._paused = True

    def take_held(self) -> list[dict[str, Any]]:
        """Return and forget held notifications; the feed stays paused."""
        held, self._held = self._held, []
        return held

    def resume(self) -> None:
        self._paused = False
        self.deliver(self.take_held())

    def deliver(self, payloads: Iterable[dict[str, Any]]) -> None:
        """Deliver notifications verbatim, in the given order, duplicates included."""
        for payload in payloads:
            for subscription in self._subscriptions:
                subscription.enqueue(payload)

    async def set_status(self, status: ConnectionStatus) -> None:
        self.status = status
        for subscription in list(self._subscriptions):
            await subscription.on_status(status)

    async def settle(self) -> None:
        """Wait until every subscriber has handled everything delivered so far."""
        for subscription in list(self._subscriptions):
            await subscription.join()


class InMemoryMatchStore(MatchStore):
    """Authoritative rows held in dicts, emitting a notification per mutation.

    ``latency`` adds an await before every call so reads and writes of
    different clients interleave. ``fail_next`` makes the next call of the
    named operation raise.
    """

    def __init__(self, feed: InMemoryChangeFeed | None = None, *, latency: float = 0.0) -> None:
        self._feed = feed
        self._latency = latency
        self._lock = asyncio.Lock()
        self._matches: dict[str, MatchRecord] = {}
        self._players: dict[str, Player] = {}
        self._roster: dict[str, list[RosterEntry]] = {}
        self._legs: dict[str, LegRecord] = {}
        self._turns: dict[str, TurnRecord] = {}
        self._throws: dict[str, ThrowRecord] = {}
        self._failures: dict[str, StoreError] = {}
        self.calls: Counter[str] = Counter()

    # -- test hooks ---------------------------------------------------------

    def fail_next(self, operation: str, error: StoreError | None = None) -> None:
        self._failures[operation] = error or StoreError(f"{operation} failed")

    def seed_match(self, match: MatchRecord, players: Sequence[Player], starting_player_id: str | None = None) -> LegRecord:
        """Create a match with its roster and first leg, without notifications."""
        self._matches[match.id] = match
        self._roster[match.id] = []
        for order, player in enumerate(players):
            self._players[player.id] = player
            self._roster[match.id].append(RosterEntry(match_id=match.id, player_id=player.id, play_order=order))
        leg = LegRecord(
            id=_new_id(),
            match_id=match.id,
            leg_number=1,
            starting_player_id=starting_player_id or players[0].id,
        )
        self._legs[leg.id] = leg
        return leg

    async def add_roster_entry(self, match_id: str, player: Player) -> RosterEntry:
        async with self._operation("add_roster_entry"):
            roster = self._roster.setdefault(match_id, [])
            entry = RosterEntry(match_id=match_id, player_id=player.id, play_order=len(roster))
            self._players[player.id] = player
            roster.append(entry)
            self._emit(EntityType.ROSTER, ChangeOp.INSERT, new=entry)
            return entry

    # -- reads --------------------------------------------------------------

    async def get_match(self, match_id: str) -> MatchRecord | None:
        async with self._operation("get_match"):
            return self._matches.get(match_id)

    async def list_players(self, match_id: str) -> list[Player]:
        async with self._operation("list_players"):
            entries = sorted(self._roster.get(match_id, []), key=lambda e: e.play_order)
            return [self._players[e.player_id] for e in entries]

    async def list_legs(self, match_id: str) -> list[LegRecord]:
        async with self._operation("list_legs"):
            return sorted((leg for leg in self._legs.values() if leg.match_id == match_id), key=lambda leg: leg.leg_number)

    async def list_turns(self, leg_id: str) -> list[TurnWithThrows]:
        async with self._operation("list_turns"):
            turns = sorted((t for t in self._turns.values() if t.leg_id == leg_id), key=lambda t: t.turn_number)
            return [self._with_throws(t) for t in turns]

    async def get_turn(self, turn_id: str) -> TurnWithThrows | None:
        async with self._operation("get_turn"):
            turn = self._turns.get(turn_id)
            return self._with_throws(turn) if turn is not None else None

    async def get_throw(self, throw_id: str) -> ThrowRecord | None:
        async with self._operation("get_throw"):
            return self._throws.get(throw_id)

    # -- writes -------------------------------------------------------------

    async def insert_turn(
        self,
        *,
        match_id: str,
        leg_id: str,
        player_id: str,
        turn_number: int,
        tiebreak_round: int | None = None,
    ) -> TurnRecord:
        async with self._operation("insert_turn"):
            if any(t.leg_id == leg_id and t.turn_number == turn_number for t in self._turns.values()):
                raise DuplicateRowError(f"duplicate key value violates unique constraint (leg {leg_id}, turn {turn_number})")
            turn = TurnRecord(
                id=_new_id(),
                leg_id=leg_id,
                player_id=player_id,
                turn_number=turn_number,
                tiebreak_round=tiebreak_round,
                match_id=match_id,
            )
            self._turns[turn.id] = turn
            self._emit(EntityType.TURN, ChangeOp.INSERT, new=turn)
            return turn

    async def update_turn(self, turn_id: str, *, total_scored: int, busted: bool) -> TurnRecord:
        async with self._operation("update_turn"):
            old = self._require(self._turns, turn_id, "turn")
            turn = old.model_copy(update={"total_scored": total_scored, "busted": busted})
            self._turns[turn_id] = turn
            self._emit(EntityType.TURN, ChangeOp.UPDATE, new=turn, old=old)
            return turn

    async def delete_turn(self, turn_id: str) -> None:
        async with self._operation("delete_turn"):
            turn = self._require(self._turns, turn_id, "turn")
            for throw in [t for t in self._throws.values() if t.turn_id == turn_id]:
                del self._throws[throw.id]
                self._emit(EntityType.THROW, ChangeOp.DELETE, old=throw)
            del self._turns[turn_id]
            self._emit(EntityType.TURN, ChangeOp.DELETE, old=turn)

    async def insert_throw(
        self,
        *,
        match_id: str,
        turn_id: str,
        dart_index: int,
        segment: str,
        scored: int,
    ) -> ThrowRecord:
        async with self._operation("insert_throw"):
            self._require(self._turns, turn_id, "turn")
            if any(t.turn_id == turn_id and t.dart_index == dart_index for t in self._throws.values()):
                raise DuplicateRowError(f"duplicate key value violates unique constraint (turn {turn_id}, dart {dart_index})")
            throw = ThrowRecord(
                id=_new_id(),
                turn_id=turn_id,
                dart_index=dart_index,
                segment=segment,
                scored=scored,
                match_id=match_id,
            )
            self._throws[throw.id] = throw
            self._emit(EntityType.THROW, ChangeOp.INSERT, new=throw)
            return throw

    async def update_throw(self, throw_id: str, *, segment: str, scored: int) -> ThrowRecord:
        async with self._operation("update_throw"):
            old = self._require(self._throws, throw_id, "throw")
            throw = old.model_copy(update={"segment": segment, "scored": scored})
            self._throws[throw_id] = throw
            self._emit(EntityType.THROW, ChangeOp.UPDATE, new=throw, old=old)
            return throw

    async def delete_throw(self, throw_id: str) -> None:
        async with self._operation("delete_throw"):
            throw = self._require(self._throws, throw_id, "throw")
            del self._throws[throw_id]
            self._emit(EntityType.THROW, ChangeOp.DELETE, old=throw)

    async def insert_leg(self, *, match_id: str, leg_number: int, starting_player_id: str) -> LegRecord:
        async with self._operation("insert_leg"):
            if any(leg.match_id == match_id and leg.leg_number == leg_number for leg in self._legs.values()):
                raise DuplicateRowError(f"duplicate key value violates unique constraint (match {match_id}, leg {leg_number})")
            leg = LegRecord(id=_new_id(), match_id=match_id, leg_number=leg_number, starting_player_id=starting_player_id)
            self._legs[leg.id] = leg
            self._emit(EntityType.LEG, ChangeOp.INSERT, new=leg)
            return leg

    async def set_leg_winner(self, leg_id: str, winner_player_id: str | None) -> LegRecord:
        async with self._operation("set_leg_winner"):
            old = self._require(self._legs, leg_id, "leg")
            leg = old.model_copy(update={"winner_player_id": winner_player_id})
            self._legs[leg_id] = leg
            self._emit(EntityType.LEG, ChangeOp.UPDATE, new=leg, old=old)
            return leg

    async def set_match_winner(self, match_id: str, winner_player_id: str | None) -> MatchRecord:
        async with self._operation("set_match_winner"):
            old = self._require(self._matches, match_id, "match")
            completed_at = datetime.now(tz=UTC) if winner_player_id is not None else None
            match = old.model_copy(update={"winner_player_id": winner_player_id, "completed_at": completed_at})
            self._matches[match_id] = match
            self._emit(EntityType.MATCH, ChangeOp.UPDATE, new=match, old=old)
            return match

    # -- internals ----------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _operation(self, name: str) -> AsyncIterator[None]:
        self.calls[name] += 1
        if self._latency:
            await asyncio.sleep(self._latency)
        async with self._lock:
            error = self._failures.pop(name, None)
            if error is not None:
                raise error
            yield

    def _with_throws(self, turn: TurnRecord) -> TurnWithThrows:
        throws = sorted((t for t in self._throws.values() if t.turn_id == turn.id), key=lambda t: t.dart_index)
        return TurnWithThrows(**turn.model_dump(), throws=tuple(throws))

    @staticmethod
    def _require(rows: dict[str, Any], row_id: str, kind: str) -> Any:
        row = rows.get(row_id)
        if row is None:
            raise RecordNotFoundError(f"{kind} {row_id} not found")
        return row

    def _emit(
        self,
        entity: EntityType,
        op: ChangeOp,
        *,
        new: BaseModel | None = None,
        old: BaseModel | None = None,
    ) -> None:
        if self._feed is None:
            return
        self._feed.publish(
            {
                "entity": entity.value,
                "op": op.value,
                "new": new.model_dump(mode="json") if new is not None else {},
                "old": old.model_dump(mode="json") if old is not None else {},
                "commit_timestamp": datetime.now(tz=UTC).isoformat(),
            },
        )


def _new_id() -> str:
    return str(uuid.uuid4())
