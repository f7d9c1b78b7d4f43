"""Abstract interfaces for the shared match store and its change feed."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from darts.logic.types import LegRecord, MatchRecord, Player, ThrowRecord, TurnRecord, TurnWithThrows


class ConnectionStatus(StrEnum):
    """Lifecycle of a live notification channel."""

    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"


# Raw notification dict, validated by the subscriber.
ChangeCallback = Callable[[dict[str, Any]], Awaitable[None]]
StatusCallback = Callable[[ConnectionStatus], Awaitable[None]]


class MatchStore(ABC):
    """Filtered reads and row writes over matches, roster, legs, turns and throws.

    Writes return the stored row. Unique violations raise DuplicateRowError,
    everything else raises StoreError.
    """

    @abstractmethod
    async def get_match(self, match_id: str) -> MatchRecord | None: ...

    @abstractmethod
    async def list_players(self, match_id: str) -> list[Player]:
        """Roster ordered by play order."""

    @abstractmethod
    async def list_legs(self, match_id: str) -> list[LegRecord]:
        """Legs ordered by leg number."""

    @abstractmethod
    async def list_turns(self, leg_id: str) -> list[TurnWithThrows]:
        """Turns ordered by turn number, each with throws ordered by dart index."""

    @abstractmethod
    async def get_turn(self, turn_id: str) -> TurnWithThrows | None: ...

    @abstractmethod
    async def get_throw(self, throw_id: str) -> ThrowRecord | None: ...

    @abstractmethod
    async def insert_turn(
        self,
        *,
        match_id: str,
        leg_id: str,
        player_id: str,
        turn_number: int,
        tiebreak_round: int | None = None,
    ) -> TurnRecord: ...

    @abstractmethod
    async def update_turn(self, turn_id: str, *, total_scored: int, busted: bool) -> TurnRecord: ...

    @abstractmethod
    async def delete_turn(self, turn_id: str) -> None: ...

    @abstractmethod
    async def insert_throw(
        self,
        *,
        match_id: str,
        turn_id: str,
        dart_index: int,
        segment: str,
        scored: int,
    ) -> ThrowRecord: ...

    @abstractmethod
    async def update_throw(self, throw_id: str, *, segment: str, scored: int) -> ThrowRecord: ...

    @abstractmethod
    async def delete_throw(self, throw_id: str) -> None: ...

    @abstractmethod
    async def insert_leg(self, *, match_id: str, leg_number: int, starting_player_id: str) -> LegRecord: ...

    @abstractmethod
    async def set_leg_winner(self, leg_id: str, winner_player_id: str | None) -> LegRecord: ...

    @abstractmethod
    async def set_match_winner(self, match_id: str, winner_player_id: str | None) -> MatchRecord: ...


class Subscription(ABC):
    @abstractmethod
    async def close(self) -> None: ...


class ChangeFeed(ABC):
    """At-least-once, unordered stream of raw change notifications.

    The feed is shared by every match; subscribers receive notifications for
    all of them and must filter.
    """

    @abstractmethod
    async def subscribe(self, on_change: ChangeCallback, on_status: StatusCallback) -> Subscription: ...
