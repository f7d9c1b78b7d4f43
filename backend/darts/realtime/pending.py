"""Bounded buffer for throw notifications whose turn is not known yet."""

from __future__ import annotations

from collections import OrderedDict

from darts.messaging.types import ThrowChange

DEFAULT_PENDING_LIMIT = 200


class PendingThrowBuffer:
    """LRU map of turn id to the latest throw notification for that turn.

    Re-setting a turn id refreshes its position; once over the limit the
    least recently set entry is evicted.
    """

    def __init__(self, limit: int = DEFAULT_PENDING_LIMIT) -> None:
        self._limit = limit
        self._by_turn_id: OrderedDict[str, ThrowChange] = OrderedDict()

    def __len__(self) -> int:
        return len(self._by_turn_id)

    def __contains__(self, turn_id: object) -> bool:
        return turn_id in self._by_turn_id

    def set(self, turn_id: str, change: ThrowChange) -> None:
        self._by_turn_id.pop(turn_id, None)
        self._by_turn_id[turn_id] = change
        while len(self._by_turn_id) > self._limit:
            self._by_turn_id.popitem(last=False)

    def take(self, turn_id: str) -> ThrowChange | None:
        return self._by_turn_id.pop(turn_id, None)

    def discard_known(self, known_turn_ids: set[str]) -> None:
        """Drop entries for turns a full load has already covered."""
        for turn_id in [t for t in self._by_turn_id if t in known_turn_ids]:
            del self._by_turn_id[turn_id]

    def clear(self) -> None:
        self._by_turn_id.clear()
