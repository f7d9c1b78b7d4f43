"""Optimistic local darts for the turn this client is scoring.

Darts are shown as soon as they are entered, before the store confirms them.
A confirmation or notification may only replace the local darts when it
carries at least as many darts as are held locally, so a slow round-trip
never erases a dart entered after it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from darts.logic.replay import is_turn_complete
from darts.logic.segments import parse_segment_label
from darts.logic.types import LocalTurn

if TYPE_CHECKING:
    from darts.logic.segments import Segment
    from darts.logic.types import TurnWithThrows


@dataclass
class OngoingTurn:
    player_id: str
    start_score: int
    tiebreak_round: int | None = None
    turn_id: str | None = None
    darts: list[Segment] = field(default_factory=list)

    @property
    def subtotal(self) -> int:
        return sum(d.scored for d in self.darts)


class LocalOverlay:
    def __init__(self) -> None:
        self._ongoing: OngoingTurn | None = None

    @property
    def active(self) -> bool:
        return self._ongoing is not None

    @property
    def ongoing(self) -> OngoingTurn | None:
        return self._ongoing

    @property
    def turn_id(self) -> str | None:
        return self._ongoing.turn_id if self._ongoing else None

    def begin(self, player_id: str, start_score: int, tiebreak_round: int | None = None) -> OngoingTurn:
        self._ongoing = OngoingTurn(player_id=player_id, start_score=start_score, tiebreak_round=tiebreak_round)
        return self._ongoing

    def push(self, segment: Segment) -> None:
        if self._ongoing is None:
            raise RuntimeError("no ongoing turn")
        self._ongoing.darts.append(segment)

    def pop(self) -> Segment | None:
        if self._ongoing is None or not self._ongoing.darts:
            return None
        return self._ongoing.darts.pop()

    def bind(self, turn_id: str) -> None:
        if self._ongoing is not None:
            self._ongoing.turn_id = turn_id

    def clear(self) -> None:
        self._ongoing = None

    def local_turn(self) -> LocalTurn:
        if self._ongoing is None:
            return LocalTurn()
        return LocalTurn(player_id=self._ongoing.player_id, darts=tuple(self._ongoing.darts))

    def sync(self, server_turn: TurnWithThrows | None, *, turn_id: str | None = None) -> None:
        """Fold the server's view of our turn into the overlay.

        ``server_turn`` None with a matching ``turn_id`` means the row is gone.
        A closed turn whose total has been recorded ends the overlay.
        """
        ongoing = self._ongoing
        if ongoing is None or ongoing.turn_id is None:
            return
        if server_turn is None:
            if turn_id == ongoing.turn_id:
                self.clear()
            return
        if server_turn.id != ongoing.turn_id:
            return

        count = len(server_turn.throws)
        recorded = server_turn.total_scored == sum(t.scored for t in server_turn.throws)
        if server_turn.busted or (
            recorded and is_turn_complete(count, busted=False, finished=server_turn.total_scored > 0) and count > 0
        ):
            self.clear()
            return
        if count >= len(ongoing.darts):
            ongoing.darts = [parse_segment_label(t.segment) for t in server_turn.throws]
