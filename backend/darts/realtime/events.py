"""Events a MatchView hands to its listeners.

Listeners are the UI and read-only collaborators (commentary, statistics,
practice tracking). They receive snapshots and never write back through the
view; any write goes through a ScoringClient like every other scorer.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict

from darts.logic.enums import CelebrationLevel
from darts.logic.selectors import PlayerStats, Scoreboard
from darts.logic.types import LegRecord, TurnWithThrows


class ViewEventType(StrEnum):
    STATE_CHANGED = "state_changed"
    TURN_COMPLETED = "turn_completed"
    PERSISTENCE_FAILED = "persistence_failed"
    LEG_CHANGED = "leg_changed"
    MATCH_CHANGED = "match_changed"


class LegSnapshot(BaseModel):
    """Read-only copy of the active leg for collaborators."""

    model_config = ConfigDict(frozen=True)

    leg: LegRecord | None
    turns: tuple[TurnWithThrows, ...] = ()
    stats: PlayerStats = PlayerStats()


class ViewEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ViewEventType
    match_id: str


class StateChangedEvent(ViewEvent):
    type: Literal[ViewEventType.STATE_CHANGED] = ViewEventType.STATE_CHANGED
    scoreboard: Scoreboard


class TurnCompletedEvent(ViewEvent):
    """A turn closed (three darts, bust or checkout). Sent once per turn."""

    type: Literal[ViewEventType.TURN_COMPLETED] = ViewEventType.TURN_COMPLETED
    turn: TurnWithThrows
    player_name: str
    total_scored: int
    busted: bool
    remaining: int
    level: CelebrationLevel | None = None
    duration_seconds: float = 0.0
    snapshot: LegSnapshot


class PersistenceFailedEvent(ViewEvent):
    type: Literal[ViewEventType.PERSISTENCE_FAILED] = ViewEventType.PERSISTENCE_FAILED
    action: str
    message: str


class LegChangedEvent(ViewEvent):
    """The active leg moved on, e.g. after a leg was won."""

    type: Literal[ViewEventType.LEG_CHANGED] = ViewEventType.LEG_CHANGED
    previous_leg_id: str | None
    current_leg_id: str | None
    snapshot: LegSnapshot


class MatchChangedEvent(ViewEvent):
    type: Literal[ViewEventType.MATCH_CHANGED] = ViewEventType.MATCH_CHANGED
    winner_player_id: str | None
