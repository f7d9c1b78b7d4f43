"""Immutable records shared by every layer.

Rows mirror the persisted collections (matches, match_players, legs, turns,
throws). Derivations take these records as input and never mutate them; the
realtime layer replaces whole records with ``model_copy(update=...)``.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from darts.logic.enums import VALID_START_SCORES, FinishRule
from darts.logic.segments import Segment


class MatchRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    start_score: int
    finish_rule: FinishRule = FinishRule.DOUBLE_OUT
    legs_to_win: int = Field(default=1, ge=1)
    fair_ending: bool = False
    winner_player_id: str | None = None
    ended_early: bool = False
    completed_at: datetime | None = None

    @field_validator("start_score")
    @classmethod
    def validate_start_score(cls, v: int) -> int:
        if v not in VALID_START_SCORES:
            raise ValueError(f"start_score must be one of {VALID_START_SCORES}, got {v}")
        return v


class Player(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str


class RosterEntry(BaseModel):
    """Membership of a player in a match, with their seat in the rotation."""

    model_config = ConfigDict(frozen=True)

    match_id: str
    player_id: str
    play_order: int = Field(ge=0)


class LegRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    match_id: str
    leg_number: int = Field(ge=1)
    starting_player_id: str
    winner_player_id: str | None = None


class ThrowRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    turn_id: str
    dart_index: int = Field(ge=1, le=3)
    segment: str
    scored: int = Field(ge=0)
    match_id: str | None = None


class TurnRecord(BaseModel):
    """One visit to the oche.

    ``tiebreak_round`` is None for ordinary X01 turns. Tiebreak turns never
    count towards the remaining score.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    leg_id: str
    player_id: str
    turn_number: int = Field(ge=1)
    total_scored: int = 0
    busted: bool = False
    tiebreak_round: int | None = None
    match_id: str | None = None

    @property
    def is_tiebreak(self) -> bool:
        return self.tiebreak_round is not None


class TurnWithThrows(TurnRecord):
    throws: tuple[ThrowRecord, ...] = ()

    @property
    def throw_count(self) -> int:
        return len(self.throws)

    def as_turn(self) -> TurnRecord:
        return TurnRecord.model_validate(self.model_dump(exclude={"throws"}))


class LocalTurn(BaseModel):
    """Darts entered on this client for the turn in progress, before the store confirms them."""

    model_config = ConfigDict(frozen=True)

    player_id: str | None = None
    darts: tuple[Segment, ...] = ()

    @property
    def subtotal(self) -> int:
        return sum(d.scored for d in self.darts)


class MatchData(BaseModel):
    """Everything a client holds about one match.

    ``players`` is ordered by play order; ``turns`` holds the current leg only.
    """

    model_config = ConfigDict(frozen=True)

    match: MatchRecord
    players: tuple[Player, ...] = ()
    legs: tuple[LegRecord, ...] = ()
    turns: tuple[TurnWithThrows, ...] = ()
    turn_throw_counts: dict[str, int] = Field(default_factory=dict)
