"""Change notifications emitted by the shared store.

Every mutation of a watched collection produces one notification carrying the
entity, the operation and partial row images. Delivery is at-least-once and
unordered. Notifications are validated here before any client state is
touched; row images are partial because deletes usually carry only keys.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class EntityType(StrEnum):
    THROW = "throw"
    TURN = "turn"
    LEG = "leg"
    MATCH = "match"
    ROSTER = "roster"


class ChangeOp(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class _RowPatch(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class ThrowPatch(_RowPatch):
    id: str | None = None
    turn_id: str | None = None
    dart_index: int | None = Field(default=None, ge=1, le=3)
    segment: str | None = None
    scored: int | None = None
    match_id: str | None = None


class TurnPatch(_RowPatch):
    id: str | None = None
    leg_id: str | None = None
    player_id: str | None = None
    turn_number: int | None = None
    total_scored: int | None = None
    busted: bool | None = None
    tiebreak_round: int | None = None
    match_id: str | None = None


class LegPatch(_RowPatch):
    id: str | None = None
    match_id: str | None = None
    leg_number: int | None = None
    starting_player_id: str | None = None
    winner_player_id: str | None = None


class MatchPatch(_RowPatch):
    id: str | None = None
    winner_player_id: str | None = None
    ended_early: bool | None = None
    completed_at: datetime | None = None


class RosterPatch(_RowPatch):
    match_id: str | None = None
    player_id: str | None = None
    play_order: int | None = None


class _Change(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    op: ChangeOp = Field(validation_alias=AliasChoices("op", "eventType"))
    commit_timestamp: datetime | None = None

    @field_validator("op", mode="before")
    @classmethod
    def normalize_op(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    @property
    def is_delete(self) -> bool:
        return self.op == ChangeOp.DELETE

    def field(self, name: str) -> Any:
        """Value of a column from the new image, falling back to the old one."""
        for image in (getattr(self, "new", None), getattr(self, "old", None)):
            value = getattr(image, name, None) if image is not None else None
            if value is not None:
                return value
        return None


def _pick(new: Any, old: Any) -> Any:
    if new is not None and new.model_fields_set:
        return new
    return old if old is not None else new


class ThrowChange(_Change):
    entity: Literal[EntityType.THROW] = EntityType.THROW
    new: ThrowPatch | None = None
    old: ThrowPatch | None = None

    @property
    def record(self) -> ThrowPatch | None:
        return _pick(self.new, self.old)


class TurnChange(_Change):
    entity: Literal[EntityType.TURN] = EntityType.TURN
    new: TurnPatch | None = None
    old: TurnPatch | None = None

    @property
    def record(self) -> TurnPatch | None:
        return _pick(self.new, self.old)


class LegChange(_Change):
    entity: Literal[EntityType.LEG] = EntityType.LEG
    new: LegPatch | None = None
    old: LegPatch | None = None

    @property
    def record(self) -> LegPatch | None:
        return _pick(self.new, self.old)


class MatchChange(_Change):
    entity: Literal[EntityType.MATCH] = EntityType.MATCH
    new: MatchPatch | None = None
    old: MatchPatch | None = None

    @property
    def record(self) -> MatchPatch | None:
        return _pick(self.new, self.old)


class RosterChange(_Change):
    entity: Literal[EntityType.ROSTER] = EntityType.ROSTER
    new: RosterPatch | None = None
    old: RosterPatch | None = None

    @property
    def record(self) -> RosterPatch | None:
        return _pick(self.new, self.old)


ChangeNotification = Annotated[
    ThrowChange | TurnChange | LegChange | MatchChange | RosterChange,
    Field(discriminator="entity"),
]

_notification_adapter = TypeAdapter(ChangeNotification)


def parse_change_notification(data: dict[str, Any]) -> ChangeNotification:
    """Validate a raw notification dict into its typed change model."""
    return _notification_adapter.validate_python(data)
