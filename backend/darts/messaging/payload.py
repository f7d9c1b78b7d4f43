"""Routing keys extracted from change notifications."""

from __future__ import annotations

from typing import TYPE_CHECKING

from darts.messaging.types import LegChange, MatchChange, RosterChange, ThrowChange, TurnChange

if TYPE_CHECKING:
    from darts.messaging.types import ChangeNotification


def payload_leg_id(change: ChangeNotification) -> str | None:
    if isinstance(change, TurnChange):
        return change.field("leg_id")
    if isinstance(change, LegChange):
        return change.field("id")
    return None


def payload_turn_id(change: ChangeNotification) -> str | None:
    if isinstance(change, ThrowChange):
        return change.field("turn_id")
    if isinstance(change, TurnChange):
        return change.field("id")
    return None


def payload_match_id(change: ChangeNotification) -> str | None:
    if isinstance(change, MatchChange):
        return change.field("id")
    if isinstance(change, (ThrowChange, TurnChange, LegChange, RosterChange)):
        return change.field("match_id")
    return None

