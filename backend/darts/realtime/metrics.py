"""Per-view counters for notification traffic and reconcile work."""

from __future__ import annotations

import time
from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict

from darts.messaging.types import EntityType
from darts.store.repository import ConnectionStatus


class MetricsSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    throws_events: int = 0
    turns_events: int = 0
    legs_events: int = 0
    matches_events: int = 0
    roster_events: int = 0
    reconcile_turn_calls: int = 0
    reconcile_current_leg_calls: int = 0
    full_reloads: int = 0
    fallback_poll_ticks: int = 0
    channel_connected_transitions: int = 0
    channel_error_transitions: int = 0
    channel_closed_transitions: int = 0
    last_event_at: float | None = None
    last_delivery_delay_ms: float | None = None
    avg_delivery_delay_ms: float | None = None
    delivery_samples: int = 0

    @property
    def total_events(self) -> int:
        return self.throws_events + self.turns_events + self.legs_events + self.matches_events + self.roster_events


_EVENT_COUNTERS = {
    EntityType.THROW: "throws_events",
    EntityType.TURN: "turns_events",
    EntityType.LEG: "legs_events",
    EntityType.MATCH: "matches_events",
    EntityType.ROSTER: "roster_events",
}

_STATUS_COUNTERS = {
    ConnectionStatus.SUBSCRIBED: "channel_connected_transitions",
    ConnectionStatus.CHANNEL_ERROR: "channel_error_transitions",
    ConnectionStatus.TIMED_OUT: "channel_error_transitions",
    ConnectionStatus.CLOSED: "channel_closed_transitions",
}


class RealtimeMetrics:
    """Mutable counters owned by one MatchView."""

    def __init__(self) -> None:
        self._counters: dict[str, int] = dict.fromkeys(
            (
                *_EVENT_COUNTERS.values(),
                "reconcile_turn_calls",
                "reconcile_current_leg_calls",
                "full_reloads",
                "fallback_poll_ticks",
                *_STATUS_COUNTERS.values(),
            ),
            0,
        )
        self._last_event_at: float | None = None
        self._last_delay_ms: float | None = None
        self._avg_delay_ms: float | None = None
        self._samples = 0

    def increment(self, key: str, delta: int = 1) -> None:
        self._counters[key] += delta
        self._last_event_at = time.time()

    def record_event(self, entity: EntityType) -> None:
        self.increment(_EVENT_COUNTERS[entity])

    def record_status(self, status: ConnectionStatus) -> None:
        self.increment(_STATUS_COUNTERS[status])

    def record_delivery(self, commit_timestamp: datetime | None) -> None:
        """Track the delay between the store commit and local delivery."""
        if commit_timestamp is None:
            return
        if commit_timestamp.tzinfo is None:
            commit_timestamp = commit_timestamp.replace(tzinfo=UTC)
        delay_ms = (datetime.now(tz=UTC) - commit_timestamp).total_seconds() * 1000
        if delay_ms < 0:
            return
        self._samples += 1
        self._last_delay_ms = delay_ms
        previous = self._avg_delay_ms or 0.0
        self._avg_delay_ms = previous + (delay_ms - previous) / self._samples

    def snapshot(self) -> MetricsSnapshot:
        return MetricsSnapshot(
            **self._counters,
            last_event_at=self._last_event_at,
            last_delivery_delay_ms=self._last_delay_ms,
            avg_delivery_delay_ms=self._avg_delay_ms,
            delivery_samples=self._samples,
        )
