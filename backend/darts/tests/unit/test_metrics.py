from datetime import UTC, datetime, timedelta

from darts.messaging.types import EntityType
from darts.realtime.metrics import RealtimeMetrics
from darts.store.repository import ConnectionStatus


class TestRealtimeMetrics:
    def test_starts_at_zero(self):
        snapshot = RealtimeMetrics().snapshot()

        assert snapshot.total_events == 0
        assert snapshot.last_event_at is None
        assert snapshot.avg_delivery_delay_ms is None

    def test_event_counters(self):
        metrics = RealtimeMetrics()
        metrics.record_event(EntityType.THROW)
        metrics.record_event(EntityType.THROW)
        metrics.record_event(EntityType.TURN)
        metrics.record_event(EntityType.ROSTER)

        snapshot = metrics.snapshot()

        assert snapshot.throws_events == 2
        assert snapshot.turns_events == 1
        assert snapshot.roster_events == 1
        assert snapshot.total_events == 4
        assert snapshot.last_event_at is not None

    def test_status_transitions(self):
        metrics = RealtimeMetrics()
        for status in (
            ConnectionStatus.SUBSCRIBED,
            ConnectionStatus.CHANNEL_ERROR,
            ConnectionStatus.TIMED_OUT,
            ConnectionStatus.CLOSED,
            ConnectionStatus.SUBSCRIBED,
        ):
            metrics.record_status(status)

        snapshot = metrics.snapshot()

        assert snapshot.channel_connected_transitions == 2
        assert snapshot.channel_error_transitions == 2
        assert snapshot.channel_closed_transitions == 1

    def test_work_counters(self):
        metrics = RealtimeMetrics()
        metrics.increment("reconcile_turn_calls")
        metrics.increment("full_reloads", 3)

        snapshot = metrics.snapshot()

        assert snapshot.reconcile_turn_calls == 1
        assert snapshot.full_reloads == 3

    def test_delivery_delay_running_mean(self):
        metrics = RealtimeMetrics()
        now = datetime.now(tz=UTC)
        metrics.record_delivery(now - timedelta(milliseconds=100))
        metrics.record_delivery(now - timedelta(milliseconds=300))

        snapshot = metrics.snapshot()

        assert snapshot.delivery_samples == 2
        assert snapshot.last_delivery_delay_ms >= 300
        assert 200 <= snapshot.avg_delivery_delay_ms < 1000

    def test_missing_or_future_timestamps_are_ignored(self):
        metrics = RealtimeMetrics()
        metrics.record_delivery(None)
        metrics.record_delivery(datetime.now(tz=UTC) + timedelta(minutes=5))

        assert metrics.snapshot().delivery_samples == 0

    def test_naive_timestamps_are_utc(self):
        metrics = RealtimeMetrics()
        metrics.record_delivery(datetime.now(tz=UTC).replace(tzinfo=None) - timedelta(seconds=1))

        assert metrics.snapshot().last_delivery_delay_ms >= 1000
