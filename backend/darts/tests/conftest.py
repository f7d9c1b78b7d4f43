import pytest

from darts.realtime.settings import RealtimeSettings
from darts.store.memory import InMemoryChangeFeed, InMemoryMatchStore


@pytest.fixture
def fast_settings():
    """Timings short enough for tests to wait on real timers."""
    return RealtimeSettings(
        reconcile_delay_seconds=0.02,
        refresh_debounce_seconds=0.01,
        poll_interval_seconds=0.02,
        log_dir="logs/test",
    )


@pytest.fixture
def feed():
    return InMemoryChangeFeed()


@pytest.fixture
def store(feed):
    return InMemoryMatchStore(feed)
