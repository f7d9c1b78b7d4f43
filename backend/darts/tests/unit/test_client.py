import pytest
import structlog

from darts.client import configure_logging, create_scorer, create_snapshot_storage, create_store, create_view
from darts.realtime.settings import RealtimeSettings
from darts.store.memory import InMemoryMatchStore
from darts.store.rest import RestMatchStore
from shared.storage import LocalSnapshotStorage


class TestCreateStore:
    def test_requires_store_url(self):
        with pytest.raises(ValueError, match="DARTS_STORE_URL is required"):
            create_store(RealtimeSettings(store_url=None))

    async def test_builds_rest_store(self):
        store = create_store(RealtimeSettings(store_url="https://store.example.test", store_api_key="secret"))

        assert isinstance(store, RestMatchStore)
        await store.aclose()


class TestCreateSnapshotStorage:
    def test_disabled_without_directory(self):
        assert create_snapshot_storage(RealtimeSettings(snapshot_dir=None)) is None

    def test_uses_configured_directory(self, tmp_path):
        storage = create_snapshot_storage(RealtimeSettings(snapshot_dir=str(tmp_path)))

        assert isinstance(storage, LocalSnapshotStorage)
        assert storage.path_for("match-1-leg-1") == tmp_path.resolve() / "match-1-leg-1.json.gz"


class TestCreateView:
    def test_binds_match_context(self):
        view = create_view("match-1", settings=RealtimeSettings(), store=InMemoryMatchStore(), spectator=True)

        assert view.spectator
        assert not view.is_open
        assert structlog.contextvars.get_contextvars() == {"match_id": "match-1", "role": "spectator"}

    def test_scorer_gets_snapshot_storage(self, tmp_path):
        settings = RealtimeSettings(snapshot_dir=str(tmp_path))
        view = create_view("match-1", settings=settings, store=InMemoryMatchStore())

        scorer = create_scorer(view, settings)

        assert scorer.view is view
        assert structlog.contextvars.get_contextvars()["role"] == "scorer"


class TestConfigureLogging:
    def test_passes_log_dir_and_client_name(self, monkeypatch, tmp_path):
        calls = []

        def fake_setup(log_dir, *, client_name):
            calls.append((log_dir, client_name))

        monkeypatch.setattr("darts.client.setup_logging", fake_setup)

        assert configure_logging(RealtimeSettings(log_dir=str(tmp_path)), client_name="spectator") is None
        assert calls == [(str(tmp_path), "spectator")]
