"""Wiring for scorer and spectator processes.

Everything is built from RealtimeSettings: logging, the store, optional leg
snapshot storage, and the view (plus a ScoringClient for scorers).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from darts.realtime.scorer import ScoringClient
from darts.realtime.settings import RealtimeSettings
from darts.realtime.view import MatchView
from darts.store.rest import RestMatchStore
from shared.logging import bind_match_context, setup_logging
from shared.storage import LocalSnapshotStorage

if TYPE_CHECKING:
    from pathlib import Path

    from darts.store.repository import ChangeFeed, MatchStore

logger = structlog.get_logger()


def configure_logging(settings: RealtimeSettings, *, client_name: str = "darts") -> Path | None:
    path = setup_logging(settings.log_dir, client_name=client_name)
    logger.info("logging configured", client=client_name, log_file=str(path) if path else None)
    return path


def create_store(settings: RealtimeSettings) -> RestMatchStore:
    if not settings.store_url:
        raise ValueError("DARTS_STORE_URL is required to reach the shared store")
    return RestMatchStore(settings.store_url, settings.store_api_key)


def create_snapshot_storage(settings: RealtimeSettings) -> LocalSnapshotStorage | None:
    if settings.snapshot_dir is None:
        return None
    return LocalSnapshotStorage(settings.snapshot_dir)


def create_view(
    match_id: str,
    *,
    settings: RealtimeSettings | None = None,
    store: MatchStore | None = None,
    feed: ChangeFeed | None = None,
    spectator: bool = False,
) -> MatchView:
    """Build an unopened view; ``store`` defaults to the REST store from settings."""
    settings = settings or RealtimeSettings()
    bind_match_context(match_id, role="spectator" if spectator else "scorer")
    return MatchView(match_id, store or create_store(settings), feed, spectator=spectator, settings=settings)


def create_scorer(view: MatchView, settings: RealtimeSettings | None = None) -> ScoringClient:
    settings = settings or RealtimeSettings()
    return ScoringClient(view, snapshot_storage=create_snapshot_storage(settings))
