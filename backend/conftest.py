"""Root conftest: test environment and log routing shared by darts and shared tests."""

from pathlib import Path

import pytest
import structlog
from dotenv import load_dotenv

from shared.logging import configure_structlog

load_dotenv(Path(__file__).resolve().parent.parent / ".env.tests", override=True)

configure_structlog()

# A developer shell may point these at a real store or snapshot folder.
_EXTERNAL_ENV = ("DARTS_STORE_URL", "DARTS_STORE_API_KEY", "DARTS_SNAPSHOT_DIR")


@pytest.fixture(autouse=True)
def _no_external_store(monkeypatch):
    for name in _EXTERNAL_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _clear_match_context():
    """Match ids bound by one test must not show up in the next."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()
