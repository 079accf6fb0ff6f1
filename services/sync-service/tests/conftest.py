"""Pytest fixtures for testing."""
import os

# Must be set before shaka_sync.main builds its module-level app.
os.environ.setdefault("TRACING_ENABLED", "false")

import pytest  # noqa: E402

from fakes import InMemoryStore  # noqa: E402
from shaka_sync.batch_writer import BatchWriter  # noqa: E402
from shaka_sync.config import Settings  # noqa: E402
from shaka_sync.orchestrator import SyncOrchestrator  # noqa: E402

TEST_SECRET = "test-secret-token"


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        backfill_secret=TEST_SECRET,
        backfill_grace_seconds=5.0,
        tracing_enabled=False,
        report_webhook_url=None,
    )


@pytest.fixture
def orchestrator(store: InMemoryStore, test_settings: Settings) -> SyncOrchestrator:
    return SyncOrchestrator.from_settings(store, test_settings)


@pytest.fixture
def writer(store: InMemoryStore) -> BatchWriter:
    return BatchWriter(store)
