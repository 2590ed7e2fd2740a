"""
Pytest Configuration and Shared Fixtures

Seeds the environment the config module requires before anything from
budget_bully is imported, and provides store/provider/service fixtures.
"""

import os

os.environ.setdefault("PLAID_CLIENT_ID", "test-client-id")
os.environ.setdefault("PLAID_SECRET", "test-secret")
os.environ.setdefault("SYNC_API_SECRET", "test-sync-secret")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from datetime import date

import pytest

from budget_bully.store import create_store
from budget_bully.sync import SyncService
from tests.fakes import FakeProvider, RecordingPush

TODAY = date(2024, 3, 15)


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def store(tmp_path):
    """A fresh SQLite-file store per test (file, not :memory:, so worker threads share it)."""
    s = create_store(f"sqlite:///{tmp_path / 'budget_bully_test.db'}")
    yield s
    s.engine.dispose()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def push() -> RecordingPush:
    return RecordingPush()


@pytest.fixture
def service(store, provider, push) -> SyncService:
    return SyncService.from_store(store, provider, push, page_size=50, today=lambda: TODAY)
