from __future__ import annotations

import pytest

from superapp_core.storage import InMemoryKeyValueStorage
from tests.superapp_core.support.fakes import FakeClock, FakeLogger


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def clock() -> FakeClock:
    """Provide a hand-driven epoch clock per test."""
    return FakeClock()


@pytest.fixture
def kv_storage() -> InMemoryKeyValueStorage:
    """Provide an empty in-memory key-value storage per test."""
    return InMemoryKeyValueStorage()
