from __future__ import annotations

import pytest

from fakes import FakeEntityStore, FakeRedis


@pytest.fixture
def store() -> FakeEntityStore:
    return FakeEntityStore()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
