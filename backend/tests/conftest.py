from __future__ import annotations

import pytest

from dubs.config import DubSettings
from shared.config import Settings

from tests.fakes import FakeCatalog, FakeClock, FakeRedis, FakeSleep, InMemoryEntityStore


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def dub_settings() -> DubSettings:
    return DubSettings(_env_file=None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def store() -> InMemoryEntityStore:
    return InMemoryEntityStore()


@pytest.fixture
def catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
