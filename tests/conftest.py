"""Test configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from jcache.config import CacheConfig
from jcache.persist import CacheStore


class FakeClock:
    """Manually advanced clock handed to CacheStore."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(tmp_path: Path) -> CacheConfig:
    """Config rooted in a temporary directory."""
    return CacheConfig(cache_name="test-cache", cache_dir=tmp_path / "cache")


@pytest.fixture
def store(config, clock):
    """Initialized CacheStore driven by the fake clock."""
    cache = CacheStore(config, clock=clock).init()
    yield cache
    cache.dispose()
