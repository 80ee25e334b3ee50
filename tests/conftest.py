"""
Test configuration and fixtures.
Queue and service tests run against a LocalStore in a temp dir; Redis adapter
tests use fakeredis. Nothing talks to Reddit, LM Studio, or a real Redis.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from feedwatch.config import Settings
from feedwatch.services.filter_queue import FilterQueue
from feedwatch.services.storage import LocalStore, RedisStore, reset_store, set_store


@pytest.fixture(autouse=True)
def _reset_store_handle():
    """Never leak the process-wide store handle between tests."""
    reset_store()
    yield
    reset_store()


@pytest.fixture
async def store(tmp_path):
    """LocalStore rooted in a per-test temp dir."""
    local = LocalStore(tmp_path / "data")
    await local.init()
    return local


@pytest.fixture
async def redis_store():
    """RedisStore over an in-memory fakeredis server (with Lua for compare-and-delete)."""
    import fakeredis

    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield RedisStore(client)
    await client.flushall()
    await client.aclose()


@pytest.fixture
def queue(store):
    return FilterQueue(store)


@pytest.fixture
def installed_store(store):
    """Install the temp LocalStore as the process-wide handle (for API tests)."""
    set_store(store)
    return store


class Clock:
    """Controllable replacement for filter_queue._utcnow."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    c = Clock(datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc))
    with patch("feedwatch.services.filter_queue._utcnow", c):
        yield c


@pytest.fixture
def test_settings(tmp_path):
    """Settings with no .env influence and a temp data dir."""
    return Settings(
        _env_file=None,
        data_dir=str(tmp_path / "data"),
        storage_backend="local",
        worker_auth_token="",
        cron_secret="",
    )


@pytest.fixture
def sample_posts():
    return [
        {"id": "abc123", "title": "Slack is down again", "selftext": "Anyone else seeing outages?"},
        {"id": "def456", "title": "Best Slack integrations", "selftext": "Looking for recommendations"},
        {"id": "ghi789", "title": "Slack pricing change", "selftext": ""},
    ]
