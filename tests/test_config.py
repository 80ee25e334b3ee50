"""
Tests for feedwatch/config.py - defaults, backend selection, proxy URL.
"""
import pytest

from feedwatch.config import Settings


def _settings(**overrides):
    return Settings(_env_file=None, **overrides)


class TestDefaults:
    def test_queue_defaults(self):
        s = _settings()
        assert s.queue_stuck_timeout_ms == 300000
        assert s.queue_cleanup_max_age_ms == 3600000
        assert s.queue_sweeper_enabled is False
        assert s.app_port == 3000

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("QUEUE_STUCK_TIMEOUT_MS", "1000")
        monkeypatch.setenv("WORKER_AUTH_TOKEN", "tok")
        s = _settings()
        assert s.queue_stuck_timeout_ms == 1000
        assert s.worker_auth_token == "tok"


class TestUseRedis:
    @pytest.mark.parametrize(
        "backend,url,expected",
        [
            ("auto", "", False),
            ("auto", "redis://localhost:6379/0", True),
            ("local", "redis://localhost:6379/0", False),
            ("redis", "", True),
        ],
    )
    def test_backend_selection(self, backend, url, expected):
        assert _settings(storage_backend=backend, redis_url=url).use_redis is expected


class TestProxyUrl:
    def test_none_without_credentials(self):
        assert _settings(proxy_user="u", proxy_pass="").proxy_url is None

    def test_built_from_credentials(self):
        s = _settings(proxy_user="u", proxy_pass="p", proxy_host="10.0.0.1:8080")
        assert s.proxy_url == "http://u:p@10.0.0.1:8080"
