"""
Tests for feedwatch/main.py - app factory, middleware, exception mapping and lifespan.
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from fastapi import FastAPI
from fastapi.testclient import TestClient

from feedwatch.main import CorrelationIdMiddleware, create_app, lifespan


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_mock_settings(**overrides):
    """Build a mock Settings object."""
    defaults = {
        "app_env": "test",
        "log_level": "WARNING",
        "sentry_dsn": "",
        "worker_auth_token": "token",
        "queue_sweeper_enabled": False,
    }
    defaults.update(overrides)
    settings = MagicMock()
    for k, v in defaults.items():
        setattr(settings, k, v)
    return settings


def _app(**overrides):
    with (
        patch("feedwatch.main.get_settings", return_value=_make_mock_settings(**overrides)),
        patch("feedwatch.main.configure_structured_logging"),
    ):
        return create_app()


# ---------------------------------------------------------------------------
# create_app - application factory
# ---------------------------------------------------------------------------


class TestCreateApp:
    def test_returns_fastapi_instance(self):
        app = _app()
        assert isinstance(app, FastAPI)
        assert app.title == "feedwatch"

    def test_configures_structured_logging(self):
        with (
            patch("feedwatch.main.get_settings", return_value=_make_mock_settings(log_level="DEBUG")),
            patch("feedwatch.main.configure_structured_logging") as mock_log,
        ):
            create_app()
        mock_log.assert_called_once_with("DEBUG")

    def test_includes_all_routers(self):
        paths = {route.path for route in _app().routes}
        for expected in (
            "/health",
            "/api/filter-queue/next",
            "/api/filter-context",
            "/api/keywords",
            "/api/posts",
            "/api/cron/fetch-posts",
        ):
            assert expected in paths

    def test_middleware_registered(self):
        classes = [m.cls for m in _app().user_middleware]
        assert CorrelationIdMiddleware in classes


# ---------------------------------------------------------------------------
# CorrelationIdMiddleware
# ---------------------------------------------------------------------------


class TestCorrelationIdMiddleware:
    def test_generates_correlation_id_when_missing(self):
        response = TestClient(_app()).get("/health")
        assert len(response.headers["x-correlation-id"]) == 32

    def test_uses_existing_correlation_id(self):
        cid = "abc123def456789012345678abcdef00"
        response = TestClient(_app()).get("/health", headers={"X-Correlation-ID": cid})
        assert response.headers["x-correlation-id"] == cid

    def test_cors_preflight(self):
        response = TestClient(_app()).options(
            "/api/filter-queue/status",
            headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "GET"},
        )
        assert "access-control-allow-origin" in response.headers


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


class TestExceptionHandlers:
    def test_validation_error_body_shape(self, installed_store):
        client = TestClient(_app(), raise_server_exceptions=False)
        resp = client.post("/api/filter-queue/add", json={"keyword": "x"})
        assert resp.status_code == 400
        assert set(resp.json()) == {"error"}

    def test_lock_busy_is_409(self, installed_store):
        from feedwatch.utils.locks import LockTimeoutError

        client = TestClient(_app(), raise_server_exceptions=False)
        with patch(
            "feedwatch.services.filter_queue.FilterQueue.requeue",
            side_effect=LockTimeoutError("busy"),
        ):
            resp = client.post("/api/filter-queue/requeue", json={"key": "queue:filter:1:a"})
        assert resp.status_code == 409


# ---------------------------------------------------------------------------
# lifespan - startup and shutdown
# ---------------------------------------------------------------------------


class TestLifespan:
    async def test_initializes_and_closes_store(self):
        store = MagicMock()
        store.backend = "local"
        store.init = AsyncMock()
        store.close = AsyncMock()

        with (
            patch("feedwatch.main.get_settings", return_value=_make_mock_settings()),
            patch("feedwatch.main.get_store", return_value=store),
        ):
            async with lifespan(MagicMock()):
                store.init.assert_awaited_once()
        store.close.assert_awaited_once()

    async def test_warns_when_worker_token_missing(self, installed_store):
        with (
            patch("feedwatch.main.get_settings", return_value=_make_mock_settings(worker_auth_token="")),
            patch("feedwatch.main.logger") as mock_logger,
        ):
            async with lifespan(MagicMock()):
                pass

        warnings = [c for c in mock_logger.warning.call_args_list if "WORKER_AUTH_TOKEN" in str(c)]
        assert warnings

    async def test_starts_and_cancels_sweeper(self, installed_store):
        started = asyncio.Event()

        async def fake_sweeper():
            started.set()
            await asyncio.sleep(3600)

        with (
            patch("feedwatch.main.get_settings", return_value=_make_mock_settings(queue_sweeper_enabled=True)),
            patch("feedwatch.workers.queue_sweeper.run_queue_sweeper", side_effect=fake_sweeper),
        ):
            async with lifespan(MagicMock()):
                await asyncio.wait_for(started.wait(), timeout=1)

    async def test_sentry_initialized_when_dsn_set(self, installed_store):
        with (
            patch("feedwatch.main.get_settings", return_value=_make_mock_settings(sentry_dsn="https://k@sentry.test/1")),
            patch("sentry_sdk.init") as mock_init,
        ):
            async with lifespan(MagicMock()):
                pass
        mock_init.assert_called_once()
        assert mock_init.call_args.kwargs["environment"] == "test"
