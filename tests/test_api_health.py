"""
Tests for feedwatch/api/health.py - health check endpoints (liveness, readiness, deep).
"""
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from feedwatch.api.health import (
    _check_classifier,
    _check_store,
    _check_workers,
    deep_health_check,
    health_check,
    readiness_check,
)
from feedwatch.services.storage import set_store
from feedwatch.workers.queue_sweeper import WORKER_NAME, heartbeat_key


# ---------------------------------------------------------------------------
# GET /health - basic liveness
# ---------------------------------------------------------------------------


class TestHealthCheck:
    async def test_returns_healthy(self):
        result = await health_check()
        assert result["status"] == "healthy"
        assert result["version"] == "1.0.0"
        assert datetime.fromisoformat(result["timestamp"]).tzinfo is not None


# ---------------------------------------------------------------------------
# GET /health/ready - store ping
# ---------------------------------------------------------------------------


class TestReadinessCheck:
    async def test_ready_when_store_answers(self, installed_store):
        result = await readiness_check()
        assert result["status"] == "ready"
        assert result["checks"] == {"store": True}

    async def test_degraded_when_store_fails(self):
        broken = MagicMock()
        broken.ping = AsyncMock(side_effect=ConnectionError("refused"))
        set_store(broken)
        result = await readiness_check()
        assert result["status"] == "degraded"

    async def test_store_check_reports_backend(self, installed_store):
        assert await _check_store() == {"healthy": True, "backend": "local"}


# ---------------------------------------------------------------------------
# GET /health/deep
# ---------------------------------------------------------------------------


class TestDeepHealthCheck:
    async def test_healthy_when_everything_answers(self, installed_store):
        with (
            patch("feedwatch.api.health._check_classifier", new_callable=AsyncMock, return_value={"healthy": True}),
            patch("feedwatch.api.health._check_workers", new_callable=AsyncMock, return_value={"healthy": True}),
        ):
            result = await deep_health_check()
        assert result["status"] == "healthy"

    async def test_degraded_when_classifier_down(self, installed_store):
        with (
            patch("feedwatch.api.health._check_classifier", new_callable=AsyncMock, return_value={"healthy": False}),
            patch("feedwatch.api.health._check_workers", new_callable=AsyncMock, return_value={"healthy": True}),
        ):
            result = await deep_health_check()
        assert result["status"] == "degraded"

    async def test_unhealthy_when_store_down(self):
        with (
            patch("feedwatch.api.health._check_store", new_callable=AsyncMock, return_value={"healthy": False}),
            patch("feedwatch.api.health._check_classifier", new_callable=AsyncMock, return_value={"healthy": True}),
            patch("feedwatch.api.health._check_workers", new_callable=AsyncMock, return_value={"healthy": True}),
        ):
            result = await deep_health_check()
        assert result["status"] == "unhealthy"

    async def test_classifier_check_uses_models_endpoint(self, test_settings):
        fake = MagicMock()
        fake.model = test_settings.lm_studio_model
        fake.check_health = AsyncMock(return_value=True)
        fake.aclose = AsyncMock()
        with (
            patch("feedwatch.api.health.get_settings", return_value=test_settings),
            patch("feedwatch.services.classifier.RelevanceClassifier.from_settings", return_value=fake),
        ):
            result = await _check_classifier()
        assert result == {"healthy": True, "model": test_settings.lm_studio_model}
        fake.aclose.assert_awaited_once()


class TestWorkerHeartbeats:
    async def test_no_in_process_workers(self, test_settings):
        with patch("feedwatch.api.health.get_settings", return_value=test_settings):
            result = await _check_workers(datetime.now(timezone.utc))
        assert result["healthy"] is True

    async def test_fresh_heartbeat_is_healthy(self, installed_store, test_settings):
        test_settings.queue_sweeper_enabled = True
        now = datetime.now(timezone.utc)
        await installed_store.set(heartbeat_key(WORKER_NAME), (now - timedelta(seconds=30)).isoformat())
        with patch("feedwatch.api.health.get_settings", return_value=test_settings):
            result = await _check_workers(now)
        assert result["healthy"] is True

    async def test_stale_heartbeat_is_unhealthy(self, installed_store, test_settings):
        test_settings.queue_sweeper_enabled = True
        now = datetime.now(timezone.utc)
        await installed_store.set(heartbeat_key(WORKER_NAME), (now - timedelta(hours=2)).isoformat())
        with patch("feedwatch.api.health.get_settings", return_value=test_settings):
            result = await _check_workers(now)
        assert result["healthy"] is False

    async def test_missing_heartbeat_is_unhealthy(self, installed_store, test_settings):
        test_settings.queue_sweeper_enabled = True
        with patch("feedwatch.api.health.get_settings", return_value=test_settings):
            result = await _check_workers(datetime.now(timezone.utc))
        assert result["workers"][WORKER_NAME]["last_heartbeat"] is None
        assert result["healthy"] is False
