"""
Health check endpoints - used by load balancers, Docker healthcheck, and monitoring.

- GET /health       - basic liveness (always 200 if app running)
- GET /health/ready - readiness check (key-value store)
- GET /health/deep  - deep check (store + LM Studio + sweeper heartbeat)
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from feedwatch.config import get_settings

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

VERSION = "1.0.0"


@router.get("/health")
async def health_check():
    """Basic liveness check - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
    }


@router.get("/health/ready")
async def readiness_check():
    """
    Readiness check - verifies the key-value store answers.
    Used by the orchestrator to decide if the app can serve traffic.
    """
    store_check = await _check_store()
    return {
        "status": "ready" if store_check["healthy"] else "degraded",
        "checks": {"store": store_check["healthy"]},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/deep")
async def deep_health_check():
    """
    Deep health check - checks ALL dependencies.

    Checks:
    - Store: PING (critical)
    - Classifier: LM Studio /v1/models
    - Workers: sweeper heartbeat freshness
    """
    now = datetime.now(timezone.utc)
    checks = {
        "store": await _check_store(),
        "classifier": await _check_classifier(),
        "workers": await _check_workers(now),
    }

    all_healthy = all(c.get("healthy", False) for c in checks.values())
    if all_healthy:
        status = "healthy"
    elif checks["store"]["healthy"]:
        status = "degraded"
    else:
        status = "unhealthy"

    return {
        "status": status,
        "checks": checks,
        "timestamp": now.isoformat(),
        "version": VERSION,
    }


async def _check_store() -> dict:
    try:
        from feedwatch.services.storage import get_store
        store = get_store()
        await store.ping()
        return {"healthy": True, "backend": store.backend}
    except Exception as e:
        logger.error("Health: store check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


async def _check_classifier() -> dict:
    from feedwatch.services.classifier import RelevanceClassifier

    classifier = RelevanceClassifier.from_settings(get_settings())
    try:
        healthy = await classifier.check_health()
    finally:
        await classifier.aclose()
    return {"healthy": healthy, "model": classifier.model}


async def _check_workers(now: datetime) -> dict:
    """Heartbeat freshness for in-process workers. Stale after two missed intervals."""
    settings = get_settings()
    if not settings.queue_sweeper_enabled:
        return {"healthy": True, "note": "No in-process workers enabled"}

    try:
        from feedwatch.services.storage import get_store
        from feedwatch.workers.queue_sweeper import WORKER_NAME, heartbeat_key

        heartbeat = await get_store().get(heartbeat_key(WORKER_NAME))
        healthy = False
        if heartbeat:
            age = (now - datetime.fromisoformat(heartbeat)).total_seconds()
            healthy = age < settings.queue_sweep_interval_seconds * 2
        return {
            "healthy": healthy,
            "workers": {WORKER_NAME: {"healthy": healthy, "last_heartbeat": heartbeat}},
        }
    except Exception as e:
        logger.warning("Health: worker heartbeat check failed: %s", str(e))
        return {"healthy": True, "note": "Unable to check worker heartbeats"}
