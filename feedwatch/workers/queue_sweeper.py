"""
Queue sweeper - reclaims expired leases and prunes finished queue items.
Runs in-process every queue_sweep_interval_seconds when queue_sweeper_enabled is set.
The external scheduler hitting /api/filter-queue/reset-stuck and /cleanup remains
the primary trigger; this loop is the fallback for single-host deployments.
"""
import asyncio
import logging
from datetime import datetime, timezone

from feedwatch.config import get_settings

logger = logging.getLogger(__name__)

HEARTBEAT_PREFIX = "feedwatch:worker_health"
WORKER_NAME = "queue_sweeper"


def heartbeat_key(name: str) -> str:
    return f"{HEARTBEAT_PREFIX}:{name}"


async def _heartbeat(store) -> None:
    """Store heartbeat timestamp."""
    try:
        await store.set(heartbeat_key(WORKER_NAME), datetime.now(timezone.utc).isoformat())
    except Exception as e:
        logger.debug("Queue sweeper heartbeat failed: %s", str(e))


async def sweep_once(queue, stuck_timeout_ms: int, cleanup_max_age_ms: int) -> dict:
    """Run one reset + cleanup pass. Returns the counts."""
    reset = await queue.reset_stuck(stuck_timeout_ms)
    cleaned = await queue.cleanup(cleanup_max_age_ms)
    if reset or cleaned:
        logger.info("Queue sweep: reset %d stuck items, cleaned %d", reset, cleaned)
    return {"reset": reset, "cleaned": cleaned}


async def run_queue_sweeper():
    """Main sweeper loop. Runs until cancelled."""
    from feedwatch.services.filter_queue import get_filter_queue

    settings = get_settings()
    logger.info(
        "Queue sweeper started (interval=%ds)",
        settings.queue_sweep_interval_seconds,
    )

    while True:
        queue = get_filter_queue()
        try:
            await sweep_once(
                queue,
                settings.queue_stuck_timeout_ms,
                settings.queue_cleanup_max_age_ms,
            )
        except Exception as e:
            logger.error("Queue sweeper error: %s", str(e), exc_info=True)

        await _heartbeat(queue.store)
        await asyncio.sleep(settings.queue_sweep_interval_seconds)
