"""
Per-item claim locks - serializes status transitions on a single queue item.
Uses the store's atomic set-if-absent with a TTL so a crashed holder cannot
wedge an item forever, and compare-and-delete so we only release our own lock.
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager

from feedwatch.services.storage import KeyValueStore

logger = logging.getLogger(__name__)

LOCK_PREFIX = "queue:lock"
LOCK_TTL_SECONDS = 30
LOCK_WAIT_SECONDS = 5
LOCK_POLL_INTERVAL = 0.05  # 50ms


class LockTimeoutError(Exception):
    """Raised when a lock cannot be acquired within the wait window."""
    pass


def lock_key_for(key: str) -> str:
    return f"{LOCK_PREFIX}:{key}"


@asynccontextmanager
async def item_lock(
    store: KeyValueStore,
    key: str,
    ttl: int = LOCK_TTL_SECONDS,
    wait: float = LOCK_WAIT_SECONDS,
):
    """
    Hold the claim lock for a queue item.

    wait=0 makes a single attempt, which is what the dispatcher wants: a
    contended item is being claimed by someone else, so move on to the next.

    Usage:
        async with item_lock(store, queue_key):
            # read-modify-write the item safely
    """
    lock_key = lock_key_for(key)
    token = uuid.uuid4().hex

    acquired = await _acquire_lock(store, lock_key, token, ttl, wait)
    if not acquired:
        raise LockTimeoutError(f"Could not acquire lock for {key} within {wait}s")
    try:
        yield
    finally:
        released = await store.delete_if_equals(lock_key, token)
        if not released:
            logger.warning("Lock for %s expired before release", key, extra={"queue_key": key})


async def _acquire_lock(
    store: KeyValueStore,
    lock_key: str,
    token: str,
    ttl: int,
    wait: float,
) -> bool:
    """Try to acquire the lock, polling until `wait` seconds have passed."""
    if await store.set_if_absent(lock_key, token, ttl):
        return True

    elapsed = 0.0
    while elapsed < wait:
        await asyncio.sleep(LOCK_POLL_INTERVAL)
        elapsed += LOCK_POLL_INTERVAL
        if await store.set_if_absent(lock_key, token, ttl):
            return True

    if wait > 0:
        logger.warning("Lock acquisition timed out for %s", lock_key)
    return False
