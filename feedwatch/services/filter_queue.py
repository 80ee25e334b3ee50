"""
Filter queue - polling-based, at-least-once work queue for relevance classification.

Lifecycle of one item (all state lives in the key-value store):
    enqueue        -> pending
    claim_next     -> leased     (lease holder + lease start stamped, lease marker written)
    submit_result  -> completed  (result record written under the post id, lease marker removed)
    reset_stuck    -> pending    (lease expired; same key reused)
                   -> failed     (after max_lease_resets expired leases)
    requeue        -> pending    (failed items only)
    cleanup        -> deleted    (completed items older than max age, by key timestamp)

Every status transition happens under the item's claim lock (see utils/locks.py),
and the item is re-read once the lock is held. Two workers therefore never both
lease the same item even though the store itself has no transactions.

Key layout:
    queue:filter:{created_ms}:{post_id}       queue item
    queue:processing:{worker_id}:{post_id}    lease marker (active workers index)
    queue:results:{post_id}                   result record
    queue:stats                               advisory counters
"""
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError

from feedwatch.models.queue import (
    ClaimedItem,
    ClassificationResult,
    EnqueueResult,
    PostPayload,
    QueueItem,
    QueueStats,
    QueueStatus,
    ResultRecord,
)
from feedwatch.services.storage import KeyValueStore
from feedwatch.utils.locks import LOCK_TTL_SECONDS, LOCK_WAIT_SECONDS, LockTimeoutError, item_lock

logger = logging.getLogger(__name__)

QUEUE_PREFIX = "queue:filter"
LEASE_PREFIX = "queue:processing"
RESULT_PREFIX = "queue:results"
STATS_KEY = "queue:stats"
BATCH_PREFIX = "queue:batch"
BATCH_RESERVATION_TTL_SECONDS = 60

DEFAULT_WORKER_ID = "default"
DEFAULT_STUCK_TIMEOUT_MS = 300000  # 5 minutes
DEFAULT_CLEANUP_MAX_AGE_MS = 3600000  # 1 hour
DEFAULT_MAX_LEASE_RESETS = 5

# Characters that would break key parsing or glob patterns
_FORBIDDEN_ID_CHARS = set(":*?[]/\\")


class QueueValidationError(ValueError):
    """Bad input to a queue operation. Nothing was written."""
    pass


class QueueItemNotFoundError(Exception):
    """The queue key does not resolve to an item (never existed, or already purged)."""
    pass


class LeaseConflictError(Exception):
    """The item is not leased by the caller, so the transition was refused."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _age_ms(now: datetime, then: datetime) -> float:
    return (now - then).total_seconds() * 1000


def make_queue_key(created_ms: int, post_id: str) -> str:
    return f"{QUEUE_PREFIX}:{created_ms}:{post_id}"


def lease_marker_key(worker_id: str, post_id: str) -> str:
    return f"{LEASE_PREFIX}:{worker_id}:{post_id}"


def result_key(post_id: str) -> str:
    return f"{RESULT_PREFIX}:{post_id}"


def parse_key_timestamp(key: str) -> Optional[int]:
    """Creation time (epoch ms) embedded in a queue key, or None if the key is malformed."""
    parts = key.split(":")
    if len(parts) < 4:
        return None
    try:
        return int(parts[2])
    except ValueError:
        return None


def validate_identifier(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise QueueValidationError(f"{field} is required")
    if _FORBIDDEN_ID_CHARS & set(value):
        raise QueueValidationError(f"{field} contains reserved characters: {value!r}")
    return value


class FilterQueue:
    """Queue operations over an injected store handle. Holds no state between calls."""

    def __init__(
        self,
        store: KeyValueStore,
        max_lease_resets: int = DEFAULT_MAX_LEASE_RESETS,
        lock_ttl: int = LOCK_TTL_SECONDS,
    ):
        self.store = store
        self.max_lease_resets = max_lease_resets
        self.lock_ttl = lock_ttl

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_item(self, key: str) -> Optional[QueueItem]:
        raw = await self.store.get(key)
        if raw is None:
            return None
        return QueueItem.model_validate({"key": key, **raw})

    async def _queue_keys(self) -> list[str]:
        # Keys embed the creation timestamp, so sorting approximates FIFO
        return sorted(await self.store.keys(f"{QUEUE_PREFIX}:*"))

    async def get_stats(self) -> QueueStats:
        raw = await self.store.get(STATS_KEY)
        return QueueStats.model_validate(raw) if raw else QueueStats()

    async def _reserve_batch_ms(self, batch_ms: int) -> int:
        """First millisecond at or after batch_ms that no other enqueue has reserved or used."""
        while True:
            reserved = await self.store.set_if_absent(
                f"{BATCH_PREFIX}:{batch_ms}", True, BATCH_RESERVATION_TTL_SECONDS,
            )
            if reserved and not await self.store.keys(f"{QUEUE_PREFIX}:{batch_ms}:*"):
                return batch_ms
            batch_ms += 1

    async def _adjust_stats(self, **deltas: int) -> QueueStats:
        """Read-modify-write the counters. Every counter is floored at zero."""
        stats = await self.get_stats()
        for field, delta in deltas.items():
            setattr(stats, field, max(0, getattr(stats, field) + delta))
        await self.store.set(STATS_KEY, stats.model_dump())
        return stats

    @staticmethod
    def _coerce_post(post: Union[PostPayload, dict]) -> PostPayload:
        if isinstance(post, PostPayload):
            payload = post
        else:
            try:
                payload = PostPayload.model_validate(post)
            except ValidationError as e:
                raise QueueValidationError(f"Invalid post payload: {e.errors()[0]['msg']}") from e
        validate_identifier(payload.id, "post id")
        return payload

    @staticmethod
    def _coerce_result(result: Union[ClassificationResult, dict]) -> ClassificationResult:
        if isinstance(result, ClassificationResult):
            return result
        if not isinstance(result, dict):
            raise QueueValidationError("Result must be an object")
        try:
            return ClassificationResult.model_validate(result)
        except ValidationError as e:
            raise QueueValidationError(f"Invalid result: {e.errors()[0]['msg']}") from e

    # ------------------------------------------------------------------
    # Producer
    # ------------------------------------------------------------------

    async def enqueue(self, posts: Iterable[Union[PostPayload, dict]], keyword: str) -> EnqueueResult:
        """
        Write one pending item per post under a shared batch timestamp.

        Every payload is validated before the first write. There is no dedup
        against earlier batches: enqueueing the same post again creates a
        second, independent item.
        """
        if not isinstance(keyword, str) or not keyword.strip():
            raise QueueValidationError("Keyword is required")
        if posts is None or isinstance(posts, (str, bytes, dict)):
            raise QueueValidationError("Posts array is required")

        payloads = [self._coerce_post(p) for p in posts]
        if not payloads:
            raise QueueValidationError("Posts array must not be empty")
        seen_ids = set()
        for payload in payloads:
            if payload.id in seen_ids:
                raise QueueValidationError(f"Duplicate post id in batch: {payload.id}")
            seen_ids.add(payload.id)

        now = _utcnow()
        batch_ms = await self._reserve_batch_ms(_to_ms(now))

        items = []
        for payload in payloads:
            key = make_queue_key(batch_ms, payload.id)
            item = QueueItem(
                key=key,
                post_id=payload.id,
                title=payload.title,
                body=payload.body,
                keyword=keyword,
                status=QueueStatus.PENDING,
                created_at=now,
            )
            await self.store.set(key, item.to_store())
            items.append(item)

        await self._adjust_stats(total=len(items), pending=len(items))

        logger.info(
            "Added %d posts to filter queue", len(items),
            extra={"keyword": keyword, "count": len(items), "status": QueueStatus.PENDING.value},
        )
        return EnqueueResult(count=len(items), keys=[i.key for i in items], items=items)

    # ------------------------------------------------------------------
    # Dispatcher
    # ------------------------------------------------------------------

    async def claim_next(self, worker_id: Optional[str] = None) -> Optional[ClaimedItem]:
        """
        Lease the first pending item to worker_id. Returns None when there is no work.

        Items whose claim lock is held by another caller are skipped rather than
        waited on; that caller is about to lease them.
        """
        worker_id = validate_identifier(worker_id or DEFAULT_WORKER_ID, "worker_id")

        for key in await self._queue_keys():
            item = await self._load_item(key)
            if item is None or item.status != QueueStatus.PENDING:
                continue

            try:
                async with item_lock(self.store, key, ttl=self.lock_ttl, wait=0):
                    item = await self._load_item(key)
                    if item is None or item.status != QueueStatus.PENDING:
                        continue

                    now = _utcnow()
                    item.status = QueueStatus.LEASED
                    item.lease_holder = worker_id
                    item.lease_started_at = now
                    await self.store.set(key, item.to_store())
                    await self.store.set(
                        lease_marker_key(worker_id, item.post_id),
                        {"key": key, "started_at": now.isoformat()},
                    )
            except LockTimeoutError:
                logger.debug("Queue item %s is being claimed elsewhere, skipping", key)
                continue

            await self._adjust_stats(pending=-1, processing=1)
            logger.info(
                "Assigned queue item %s to worker %s", key, worker_id,
                extra={"queue_key": key, "worker_id": worker_id},
            )
            return ClaimedItem(key=key, item=item)

        return None

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def submit_result(
        self,
        key: str,
        result: Union[ClassificationResult, dict],
        worker_id: str,
    ) -> QueueItem:
        """
        Complete a leased item with the worker's verdict.

        Only the current lease holder may complete an item. The verdict is also
        written to a result record keyed by post id, which survives cleanup.
        """
        worker_id = validate_identifier(worker_id, "worker_id")
        verdict = self._coerce_result(result)
        if not isinstance(key, str) or not key.startswith(f"{QUEUE_PREFIX}:"):
            raise QueueItemNotFoundError(f"Queue item not found: {key}")

        async with item_lock(self.store, key, ttl=self.lock_ttl, wait=LOCK_WAIT_SECONDS):
            item = await self._load_item(key)
            if item is None:
                raise QueueItemNotFoundError(f"Queue item not found: {key}")
            if item.status != QueueStatus.LEASED:
                raise LeaseConflictError(f"Queue item {key} is {item.status.value}, not leased")
            if item.lease_holder != worker_id:
                raise LeaseConflictError(
                    f"Queue item {key} is leased by {item.lease_holder}, not {worker_id}"
                )

            now = _utcnow()
            item.status = QueueStatus.COMPLETED
            item.result = verdict
            item.completed_at = now
            item.completed_by = worker_id
            item.clear_lease()
            await self.store.set(key, item.to_store())

            record = ResultRecord(
                post_id=item.post_id,
                relevant=verdict.relevant,
                reasoning=verdict.reasoning,
                confidence=verdict.confidence,
                keyword=item.keyword,
                queue_key=key,
                worker_id=worker_id,
                completed_at=now,
            )
            await self.store.set(result_key(item.post_id), record.model_dump(mode="json"))
            await self.store.delete(lease_marker_key(worker_id, item.post_id))

        await self._adjust_stats(processing=-1, completed=1)

        logger.info(
            "Completed queue item %s with result: %s", key, verdict.relevant,
            extra={"queue_key": key, "worker_id": worker_id, "post_id": item.post_id},
        )
        return item

    # ------------------------------------------------------------------
    # Recovery sweeper
    # ------------------------------------------------------------------

    async def reset_stuck(self, timeout_ms: Optional[int] = None) -> int:
        """
        Reclaim leases held for at least timeout_ms. Returns the number reclaimed.

        A reclaimed item goes back to pending under the same key, unless it has
        now expired max_lease_resets leases, in which case it is marked failed.
        """
        if timeout_ms is None:
            timeout_ms = DEFAULT_STUCK_TIMEOUT_MS
        if timeout_ms < 0:
            raise QueueValidationError("timeout must be non-negative")

        now = _utcnow()
        reset = 0
        dead_lettered = 0

        for key in await self._queue_keys():
            item = await self._load_item(key)
            if not self._lease_expired(item, now, timeout_ms):
                continue

            try:
                async with item_lock(self.store, key, ttl=self.lock_ttl, wait=0):
                    item = await self._load_item(key)
                    if not self._lease_expired(item, now, timeout_ms):
                        continue

                    holder = item.lease_holder
                    item.clear_lease()
                    item.lease_resets += 1
                    if self.max_lease_resets and item.lease_resets >= self.max_lease_resets:
                        item.status = QueueStatus.FAILED
                        item.failed_at = now
                        dead_lettered += 1
                        logger.error(
                            "Queue item %s exhausted %d leases - marked as failed",
                            key, item.lease_resets,
                            extra={"queue_key": key, "post_id": item.post_id},
                        )
                    else:
                        item.status = QueueStatus.PENDING
                        reset += 1
                    await self.store.set(key, item.to_store())

                    if holder:
                        await self.store.delete(lease_marker_key(holder, item.post_id))
            except LockTimeoutError:
                continue

        if reset or dead_lettered:
            await self._adjust_stats(
                processing=-(reset + dead_lettered),
                pending=reset,
                failed=dead_lettered,
            )

        logger.info(
            "Reset %d stuck queue items (%d marked failed)", reset, dead_lettered,
            extra={"count": reset + dead_lettered},
        )
        return reset + dead_lettered

    @staticmethod
    def _lease_expired(item: Optional[QueueItem], now: datetime, timeout_ms: int) -> bool:
        if item is None or item.status != QueueStatus.LEASED or item.lease_started_at is None:
            return False
        return _age_ms(now, item.lease_started_at) >= timeout_ms

    async def cleanup(self, max_age_ms: Optional[int] = None) -> int:
        """
        Delete completed items whose key timestamp is at least max_age_ms old.
        Items in any other status are kept regardless of age.
        """
        if max_age_ms is None:
            max_age_ms = DEFAULT_CLEANUP_MAX_AGE_MS
        if max_age_ms < 0:
            raise QueueValidationError("maxAge must be non-negative")

        now_ms = _to_ms(_utcnow())
        cleaned = 0

        for key in await self._queue_keys():
            created_ms = parse_key_timestamp(key)
            if created_ms is None or now_ms - created_ms < max_age_ms:
                continue
            item = await self._load_item(key)
            if item is None or item.status != QueueStatus.COMPLETED:
                continue
            cleaned += await self.store.delete(key)

        logger.info("Cleaned up %d old queue items", cleaned)
        return cleaned

    async def requeue(self, key: str) -> bool:
        """
        Move a failed item back to pending with a fresh lease budget.
        Returns False when the item is already pending (nothing to do).
        """
        if not isinstance(key, str) or not key.startswith(f"{QUEUE_PREFIX}:"):
            raise QueueItemNotFoundError(f"Queue item not found: {key}")

        async with item_lock(self.store, key, ttl=self.lock_ttl, wait=LOCK_WAIT_SECONDS):
            item = await self._load_item(key)
            if item is None:
                raise QueueItemNotFoundError(f"Queue item not found: {key}")
            if item.status == QueueStatus.PENDING:
                return False
            if item.status != QueueStatus.FAILED:
                raise LeaseConflictError(f"Queue item {key} is {item.status.value}; only failed items can be requeued")

            item.status = QueueStatus.PENDING
            item.lease_resets = 0
            item.failed_at = None
            await self.store.set(key, item.to_store())

        await self._adjust_stats(failed=-1, pending=1)
        logger.info("Requeued failed item %s", key, extra={"queue_key": key})
        return True

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def status(self, sample_size: int = 5) -> dict:
        """Advisory stats, live counts from a full scan, active workers and a few recent items."""
        stats = await self.get_stats()

        buckets: dict[str, list[QueueItem]] = {s.value: [] for s in QueueStatus}
        for key in await self._queue_keys():
            item = await self._load_item(key)
            if item is not None:
                buckets[item.status.value].append(item)

        active_workers = set()
        for marker in await self.store.keys(f"{LEASE_PREFIX}:*"):
            parts = marker.split(":")
            if len(parts) >= 4:
                active_workers.add(parts[2])

        return {
            "stats": stats.model_dump(),
            **{status: len(items) for status, items in buckets.items()},
            "active_workers": sorted(active_workers),
            "recent_items": {
                status: [i.to_store() for i in reversed(items[-sample_size:])]
                for status, items in buckets.items()
            },
        }

    async def get_result(self, post_id: str) -> Optional[ResultRecord]:
        raw = await self.store.get(result_key(validate_identifier(post_id, "post id")))
        return ResultRecord.model_validate(raw) if raw else None

    async def find_item(self, post_id: str) -> Optional[QueueItem]:
        """Newest queue item for a post, if one still exists."""
        post_id = validate_identifier(post_id, "post id")
        keys = sorted(await self.store.keys(f"{QUEUE_PREFIX}:*:{post_id}"))
        for key in reversed(keys):
            item = await self._load_item(key)
            if item is not None:
                return item
        return None


def get_filter_queue() -> FilterQueue:
    """FilterQueue over the process-wide store, configured from settings."""
    from feedwatch.config import get_settings
    from feedwatch.services.storage import get_store

    settings = get_settings()
    return FilterQueue(
        get_store(),
        max_lease_resets=settings.queue_max_lease_resets,
        lock_ttl=settings.queue_claim_lock_ttl_seconds,
    )
