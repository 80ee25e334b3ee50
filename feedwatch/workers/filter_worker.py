"""
Filter worker - standalone process that drains the filter queue over HTTP.

Loop: claim next item -> classify with LM Studio -> submit verdict -> short pause.
No work: sleep the poll interval. Errors are counted; after
worker_max_consecutive_errors in a row the worker backs off, re-checks the
classifier and carries on. It never exits on its own - run it under a supervisor.

A classifier transport failure leaves the item leased; the queue sweeper
reclaims it once the lease times out. An unparseable model reply is still
submitted, as a not-relevant zero-confidence verdict.

Usage:
    feedwatch-worker
    FEED_API_URL=http://feed:3000 WORKER_ID=gpu-1 feedwatch-worker
"""
import asyncio
import logging
import signal
import time
from typing import Optional

import httpx

from feedwatch.config import get_settings
from feedwatch.models.queue import ClaimedItem, ClassificationResult
from feedwatch.services.classifier import RelevanceClassifier
from feedwatch.utils.logging import configure_structured_logging, set_correlation_id

logger = logging.getLogger(__name__)

ITEM_PAUSE_SECONDS = 0.1
REQUEST_TIMEOUT_SECONDS = 30


class FeedApiError(Exception):
    pass


class FeedApiClient:
    """Thin client for the /api/filter-queue endpoints a worker needs."""

    def __init__(
        self,
        base_url: str,
        worker_id: str,
        auth_token: str = "",
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.worker_id = worker_id
        headers = {"Authorization": f"Bearer {auth_token}"} if auth_token else {}
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=REQUEST_TIMEOUT_SECONDS,
            headers=headers,
        )

    async def fetch_next(self) -> Optional[ClaimedItem]:
        """Lease the next queue item. None when the queue has no work (204)."""
        response = await self._client.get(
            "/api/filter-queue/next",
            params={"client_id": self.worker_id},
        )
        if response.status_code == 204:
            return None
        if not response.is_success:
            raise FeedApiError(f"Failed to fetch next item: {response.status_code}")
        return ClaimedItem.model_validate(response.json())

    async def submit_result(self, key: str, result: ClassificationResult) -> dict:
        response = await self._client.post(
            "/api/filter-queue/result",
            json={
                "key": key,
                "result": result.model_dump(),
                "client_id": self.worker_id,
            },
        )
        if not response.is_success:
            raise FeedApiError(f"Failed to submit result: {response.status_code}")
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()


class FilterWorker:
    def __init__(
        self,
        api: FeedApiClient,
        classifier: RelevanceClassifier,
        poll_interval: float = 5.0,
        max_consecutive_errors: int = 5,
        error_backoff: float = 30.0,
    ):
        self.api = api
        self.classifier = classifier
        self.poll_interval = poll_interval
        self.max_consecutive_errors = max_consecutive_errors
        self.error_backoff = error_backoff
        self.consecutive_errors = 0
        self._stop = asyncio.Event()

    @property
    def worker_id(self) -> str:
        return self.api.worker_id

    def stop(self) -> None:
        if not self._stop.is_set():
            logger.info("Shutting down filter worker...", extra={"worker_id": self.worker_id})
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early if stop() is called."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def process_one(self) -> bool:
        """Claim, classify and submit one item. Returns False when there was no work."""
        claimed = await self.api.fetch_next()
        if claimed is None:
            return False

        item = claimed.item
        logger.info(
            "Processing item: %s (%s)", claimed.key, item.title[:80],
            extra={"queue_key": claimed.key, "post_id": item.post_id, "worker_id": self.worker_id},
        )

        result = await self.classifier.classify(item.keyword, item.title, item.body)
        logger.info(
            "Result: %s (confidence: %.2f)",
            "RELEVANT" if result.relevant else "NOT RELEVANT", result.confidence,
            extra={"queue_key": claimed.key, "post_id": item.post_id},
        )

        await self.api.submit_result(claimed.key, result)
        return True

    async def run_iteration(self) -> None:
        try:
            worked = await self.process_one()
        except Exception as e:
            self.consecutive_errors += 1
            logger.error(
                "Error in worker loop (%d/%d): %s",
                self.consecutive_errors, self.max_consecutive_errors, str(e),
                extra={"worker_id": self.worker_id},
            )
            if self.consecutive_errors >= self.max_consecutive_errors:
                logger.error(
                    "Too many consecutive errors. Pausing for %.0f seconds...",
                    self.error_backoff,
                )
                await self._sleep(self.error_backoff)
                self.consecutive_errors = 0
                await self.classifier.check_health()
            else:
                await self._sleep(self.poll_interval)
            return

        self.consecutive_errors = 0
        if worked:
            await self._sleep(ITEM_PAUSE_SECONDS)
        else:
            logger.debug("No items in queue, waiting...")
            await self._sleep(self.poll_interval)

    async def run(self) -> None:
        logger.info("Filter worker %s starting", self.worker_id)
        if not await self.classifier.check_health():
            logger.warning(
                "LM Studio is not responding. Worker will retry but may fail to process items."
            )

        while not self.stopped:
            await self.run_iteration()

        logger.info("Filter worker %s stopped", self.worker_id)


def _install_signal_handlers(worker: FilterWorker) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, worker.stop)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            signal.signal(sig, lambda *_: worker.stop())


async def run_worker() -> None:
    settings = get_settings()
    worker_id = settings.worker_id or f"worker-{int(time.time() * 1000)}"
    set_correlation_id(worker_id)

    api = FeedApiClient(settings.feed_api_url, worker_id, settings.worker_auth_token)
    classifier = RelevanceClassifier.from_settings(settings)
    worker = FilterWorker(
        api,
        classifier,
        poll_interval=settings.worker_poll_interval_seconds,
        max_consecutive_errors=settings.worker_max_consecutive_errors,
        error_backoff=settings.worker_error_backoff_seconds,
    )
    _install_signal_handlers(worker)

    logger.info(
        "Feed API: %s, LM Studio: %s, poll interval: %.1fs",
        settings.feed_api_url, settings.lm_studio_url, settings.worker_poll_interval_seconds,
        extra={"worker_id": worker_id},
    )
    try:
        await worker.run()
    finally:
        await api.aclose()
        await classifier.aclose()


def main() -> None:
    configure_structured_logging(get_settings().log_level, component="filter-worker")
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
