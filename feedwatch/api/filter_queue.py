"""
Filter queue API - HTTP wrapper over FilterQueue.

- POST /api/filter-queue/add          - enqueue posts for a keyword
- GET  /api/filter-queue/next         - lease the next pending item (204 when empty)
- POST /api/filter-queue/result       - complete a leased item
- GET  /api/filter-queue/status       - stats, live counts, active workers
- POST /api/filter-queue/cleanup      - prune old completed items
- POST /api/filter-queue/reset-stuck  - reclaim expired leases
- POST /api/filter-queue/requeue      - send a failed item back to pending

Queue exceptions are mapped to status codes by the handlers in main.py.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from feedwatch.api.deps import require_worker_token
from feedwatch.config import get_settings
from feedwatch.schemas.api_requests import (
    CleanupRequest,
    EnqueueRequest,
    RequeueRequest,
    ResetStuckRequest,
    SubmitResultRequest,
)
from feedwatch.services.filter_queue import FilterQueue, get_filter_queue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/filter-queue", tags=["filter-queue"])


@router.post("/add")
async def add_to_queue(
    payload: EnqueueRequest,
    queue: FilterQueue = Depends(get_filter_queue),
):
    result = await queue.enqueue(payload.posts, payload.keyword)
    return {
        "message": "Posts added to queue",
        "count": result.count,
        "items": [item.to_store() for item in result.items],
    }


@router.get("/next", dependencies=[Depends(require_worker_token)])
async def next_item(
    client_id: Optional[str] = Query(None),
    queue: FilterQueue = Depends(get_filter_queue),
):
    """Lease the next pending item to client_id. 204 with no body when there is no work."""
    claimed = await queue.claim_next(client_id)
    if claimed is None:
        return Response(status_code=204)
    return {"key": claimed.key, "item": claimed.item.to_store()}


@router.post("/result", dependencies=[Depends(require_worker_token)])
async def submit_result(
    payload: SubmitResultRequest,
    queue: FilterQueue = Depends(get_filter_queue),
):
    item = await queue.submit_result(payload.key, payload.result, payload.client_id)
    return {"message": "Result saved", "item": item.to_store()}


@router.get("/status")
async def queue_status(queue: FilterQueue = Depends(get_filter_queue)):
    return await queue.status()


@router.post("/cleanup")
async def cleanup_queue(
    payload: Optional[CleanupRequest] = None,
    queue: FilterQueue = Depends(get_filter_queue),
):
    max_age = payload.max_age if payload else None
    if max_age is None:
        max_age = get_settings().queue_cleanup_max_age_ms
    cleaned = await queue.cleanup(max_age)
    return {"message": f"Cleaned up {cleaned} items", "cleaned": cleaned}


@router.post("/reset-stuck")
async def reset_stuck_items(
    payload: Optional[ResetStuckRequest] = None,
    queue: FilterQueue = Depends(get_filter_queue),
):
    timeout = payload.timeout if payload else None
    if timeout is None:
        timeout = get_settings().queue_stuck_timeout_ms
    reset = await queue.reset_stuck(timeout)
    return {"message": f"Reset {reset} stuck items", "reset": reset}


@router.post("/requeue")
async def requeue_item(
    payload: RequeueRequest,
    queue: FilterQueue = Depends(get_filter_queue),
):
    requeued = await queue.requeue(payload.key)
    return {"requeued": requeued}
