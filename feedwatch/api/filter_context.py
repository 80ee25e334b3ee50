"""
Filter-context API - the dashboard's front door to the filter queue.

POST queues posts for classification against "{keyword} (context: {context})"
and marks them queued in post storage. GET reports where a post stands.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from feedwatch.schemas.api_requests import FilterContextRequest
from feedwatch.services.filter_queue import FilterQueue, get_filter_queue
from feedwatch.services.posts import mark_queued

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/filter-context", tags=["filter-context"])


def context_label(keyword: str, context: str) -> str:
    return f"{keyword} (context: {context})"


@router.post("")
async def queue_with_context(
    payload: FilterContextRequest,
    queue: FilterQueue = Depends(get_filter_queue),
):
    if not payload.keyword or not payload.context:
        raise HTTPException(status_code=400, detail="Keyword and context are required")

    posts = [
        {"id": p.get("id"), "title": p.get("title") or "", "body": p.get("selftext") or p.get("body") or ""}
        for p in payload.posts
    ]
    result = await queue.enqueue(posts, context_label(payload.keyword, payload.context))
    await mark_queued(queue.store, payload.keyword, [p["id"] for p in posts], payload.context)

    logger.info(
        "Queued %d posts for filtering with context: %s", result.count, payload.context,
        extra={"keyword": payload.keyword},
    )
    return {
        "message": "Posts queued for filtering",
        "count": result.count,
        "queue_items": [item.to_store() for item in result.items],
    }


@router.get("")
async def filter_status(
    post_id: Optional[str] = Query(None),
    queue: FilterQueue = Depends(get_filter_queue),
):
    """Verdict for one post, or the queue stats when no post_id is given."""
    if not post_id:
        stats = await queue.get_stats()
        return {"stats": stats.model_dump()}

    record = await queue.get_result(post_id)
    if record is not None:
        return {
            "post_id": post_id,
            "status": "completed",
            "relevant": record.relevant,
            "reasoning": record.reasoning,
            "confidence": record.confidence,
            "completed_at": record.completed_at.isoformat(),
        }

    item = await queue.find_item(post_id)
    if item is not None:
        return {
            "post_id": post_id,
            "status": item.status.value,
            "queued_at": item.created_at.isoformat(),
        }

    return {"post_id": post_id, "status": "not_queued"}
