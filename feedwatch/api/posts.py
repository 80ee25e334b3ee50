"""
Posts API - read stored Reddit posts and clear their filter annotations.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from feedwatch.schemas.api_requests import ClearFilterRequest
from feedwatch.services.posts import clear_filter, list_posts
from feedwatch.services.storage import KeyValueStore, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["posts"])


@router.get("/posts")
async def get_posts(
    keyword: Optional[str] = Query(None),
    store: KeyValueStore = Depends(get_store),
):
    """Stored posts for one keyword (or all), newest first, deduplicated by id."""
    posts = await list_posts(store, keyword)
    return {"count": len(posts), "keyword": keyword or "all", "posts": posts}


@router.post("/clear-filter")
async def clear_post_filter(
    payload: ClearFilterRequest,
    store: KeyValueStore = Depends(get_store),
):
    cleared = await clear_filter(store, payload.keyword, payload.post_ids)
    return {"cleared_count": cleared, "keyword": payload.keyword}
