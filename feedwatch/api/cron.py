"""
Scheduled jobs triggered by an external cron.

- GET /api/cron/fetch-posts - fetch new Reddit posts for every configured keyword
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from feedwatch.api.deps import require_cron_secret
from feedwatch.config import get_settings
from feedwatch.services.reddit import RedditClient, fetch_all_keywords
from feedwatch.services.storage import KeyValueStore, get_store

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/cron",
    tags=["cron"],
    dependencies=[Depends(require_cron_secret)],
)


@router.get("/fetch-posts")
async def fetch_posts(store: KeyValueStore = Depends(get_store)):
    settings = get_settings()
    logger.info("Cron job started: fetching posts for all keywords")

    async with RedditClient.from_settings(settings) as client:
        summary = await fetch_all_keywords(store, client, settings.default_keyword)

    return {
        "success": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **summary,
    }
