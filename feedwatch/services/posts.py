"""
Stored post batches - read, annotate, and clear filter state on fetched posts.
Each fetch run writes one batch under posts:{keyword}:{fetched_ms}.
"""
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from feedwatch.services.filter_queue import result_key
from feedwatch.services.storage import KeyValueStore

logger = logging.getLogger(__name__)

POSTS_PREFIX = "posts"
FILTER_FIELDS = ("filter_context", "filter_status", "queued_at", "is_relevant")


def posts_pattern(keyword: Optional[str] = None) -> str:
    return f"{POSTS_PREFIX}:{keyword}:*" if keyword else f"{POSTS_PREFIX}:*"


async def iter_batches(store: KeyValueStore, keyword: Optional[str] = None):
    """Yield (key, batch) for every stored batch that still has a posts list."""
    for key in sorted(await store.keys(posts_pattern(keyword))):
        batch = await store.get(key)
        if batch and isinstance(batch.get("posts"), list):
            yield key, batch


async def known_post_ids(store: KeyValueStore, keyword: str) -> set[str]:
    ids = set()
    async for _, batch in iter_batches(store, keyword):
        ids.update(p.get("id") for p in batch["posts"])
    return ids


async def list_posts(store: KeyValueStore, keyword: Optional[str] = None) -> list[dict]:
    """All stored posts (one keyword or all), newest first, one entry per post id."""
    all_posts = []
    async for _, batch in iter_batches(store, keyword):
        all_posts.extend(batch["posts"])

    all_posts.sort(key=lambda p: p.get("created_utc") or 0, reverse=True)

    unique = []
    seen = set()
    for post in all_posts:
        if post.get("id") in seen:
            continue
        seen.add(post.get("id"))
        unique.append(post)
    return unique


async def mark_queued(
    store: KeyValueStore,
    keyword: str,
    post_ids: Iterable[str],
    context: str,
) -> int:
    """Annotate stored posts as queued for filtering under `context`. Returns posts marked."""
    pending = set(post_ids)
    queued_at = datetime.now(timezone.utc).isoformat()
    marked = 0

    async for key, batch in iter_batches(store, keyword):
        if not pending:
            break
        modified = False
        for post in batch["posts"]:
            if post.get("id") in pending:
                post.update(filter_context=context, filter_status="queued", queued_at=queued_at)
                pending.discard(post["id"])
                modified = True
                marked += 1
        if modified:
            await store.set(key, batch)

    return marked


async def clear_filter(store: KeyValueStore, keyword: str, post_ids: Iterable[str]) -> int:
    """Strip filter annotations from stored posts and drop their result records."""
    ids = set(post_ids)
    cleared = 0

    async for key, batch in iter_batches(store, keyword):
        modified = False
        for post in batch["posts"]:
            if post.get("id") in ids and any(f in post for f in FILTER_FIELDS):
                for field in FILTER_FIELDS:
                    post.pop(field, None)
                modified = True
                cleared += 1
        if modified:
            await store.set(key, batch)

    for post_id in ids:
        await store.delete(result_key(post_id))

    logger.info("Cleared filter state on %d posts", cleared, extra={"keyword": keyword})
    return cleared
