"""
Queue stored posts for relevance filtering and watch the queue drain.

Usage:
    python scripts/queue_posts.py --keyword slack --context "outage reports"
    python scripts/queue_posts.py --keyword slack --context "pricing" --limit 5
    python scripts/queue_posts.py --status
"""
import argparse
import asyncio
import logging

import httpx

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:3000"


async def queue_posts(keyword: str, context: str, limit: int):
    """Pull stored posts for keyword and queue them with a filter context."""
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.get(f"{BASE_URL}/api/posts", params={"keyword": keyword})
        posts = resp.json().get("posts", [])[:limit]
        if not posts:
            logger.warning("No stored posts for keyword %s - run the fetch cron first", keyword)
            return None

        resp = await client.post(
            f"{BASE_URL}/api/filter-context",
            json={"keyword": keyword, "context": context, "posts": posts},
        )
        logger.info("Filter context response: %s %s", resp.status_code, resp.json().get("message"))
        return resp


async def show_status():
    async with httpx.AsyncClient(timeout=30) as client:
        resp = await client.get(f"{BASE_URL}/api/filter-queue/status")
        data = resp.json()
        logger.info(
            "Queue: pending=%d leased=%d completed=%d failed=%d workers=%s",
            data["pending"], data["leased"], data["completed"], data["failed"],
            ", ".join(data["active_workers"]) or "none",
        )
        return data


async def main():
    parser = argparse.ArgumentParser(description="Queue posts for relevance filtering")
    parser.add_argument("--keyword", default="slack")
    parser.add_argument("--context", default="")
    parser.add_argument("--limit", type=int, default=20)
    parser.add_argument("--status", action="store_true", help="Only print queue status")
    args = parser.parse_args()

    if not args.status:
        if not args.context:
            parser.error("--context is required when queueing posts")
        await queue_posts(args.keyword, args.context, args.limit)
    await show_status()


if __name__ == "__main__":
    asyncio.run(main())
