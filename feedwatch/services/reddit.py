"""
Reddit search client and fetcher.

Searches Reddit's public JSON endpoint per keyword, skips posts already stored
for that keyword, and saves the new ones as a single batch. Requests go through
a proxy when credentials are configured (Reddit blocks most datacenter IPs).
Transient failures are retried with exponential backoff; 429 honours Retry-After.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import httpx

from feedwatch.services.keywords import ensure_keywords
from feedwatch.services.posts import POSTS_PREFIX, known_post_ids
from feedwatch.services.storage import KeyValueStore

logger = logging.getLogger(__name__)


class RedditApiError(Exception):
    pass


class RedditAccessDeniedError(RedditApiError):
    """403 from Reddit - usually means the proxy is missing or blocked."""
    pass


class RedditRateLimitError(RedditApiError):
    pass


@dataclass
class FetchResult:
    keyword: str
    new_posts: int
    total_found: int
    key: Optional[str]
    posts: list


class RedditClient:
    def __init__(
        self,
        search_url: str,
        user_agent: str,
        timeframe: str = "hour",
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        proxy_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.search_url = search_url
        self.timeframe = timeframe
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._client = http_client or httpx.AsyncClient(
            timeout=timeout,
            proxy=proxy_url,
            headers={"User-Agent": user_agent, "Accept": "application/json"},
        )

    @classmethod
    def from_settings(cls, settings, http_client: Optional[httpx.AsyncClient] = None) -> "RedditClient":
        if settings.proxy_url:
            logger.debug("Using proxy for Reddit requests: %s", settings.proxy_host)
        return cls(
            search_url=settings.reddit_search_url,
            user_agent=settings.reddit_user_agent,
            timeframe=settings.reddit_timeframe,
            timeout=settings.reddit_timeout_seconds,
            max_retries=settings.reddit_max_retries,
            retry_delay=settings.reddit_retry_delay_seconds,
            proxy_url=settings.proxy_url,
            http_client=http_client,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    async def search(self, keyword: str) -> dict:
        """Search posts for keyword. Returns Reddit's listing JSON."""
        params = {"q": keyword, "type": "posts", "t": self.timeframe}
        data = await self._request(params)
        if isinstance(data, dict) and data.get("error"):
            raise RedditApiError(f"Reddit API error: {data['error']}")
        return data

    async def _request(self, params: dict) -> dict:
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self._client.get(self.search_url, params=params)
            except httpx.HTTPError as e:
                last_error = e
                logger.warning(
                    "Reddit request failed (attempt %d/%d): %s",
                    attempt, self.max_retries, str(e),
                )
            else:
                if response.status_code == 403:
                    raise RedditAccessDeniedError("Reddit API access denied. Proxy may be required.")

                if response.status_code == 429:
                    last_error = RedditRateLimitError(
                        "Reddit API rate limit exceeded. Please wait before retrying."
                    )
                    if attempt < self.max_retries:
                        delay = self._retry_after(response) or self.retry_delay * attempt
                        logger.warning("Rate limited by Reddit, retrying in %.1fs", delay)
                        await asyncio.sleep(delay)
                        continue
                    raise last_error

                if response.is_success:
                    return response.json()

                last_error = RedditApiError(f"Reddit API error: {response.status_code}")
                logger.warning(
                    "Reddit returned %d (attempt %d/%d)",
                    response.status_code, attempt, self.max_retries,
                )

            if attempt < self.max_retries:
                # Exponential backoff: 1s, 2s, 4s...
                await asyncio.sleep(self.retry_delay * (2 ** (attempt - 1)))

        raise RedditApiError(
            f"Reddit request failed after {self.max_retries} attempts: {last_error}"
        )

    @staticmethod
    def _retry_after(response: httpx.Response) -> Optional[float]:
        value = response.headers.get("retry-after")
        try:
            return float(value) if value else None
        except ValueError:
            return None


def _to_post(child: dict, keyword: str) -> dict:
    data = child.get("data", {})
    created_utc = data.get("created_utc") or 0
    return {
        "id": data.get("id"),
        "title": data.get("title", ""),
        "author": data.get("author"),
        "url": f"https://www.reddit.com{data.get('permalink', '')}",
        "selftext": data.get("selftext") or "",
        "created_utc": created_utc,
        "created": datetime.fromtimestamp(created_utc, tz=timezone.utc).isoformat(),
        "score": data.get("score", 0),
        "num_comments": data.get("num_comments", 0),
        "subreddit": data.get("subreddit_name_prefixed") or data.get("subreddit"),
        "keyword": keyword,
    }


async def fetch_new_posts(store: KeyValueStore, keyword: str, client: RedditClient) -> FetchResult:
    """Search Reddit for keyword and store posts not seen before under a new batch key."""
    existing = await known_post_ids(store, keyword)
    logger.debug("Checking %d existing posts", len(existing), extra={"keyword": keyword})

    try:
        listing = await client.search(keyword)
    except RedditAccessDeniedError:
        logger.warning("Reddit access denied, returning empty results", extra={"keyword": keyword})
        return FetchResult(keyword=keyword, new_posts=0, total_found=0, key=None, posts=[])

    children = (listing.get("data") or {}).get("children") or []
    new_posts = [
        _to_post(child, keyword)
        for child in children
        if child.get("data", {}).get("id") and child["data"]["id"] not in existing
    ]

    key = None
    if new_posts:
        key = f"{POSTS_PREFIX}:{keyword}:{int(time.time() * 1000)}"
        await store.set(key, {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "count": len(new_posts),
            "posts": new_posts,
        })
        logger.info("Saving %d new posts to %s", len(new_posts), key, extra={"keyword": keyword})
    else:
        logger.debug("No new posts found", extra={"keyword": keyword})

    return FetchResult(
        keyword=keyword,
        new_posts=len(new_posts),
        total_found=len(children),
        key=key,
        posts=new_posts,
    )


async def fetch_all_keywords(store: KeyValueStore, client: RedditClient, default_keyword: str) -> dict:
    """Fetch every configured keyword. A failing keyword is reported, not raised."""
    keywords = await ensure_keywords(store, default_keyword)
    results = {}
    total_new = 0

    for keyword in keywords:
        try:
            fetched = await fetch_new_posts(store, keyword, client)
            results[keyword] = {"success": True, "count": fetched.new_posts, "posts": fetched.posts}
            total_new += fetched.new_posts
        except Exception as e:
            logger.error("Error fetching posts: %s", str(e), extra={"keyword": keyword})
            results[keyword] = {"success": False, "error": str(e)}

    logger.info("Fetch run completed. Total new posts: %d", total_new)
    return {"keywords": keywords, "total_new_posts": total_new, "results": results}
