"""
Keyword registry - the list of search terms the Reddit fetcher polls.
Stored as a single lower-cased list under config:keywords.
"""
import logging

from feedwatch.services.storage import KeyValueStore

logger = logging.getLogger(__name__)

KEYWORDS_KEY = "config:keywords"


class KeywordExistsError(Exception):
    pass


class KeywordNotFoundError(Exception):
    pass


def _normalize(keyword) -> str:
    if not isinstance(keyword, str) or not keyword.strip():
        raise ValueError("Invalid keyword")
    return keyword.strip().lower()


def _keyword_name(entry) -> str:
    # Older lists stored {"keyword": ...} objects instead of plain strings
    return entry.get("keyword", "") if isinstance(entry, dict) else str(entry)


async def list_keywords(store: KeyValueStore) -> list[str]:
    stored = await store.get(KEYWORDS_KEY) or []
    return [_keyword_name(k) for k in stored if _keyword_name(k)]


async def add_keyword(store: KeyValueStore, keyword: str) -> list[str]:
    keyword = _normalize(keyword)
    keywords = await list_keywords(store)
    if keyword in keywords:
        raise KeywordExistsError(f"Keyword already exists: {keyword}")
    keywords.append(keyword)
    await store.set(KEYWORDS_KEY, keywords)
    logger.info("Keyword added", extra={"keyword": keyword})
    return keywords


async def remove_keyword(store: KeyValueStore, keyword: str) -> list[str]:
    keyword = _normalize(keyword)
    keywords = await list_keywords(store)
    if keyword not in keywords:
        raise KeywordNotFoundError(f"Keyword not found: {keyword}")
    remaining = [k for k in keywords if k != keyword]
    await store.set(KEYWORDS_KEY, remaining)
    logger.info("Keyword removed", extra={"keyword": keyword})
    return remaining


async def ensure_keywords(store: KeyValueStore, default: str) -> list[str]:
    """Return the configured keywords, seeding `default` when none exist."""
    keywords = await list_keywords(store)
    if not keywords:
        logger.info("No keywords configured, seeding default: %s", default)
        keywords = [_normalize(default)]
        await store.set(KEYWORDS_KEY, keywords)
    return keywords
