"""
Key-value storage adapter - uniform async interface over Redis or local JSON files.

Every other component goes through a KeyValueStore; nothing talks to Redis or the
data directory directly. Values are JSON-serializable structures, not raw bytes.
Missing keys return None / empty lists. Backend errors propagate to the caller.

The process-wide handle is built lazily by get_store(). Components receive the
store explicitly at construction time; set_store()/reset_store() exist so tests
and the app lifespan can swap the handle.
"""
import asyncio
import fnmatch
import json
import logging
import os
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"

# Atomic compare-and-delete: only remove the key if it still holds our value
COMPARE_AND_DELETE_LUA = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
else
    return 0
end
"""


class KeyValueStore(ABC):
    """Abstract key-value store. Patterns use glob syntax (`prefix:*`, `prefix:*:suffix`)."""

    backend = "abstract"

    async def init(self) -> None:
        """Prepare the backing medium. Safe to call repeatedly."""

    async def close(self) -> None:
        """Release connections held by the store."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> bool:
        ...

    @abstractmethod
    async def delete(self, key: str) -> int:
        """Remove a key. Returns 1 if it existed, 0 otherwise."""
        ...

    @abstractmethod
    async def keys(self, pattern: str) -> list[str]:
        ...

    @abstractmethod
    async def set_if_absent(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """
        Atomically create a key that expires after ttl_seconds.
        Returns True if this call created it, False if it already existed.
        """
        ...

    @abstractmethod
    async def delete_if_equals(self, key: str, value: Any) -> int:
        """Atomically delete a key only while it still holds `value`."""
        ...

    @abstractmethod
    async def ping(self) -> bool:
        ...


class RedisStore(KeyValueStore):
    """Redis-backed store. Values are stored as JSON strings."""

    backend = "redis"

    def __init__(self, client):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        import redis.asyncio as aioredis

        return cls(aioredis.from_url(url or DEFAULT_REDIS_URL, decode_responses=True))

    async def close(self) -> None:
        await self._client.aclose()

    async def get(self, key: str) -> Optional[Any]:
        raw = await self._client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> bool:
        await self._client.set(key, json.dumps(value, default=str))
        return True

    async def delete(self, key: str) -> int:
        return int(await self._client.delete(key))

    async def keys(self, pattern: str) -> list[str]:
        found = []
        async for key in self._client.scan_iter(match=pattern, count=500):
            found.append(key.decode() if isinstance(key, bytes) else str(key))
        return found

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: int) -> bool:
        was_set = await self._client.set(key, json.dumps(value), nx=True, ex=ttl_seconds)
        return bool(was_set)

    async def delete_if_equals(self, key: str, value: Any) -> int:
        return int(await self._client.eval(COMPARE_AND_DELETE_LUA, 1, key, json.dumps(value)))

    async def ping(self) -> bool:
        return bool(await self._client.ping())


class LocalStore(KeyValueStore):
    """
    One JSON file per key under data_dir. Intended for development and
    single-host deployments without Redis.

    Writes go through a temp file + os.replace so readers never see a torn file.
    set_if_absent relies on exclusive file creation, which is atomic across
    processes on the same filesystem. Reclaiming an expired entry is only
    serialized within this process.
    """

    backend = "local"

    def __init__(self, data_dir):
        self.data_dir = Path(data_dir)
        self._lock = asyncio.Lock()

    async def init(self) -> None:
        await asyncio.to_thread(self.data_dir.mkdir, parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.data_dir / f"{quote(key, safe='')}.json"

    def _read(self, path: Path) -> Optional[Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None

    def _write(self, path: Path, value: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(value, f, indent=2, default=str)
        os.replace(tmp, path)

    def _unlink(self, path: Path) -> int:
        try:
            path.unlink()
            return 1
        except FileNotFoundError:
            return 0

    @staticmethod
    def _is_expired(data: Any) -> bool:
        return isinstance(data, dict) and "__ttl__" in data and data["__ttl__"] <= time.time()

    async def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        data = await asyncio.to_thread(self._read, path)
        if isinstance(data, dict) and "__ttl__" in data:
            if self._is_expired(data):
                await asyncio.to_thread(self._unlink, path)
                return None
            return data["value"]
        return data

    async def set(self, key: str, value: Any) -> bool:
        await asyncio.to_thread(self._write, self._path(key), value)
        return True

    async def delete(self, key: str) -> int:
        return await asyncio.to_thread(self._unlink, self._path(key))

    def _list_keys(self) -> list[str]:
        try:
            names = os.listdir(self.data_dir)
        except FileNotFoundError:
            return []
        return [
            unquote(name[: -len(".json")])
            for name in names
            if name.endswith(".json") and not name.startswith(".")
        ]

    async def keys(self, pattern: str) -> list[str]:
        keys = await asyncio.to_thread(self._list_keys)
        return [k for k in keys if fnmatch.fnmatchcase(k, pattern)]

    def _create_exclusive(self, path: Path, entry: dict) -> bool:
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(path, "x", encoding="utf-8") as f:
                json.dump(entry, f)
            return True
        except FileExistsError:
            return False

    async def set_if_absent(self, key: str, value: Any, ttl_seconds: int) -> bool:
        path = self._path(key)
        entry = {"__ttl__": time.time() + ttl_seconds, "value": value}
        async with self._lock:
            if await asyncio.to_thread(self._create_exclusive, path, entry):
                return True
            current = await asyncio.to_thread(self._read, path)
            if current is None or self._is_expired(current):
                await asyncio.to_thread(self._write, path, entry)
                return True
            return False

    async def delete_if_equals(self, key: str, value: Any) -> int:
        async with self._lock:
            current = await self.get(key)
            if current is None or current != value:
                return 0
            return await self.delete(key)

    async def ping(self) -> bool:
        await self.init()
        return True


def create_store(settings) -> KeyValueStore:
    """Build the store selected by settings (Redis when configured, local files otherwise)."""
    if settings.use_redis:
        logger.info("Using Redis storage")
        return RedisStore.from_url(settings.redis_url)
    logger.info("Using local storage at %s", settings.data_dir)
    return LocalStore(settings.data_dir)


_store: Optional[KeyValueStore] = None


def get_store() -> KeyValueStore:
    """Get or create the process-wide store handle."""
    global _store
    if _store is None:
        from feedwatch.config import get_settings
        _store = create_store(get_settings())
    return _store


def set_store(store: Optional[KeyValueStore]) -> None:
    """Install a specific store as the process-wide handle."""
    global _store
    _store = store


def reset_store() -> None:
    """Drop the process-wide handle so the next get_store() rebuilds it."""
    set_store(None)
