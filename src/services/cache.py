"""Interpretation cache: Redis when reachable, process-local LRU otherwise.

Interpreted eligibility clauses are expensive to produce (an LLM round
trip) and stable for a given scheme version, so they are cached under
``<scheme_id>:v<version>:<digest>`` keys.  Invalidation is by key prefix,
which drops every version of a scheme at once.

If Redis is down or starts failing, the manager switches to the in-memory
tier for the rest of the process lifetime; matching never waits on a
broken cache.
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import time
from collections import OrderedDict
from typing import Any, Protocol, runtime_checkable

import orjson
import structlog

logger = structlog.get_logger(__name__)

_SCAN_BATCH = 500


@runtime_checkable
class CacheBackend(Protocol):
    """Byte-level key/value store used by :class:`CacheManager`."""

    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_prefix(self, prefix: str) -> int: ...


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class RedisCacheBackend:
    """Shared-pool ``redis.asyncio`` client; prefix deletes use SCAN + UNLINK."""

    __slots__ = ("_client",)

    def __init__(self, url: str, *, max_connections: int = 20) -> None:
        import redis.asyncio as aioredis

        self._client = aioredis.Redis.from_url(
            url, max_connections=max_connections, decode_responses=False
        )

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except Exception:
            logger.debug("cache.redis_ping_failed", exc_info=True)
            return False

    async def get(self, key: str) -> bytes | None:
        return await self._client.get(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        await self._client.set(key, value, ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._client.unlink(key)

    async def delete_prefix(self, prefix: str) -> int:
        batch: list[bytes] = []
        removed = 0
        async for key in self._client.scan_iter(match=f"{prefix}*", count=_SCAN_BATCH):
            batch.append(key)
            if len(batch) >= _SCAN_BATCH:
                removed += await self._client.unlink(*batch)
                batch.clear()
        if batch:
            removed += await self._client.unlink(*batch)
        return removed

    async def close(self) -> None:
        await self._client.aclose()


class InMemoryCacheBackend:
    """Bounded LRU keyed by string; entries are ``(expires_at, payload)``.

    Expiry is checked lazily on read.  All access goes through one
    :class:`asyncio.Lock` so concurrent interpretations of the same
    clause see a consistent view.
    """

    __slots__ = ("_entries", "_lock", "_max_size")

    def __init__(self, *, max_size: int = 10_000) -> None:
        self._max_size = max_size
        self._entries: OrderedDict[str, tuple[float | None, bytes]] = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> bytes | None:
        async with self._lock:
            found = self._entries.get(key)
            if found is None:
                return None
            expires_at, payload = found
            if expires_at is not None and time.monotonic() > expires_at:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return payload

    async def set(self, key: str, value: bytes, ttl_seconds: int | None = None) -> None:
        expires_at = None if ttl_seconds is None else time.monotonic() + ttl_seconds
        async with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            elif len(self._entries) >= self._max_size:
                self._entries.popitem(last=False)
            self._entries[key] = (expires_at, value)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def delete_prefix(self, prefix: str) -> int:
        async with self._lock:
            matching = [key for key in self._entries if key.startswith(prefix)]
            for key in matching:
                del self._entries[key]
            return len(matching)

    @property
    def size(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# CacheManager
# ---------------------------------------------------------------------------


def stable_hash(text: str) -> str:
    """First 16 hex chars of the SHA-256 of *text*."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


class CacheManager:
    """JSON-valued cache with a key namespace and one-way Redis fallback.

    Values are encoded with *orjson*, so plain dicts and lists (for
    example ``model_dump(mode="json")`` output) round-trip unchanged.
    Undecodable entries read as misses.

    Parameters
    ----------
    redis_url:
        Redis connection string, or *None* for the in-memory tier only.
    namespace:
        Prefix added to every key, e.g. ``"yojana:interpretation:"``.
    inmemory_max_size:
        Capacity of the in-memory tier.
    """

    __slots__ = (
        "_fallback",
        "_namespace",
        "_redis",
        "_redis_available",
        "_redis_checked",
        "hits",
        "misses",
    )

    def __init__(
        self,
        *,
        redis_url: str | None = None,
        namespace: str = "",
        inmemory_max_size: int = 10_000,
    ) -> None:
        self._namespace = namespace
        self._fallback = InMemoryCacheBackend(max_size=inmemory_max_size)
        self._redis: RedisCacheBackend | None = None
        self._redis_available = False
        self._redis_checked = False
        self.hits = 0
        self.misses = 0

        if redis_url:
            try:
                self._redis = RedisCacheBackend(redis_url)
            except Exception:
                logger.warning("cache.redis_init_failed", exc_info=True)

    @classmethod
    def for_namespace(
        cls,
        namespace: str,
        *,
        redis_url: str | None = None,
        inmemory_max_size: int = 10_000,
    ) -> CacheManager:
        return cls(redis_url=redis_url, namespace=namespace, inmemory_max_size=inmemory_max_size)

    def _make_key(self, key: str) -> str:
        return self._namespace + key

    async def _backend(self) -> CacheBackend:
        if self._redis is not None and not self._redis_checked:
            self._redis_checked = True
            self._redis_available = await self._redis.ping()
            logger.info(
                "cache.backend_selected",
                namespace=self._namespace,
                backend=self.backend_name,
            )
        if self._redis_available and self._redis is not None:
            return self._redis
        return self._fallback

    async def _call(self, method: str, key: str, *args: Any, **kwargs: Any) -> Any:
        backend = await self._backend()
        if backend is self._redis:
            try:
                return await getattr(backend, method)(key, *args, **kwargs)
            except Exception:
                logger.warning("cache.redis_failed_switching_to_memory", method=method, exc_info=True)
                self._redis_available = False
        return await getattr(self._fallback, method)(key, *args, **kwargs)

    # -- Public API ------------------------------------------------------------

    async def get(self, key: str, default: Any = None) -> Any:
        raw = await self._call("get", self._make_key(key))
        if raw is not None:
            try:
                value = orjson.loads(raw)
            except orjson.JSONDecodeError:
                logger.warning("cache.corrupt_entry", key=key)
            else:
                self.hits += 1
                return value
        self.misses += 1
        return default

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        await self._call("set", self._make_key(key), orjson.dumps(value), ttl_seconds=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._call("delete", self._make_key(key))

    async def delete_prefix(self, prefix: str) -> int:
        """Remove every key under *prefix*; returns how many were removed."""
        return int(await self._call("delete_prefix", self._make_key(prefix)))

    @property
    def backend_name(self) -> str:
        return "redis" if self._redis_available else "memory"

    async def close(self) -> None:
        if self._redis is not None:
            with contextlib.suppress(Exception):
                await self._redis.close()
