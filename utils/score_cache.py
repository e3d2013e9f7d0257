"""
utils/score_cache.py
────────────────────
Two-tier cache for compatibility scores, group analyses and bulk batch results.

  Tier 1  Redis (redis.asyncio), shared across workers, TTL through SETEX
  Tier 2  in-process bounded dict, used whenever Redis is disabled,
          unreachable or slower than ``timeout``; evicts the oldest 25 %
          of entries (by expiry) when full

Remote failures never reach callers: a timed-out or refused call counts as a
miss (reads) or lands in the in-process tier (writes), and the remote tier is
retried after ``retry_interval`` seconds. Invalidations the remote tier misses
are queued and replayed before it serves reads again.

Key layout (all under the configured prefix)
────────────────────────────────────────────
  score:{version}:{min_id}:{max_id}[:group:{group_id}]
  analysis:{version}:{user_id}:group:{group_id}:{member_digest}
  bulk:{version}:{user_id}:{request_digest}
"""

from __future__ import annotations

import asyncio
import fnmatch
import hashlib
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import redis.asyncio as aioredis
from pydantic import BaseModel, TypeAdapter, ValidationError
from redis.exceptions import RedisError

from config.settings import Settings, get_settings
from models.entities import BatchResult, CompatibilityScore, GroupCompatibilityResult
from models.errors import CacheUnavailableError
from utils.logger import logger

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

_BULK_ADAPTER = TypeAdapter(list[BatchResult])
_DELETE_CHUNK = 500


# ─────────────────────────────────────────────────────────────────────────────
#  Key derivation
# ─────────────────────────────────────────────────────────────────────────────

def make_digest(payload: Any) -> str:
    """Deterministic short hash of any JSON-serialisable payload."""
    raw = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


_GLOB_ESCAPES = {"*": "[*]", "?": "[?]", "[": "[[]", "\\": "[\\\\]"}


def glob_escape(value: str) -> str:
    """Quote glob metacharacters so an id only ever matches itself."""
    return "".join(_GLOB_ESCAPES.get(char, char) for char in value)


def score_key(user_a: str, user_b: str, group_id: str | None = None, version: str = "v1") -> str:
    first, second = sorted((user_a, user_b))
    key = f"score:{version}:{first}:{second}"
    if group_id:
        key += f":group:{group_id}"
    return key


def analysis_key(user_id: str, group_id: str, member_digest: str, version: str = "v1") -> str:
    return f"analysis:{version}:{user_id}:group:{group_id}:{member_digest}"


def bulk_key(user_id: str, request_digest: str, version: str = "v1") -> str:
    return f"bulk:{version}:{user_id}:{request_digest}"


# ─────────────────────────────────────────────────────────────────────────────
#  In-process tier
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class CacheEntry:
    key: str
    payload: str
    cached_at: float
    ttl: int

    @property
    def expires_at(self) -> float:
        return self.cached_at + self.ttl


class LocalCache:
    """Bounded dict with TTL; evicts the soonest-expiring quarter when full."""

    def __init__(self, max_size: int = 1000, clock: Callable[[], float] = time.time):
        self.max_size = max(1, max_size)
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry.payload

    def set(self, key: str, payload: str, ttl: int) -> None:
        if key not in self._entries and len(self._entries) >= self.max_size:
            self._evict()
        self._entries[key] = CacheEntry(key, payload, self._clock(), ttl)

    def delete_pattern(self, pattern: str) -> int:
        doomed = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def _evict(self) -> None:
        count = max(1, len(self._entries) // 4)
        victims = sorted(self._entries.values(), key=lambda e: e.expires_at)[:count]
        for entry in victims:
            del self._entries[entry.key]
        logger.debug(f"In-process cache full, evicted {count} entries")


# ─────────────────────────────────────────────────────────────────────────────
#  Two-tier cache
# ─────────────────────────────────────────────────────────────────────────────

class ScoreCache:
    """
    Parameters
    ----------
    client            : redis.asyncio.Redis (decode_responses=True) or None
                        for an in-process-only cache
    key_prefix        : namespace prepended to every remote key
    timeout           : seconds allowed per remote call before failing open
    retry_interval    : seconds before a failed remote tier is tried again
    fallback_max_size : capacity of the in-process tier
    default_ttl       : TTL used when a caller passes none
    version           : algorithm version baked into keys
    clock             : time source in seconds, used for TTL bookkeeping
    """

    def __init__(
        self,
        client: aioredis.Redis | None = None,
        *,
        key_prefix: str = "groupmatch:compat:",
        timeout: float = 0.5,
        retry_interval: float = 30.0,
        fallback_max_size: int = 1000,
        default_ttl: int = 3600,
        version: str = "v1",
        clock: Callable[[], float] = time.time,
    ):
        self._client = client
        self.key_prefix = key_prefix
        self.timeout = timeout
        self.retry_interval = retry_interval
        self.default_ttl = default_ttl
        self.version = version
        self._clock = clock
        self.local = LocalCache(fallback_max_size, clock)

        self._connected = False
        self._retry_at = 0.0
        # invalidations the remote tier missed while down, replayed on reconnect
        self._pending: dict[str, None] = {}
        self.hits = 0
        self.misses = 0
        self.errors = 0
        self.operations = 0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> ScoreCache:
        settings = settings or get_settings()
        client = None
        if settings.redis_enabled:
            client = aioredis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=settings.redis_timeout_seconds,
                socket_timeout=settings.redis_timeout_seconds,
            )
        return cls(
            client,
            key_prefix=settings.redis_key_prefix,
            timeout=settings.redis_timeout_seconds,
            retry_interval=settings.cache_retry_interval_seconds,
            fallback_max_size=settings.fallback_cache_max_size,
            default_ttl=settings.bulk_cache_ttl,
            version=settings.algorithm_version,
        )

    @property
    def remote_connected(self) -> bool:
        return self._connected

    # ── lifecycle ─────────────────────────────────────────────────────────────

    async def connect(self) -> bool:
        if self._client is None:
            logger.info("Redis disabled, score cache runs in-process only")
            return False
        try:
            await self._bring_up()
        except CacheUnavailableError as exc:
            logger.warning(f"Redis unavailable, using in-process score cache: {exc}")
            return False
        logger.info("Score cache connected to Redis")
        return True

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            except (RedisError, OSError) as exc:
                logger.warning(f"Error while closing Redis connection: {exc}")
        self._connected = False
        logger.info("Score cache closed")

    async def health_check(self) -> dict[str, Any]:
        base = {"fallback_size": len(self.local), "hit_rate": self.stats()["hit_rate"]}
        if self._client is None:
            return {"status": "degraded", "remote": "disabled", **base}
        try:
            await self._bring_up()
        except CacheUnavailableError as exc:
            return {"status": "unhealthy", "remote": "unreachable", "error": str(exc), **base}
        return {"status": "healthy", "remote": "connected", **base}

    # ── remote plumbing ───────────────────────────────────────────────────────

    def _prefixed(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def _remote(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            self._mark_down(exc)
            raise CacheUnavailableError(str(exc) or type(exc).__name__) from exc

    def _mark_down(self, exc: BaseException) -> None:
        self.errors += 1
        if self._connected:
            logger.warning(f"Redis call failed, falling back to in-process tier: {exc!r}")
        self._connected = False
        self._retry_at = self._clock() + self.retry_interval

    async def _remote_ready(self) -> bool:
        if self._client is None:
            return False
        if self._connected:
            return True
        if self._clock() < self._retry_at:
            return False
        try:
            await self._bring_up()
        except CacheUnavailableError:
            return False
        logger.info("Redis score cache reachable again")
        return True

    async def _bring_up(self) -> None:
        """Ping, then replay missed invalidations before the remote serves reads."""
        await self._remote(self._client.ping())
        while self._pending:
            pattern = next(iter(self._pending))
            removed = await self._remote(self._delete_remote(self._prefixed(pattern)))
            del self._pending[pattern]
            logger.info(f"Replayed invalidation of '{pattern}' on Redis ({removed} keys)")
        self._connected = True

    async def _delete_remote(self, pattern: str) -> int:
        keys = [key async for key in self._client.scan_iter(match=pattern, count=_DELETE_CHUNK)]
        removed = 0
        for start in range(0, len(keys), _DELETE_CHUNK):
            removed += int(await self._client.delete(*keys[start:start + _DELETE_CHUNK]))
        return removed

    # ── raw operations ────────────────────────────────────────────────────────

    async def get(self, key: str) -> Optional[str]:
        self.operations += 1
        payload: Optional[str] = None
        if await self._remote_ready():
            try:
                payload = await self._remote(self._client.get(self._prefixed(key)))
            except CacheUnavailableError:
                payload = self.local.get(key)
        else:
            payload = self.local.get(key)

        if payload is None:
            self.misses += 1
            logger.debug(f"Cache miss: {key}")
        else:
            self.hits += 1
            logger.debug(f"Cache hit: {key}")
        return payload

    async def set(self, key: str, payload: str, ttl: int | None = None) -> None:
        self.operations += 1
        ttl = int(ttl or self.default_ttl)
        if await self._remote_ready():
            try:
                await self._remote(self._client.setex(self._prefixed(key), ttl, payload))
                return
            except CacheUnavailableError:
                logger.debug(f"Writing {key} to in-process tier")
        self.local.set(key, payload, ttl)

    async def delete_pattern(self, pattern: str) -> int:
        self.operations += 1
        removed = self.local.delete_pattern(pattern)
        if self._client is None:
            return removed
        if await self._remote_ready():
            try:
                return removed + await self._remote(self._delete_remote(self._prefixed(pattern)))
            except CacheUnavailableError as exc:
                logger.warning(f"Remote invalidation of '{pattern}' deferred: {exc}")
        self._pending[pattern] = None
        return removed

    def _decode(self, model: type[M], payload: Optional[str]) -> Optional[M]:
        if payload is None:
            return None
        try:
            return model.model_validate_json(payload)
        except ValidationError as exc:
            self.errors += 1
            logger.warning(f"Discarding unreadable {model.__name__} cache entry: {exc}")
            return None

    # ── typed operations ──────────────────────────────────────────────────────

    async def get_score(
        self, user_a: str, user_b: str, group_id: str | None = None
    ) -> Optional[CompatibilityScore]:
        payload = await self.get(score_key(user_a, user_b, group_id, self.version))
        return self._decode(CompatibilityScore, payload)

    async def set_score(self, score: CompatibilityScore, ttl: int | None = None) -> None:
        key = score_key(score.user1_id, score.user2_id, score.group_id, self.version)
        await self.set(key, score.model_dump_json(), ttl)

    async def get_group_analysis(
        self, user_id: str, group_id: str, member_digest: str
    ) -> Optional[GroupCompatibilityResult]:
        payload = await self.get(analysis_key(user_id, group_id, member_digest, self.version))
        return self._decode(GroupCompatibilityResult, payload)

    async def set_group_analysis(
        self,
        user_id: str,
        result: GroupCompatibilityResult,
        member_digest: str,
        ttl: int | None = None,
    ) -> None:
        key = analysis_key(user_id, result.group_id, member_digest, self.version)
        await self.set(key, result.model_dump_json(), ttl)

    async def get_bulk(self, user_id: str, request_digest: str) -> Optional[list[BatchResult]]:
        payload = await self.get(bulk_key(user_id, request_digest, self.version))
        if payload is None:
            return None
        try:
            return _BULK_ADAPTER.validate_json(payload)
        except ValidationError as exc:
            self.errors += 1
            logger.warning(f"Discarding unreadable bulk cache entry: {exc}")
            return None

    async def set_bulk(
        self,
        user_id: str,
        request_digest: str,
        results: list[BatchResult],
        ttl: int | None = None,
    ) -> None:
        payload = _BULK_ADAPTER.dump_json(results).decode("utf-8")
        await self.set(bulk_key(user_id, request_digest, self.version), payload, ttl)

    # ── invalidation ──────────────────────────────────────────────────────────

    async def invalidate_user(self, user_id: str) -> int:
        quoted = glob_escape(user_id)
        removed = 0
        # analysis and bulk keys only carry a digest of member ids, so any of
        # them may have been derived from this user's profile
        for pattern in (f"score:*:{quoted}:*", f"score:*:{quoted}", "analysis:*", "bulk:*"):
            removed += await self.delete_pattern(pattern)
        logger.info(f"Invalidated {removed} cache entries for user {user_id}")
        return removed

    async def invalidate_group(self, group_id: str) -> int:
        quoted = glob_escape(group_id)
        removed = 0
        # bulk keys hash their group ids, so they go whenever any group changes
        for pattern in (f"*:group:{quoted}", f"*:group:{quoted}:*", "bulk:*"):
            removed += await self.delete_pattern(pattern)
        logger.info(f"Invalidated {removed} cache entries for group {group_id}")
        return removed

    async def flush(self) -> int:
        removed = await self.delete_pattern("*")
        logger.info(f"Flushed {removed} cache entries")
        return removed

    def stats(self) -> dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "hits":             self.hits,
            "misses":           self.misses,
            "errors":           self.errors,
            "operations":       self.operations,
            "hit_rate":         round(self.hits / lookups * 100, 1) if lookups else 0.0,
            "fallback_size":    len(self.local),
            "remote_enabled":   self._client is not None,
            "remote_connected": self._connected,
            "pending_deletes":  len(self._pending),
        }
