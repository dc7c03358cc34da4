"""Key-value cache for entity-type hierarchies, backed by Redis."""

from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from observation_service.config import settings

logger = logging.getLogger(__name__)


class RoleHierarchyCache:
    """Read-through cache of the ordered entity-type levels under a state.

    Entries expire after ``ttl_s`` seconds. Nothing invalidates them early;
    concurrent fills write the same value, so last-writer-wins is harmless.
    An unreachable Redis behaves like a cache miss.

    Usage:
        cache = RoleHierarchyCache.from_url()
        levels = await cache.get("subEntityTypes_<state-id>")
    """

    def __init__(self, client: Any, ttl_s: int | None = None) -> None:
        self._client = client
        self._ttl_s = ttl_s or settings.role_hierarchy_cache_ttl_s

    @classmethod
    def from_url(cls, url: str | None = None, ttl_s: int | None = None) -> RoleHierarchyCache:
        return cls(redis.from_url(url or settings.redis_url), ttl_s=ttl_s)

    async def get(self, key: str) -> list[str] | None:
        try:
            raw = await self._client.get(key)
        except RedisError as e:
            logger.warning("[CACHE] read of %s failed: %s", key, e)
            return None
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("[CACHE] dropping unreadable entry %s", key)
            return None
        return [str(v) for v in value] if isinstance(value, list) else None

    async def set(self, key: str, levels: list[str]) -> None:
        try:
            await self._client.set(key, json.dumps(levels), ex=self._ttl_s)
        except RedisError as e:
            logger.warning("[CACHE] write of %s failed: %s", key, e)

    async def aclose(self) -> None:
        await self._client.aclose()
