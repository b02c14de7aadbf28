"""
Tenant-isolated cache for storefront catalog reads.

Every key carries the tenant id so that two shops never see each
other's products:

    atelier:{tenant_id}:products:list:{params_hash}
    atelier:{tenant_id}:categories:all

Redis when REDIS_URL is configured, in-memory otherwise.
"""
import asyncio
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from atelier.config import settings
from atelier.database import CustomJSONEncoder

logger = logging.getLogger(__name__)


class CacheBackend(ABC):
    """Abstract cache backend interface."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    async def clear_pattern(self, pattern: str) -> int:
        pass


class InMemoryCache(CacheBackend):
    """Process-local cache; not shared between workers."""

    def __init__(self):
        self._cache: Dict[str, tuple[Any, datetime]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            if key in self._cache:
                value, expires_at = self._cache[key]
                if expires_at > datetime.now(timezone.utc):
                    return value
                del self._cache[key]
            return None

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        async with self._lock:
            self._cache[key] = (value, datetime.now(timezone.utc) + timedelta(seconds=ttl))
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._cache.pop(key, None) is not None

    async def clear_pattern(self, pattern: str) -> int:
        """Prefix match; only a trailing * is supported."""
        async with self._lock:
            prefix = pattern.rstrip('*')
            keys = [k for k in self._cache if k.startswith(prefix)]
            for key in keys:
                del self._cache[key]
            return len(keys)


class RedisCache(CacheBackend):
    """
    Redis backend. Connection errors degrade to cache misses and are
    logged, the request is served from the database.
    """

    def __init__(self, redis_url: str):
        self._client = redis.from_url(redis_url, decode_responses=True)

    async def get(self, key: str) -> Optional[Any]:
        try:
            value = await self._client.get(key)
        except RedisError as e:
            logger.warning(f"Redis GET {key} failed: {e}")
            return None
        return json.loads(value) if value else None

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        try:
            await self._client.set(key, json.dumps(value, cls=CustomJSONEncoder), ex=ttl)
            return True
        except RedisError as e:
            logger.warning(f"Redis SET {key} failed: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self._client.delete(key)
            return True
        except RedisError as e:
            logger.warning(f"Redis DELETE {key} failed: {e}")
            return False

    async def clear_pattern(self, pattern: str) -> int:
        deleted = 0
        try:
            async for key in self._client.scan_iter(match=pattern, count=100):
                await self._client.delete(key)
                deleted += 1
        except RedisError as e:
            logger.warning(f"Redis SCAN {pattern} failed: {e}")
        return deleted


class CacheService:
    """Namespaced, tenant-isolated cache."""

    def __init__(self, backend: CacheBackend, namespace: str = "atelier"):
        self._backend = backend
        self._namespace = namespace

    def _make_key(self, tenant_id: str, key: str) -> str:
        if not tenant_id:
            logger.warning(f"Cache key created without tenant_id: {key}")
        return f"{self._namespace}:{tenant_id}:{key}"

    async def get(self, tenant_id: str, key: str) -> Optional[Any]:
        if not settings.CACHE_ENABLED:
            return None
        return await self._backend.get(self._make_key(tenant_id, key))

    async def set(self, tenant_id: str, key: str, value: Any, ttl: int = 3600) -> bool:
        if not settings.CACHE_ENABLED:
            return False
        return await self._backend.set(self._make_key(tenant_id, key), value, ttl)

    async def clear_pattern(self, tenant_id: str, pattern: str) -> int:
        return await self._backend.clear_pattern(self._make_key(tenant_id, pattern))

    @staticmethod
    def hash_params(params: dict) -> str:
        param_str = json.dumps(sorted(params.items()), sort_keys=True, default=str)
        return hashlib.md5(param_str.encode()).hexdigest()[:12]

    # ==================== Products ====================

    async def get_product_list(self, tenant_id: str, params: dict) -> Optional[dict]:
        return await self.get(tenant_id, f"products:list:{self.hash_params(params)}")

    async def set_product_list(self, tenant_id: str, params: dict, data: dict) -> bool:
        return await self.set(
            tenant_id,
            f"products:list:{self.hash_params(params)}",
            data,
            settings.PRODUCT_CACHE_TTL,
        )

    async def invalidate_products(self, tenant_id: str) -> int:
        return await self.clear_pattern(tenant_id, "products:*")

    # ==================== Categories ====================

    async def get_categories(self, tenant_id: str) -> Optional[list]:
        return await self.get(tenant_id, "categories:all")

    async def set_categories(self, tenant_id: str, data: list) -> bool:
        return await self.set(tenant_id, "categories:all", data, settings.CATEGORY_CACHE_TTL)

    async def invalidate_categories(self, tenant_id: str) -> int:
        return await self.clear_pattern(tenant_id, "categories:*")

    async def invalidate_storefront(self, tenant_id: str) -> int:
        count = await self.invalidate_products(tenant_id)
        count += await self.invalidate_categories(tenant_id)
        return count


_cache_instance: Optional[CacheService] = None


def get_cache() -> CacheService:
    """Get the cache service singleton."""
    global _cache_instance

    if _cache_instance is None:
        if settings.REDIS_URL and settings.CACHE_ENABLED:
            backend = RedisCache(settings.REDIS_URL)
            logger.info("Cache initialized with Redis backend")
        else:
            backend = InMemoryCache()
            logger.info("Cache initialized with in-memory backend")
        _cache_instance = CacheService(backend)

    return _cache_instance
