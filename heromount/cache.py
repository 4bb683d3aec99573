"""
Request-scoped caching for read-mostly lookups

The cache is an explicit component: callers build one (see build_cache) and
pass it to the services that use it. Entries carry a TTL and the in-process
store evicts least-recently-used entries once it holds max_entries.
"""

import json
import logging
import time
from collections import OrderedDict
from threading import Lock
from typing import Any, Optional

import redis

from .config import AVAILABILITY_CACHE_MAX_ENTRIES, AVAILABILITY_CACHE_TTL, REDIS_URL

logger = logging.getLogger(__name__)


class Cache:
    """TTL + LRU cache with automatic JSON serialization and optional Redis backend"""

    def __init__(
        self,
        ttl: int = AVAILABILITY_CACHE_TTL,
        max_entries: int = AVAILABILITY_CACHE_MAX_ENTRIES,
        redis_client: Optional[redis.Redis] = None,
        namespace: str = "heromount",
    ):
        self.ttl = ttl
        self.max_entries = max_entries
        self.redis_client = redis_client
        self.namespace = namespace
        self._entries: "OrderedDict[str, tuple[float, str]]" = OrderedDict()
        self._lock = Lock()

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        full_key = self._key(key)

        if self.redis_client is not None:
            try:
                value = self.redis_client.get(full_key)
            except redis.RedisError as e:
                logger.error(f"❌ Cache get error for {key}: {e}")
                return None
            if value is None:
                logger.debug(f"❌ Cache MISS: {key}")
                return None
            logger.debug(f"✅ Cache HIT: {key}")
            return json.loads(value)

        with self._lock:
            entry = self._entries.get(full_key)
            if entry is None:
                logger.debug(f"❌ Cache MISS: {key}")
                return None
            expires_at, value = entry
            if expires_at <= time.monotonic():
                del self._entries[full_key]
                logger.debug(f"⌛ Cache EXPIRED: {key}")
                return None
            self._entries.move_to_end(full_key)
        logger.debug(f"✅ Cache HIT: {key}")
        return json.loads(value)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache with TTL (defaults to the cache TTL)"""
        ttl = self.ttl if ttl is None else ttl
        full_key = self._key(key)
        serialized = json.dumps(value)

        if self.redis_client is not None:
            try:
                self.redis_client.setex(full_key, ttl, serialized)
                return True
            except redis.RedisError as e:
                logger.error(f"❌ Cache set error for {key}: {e}")
                return False

        with self._lock:
            self._entries[full_key] = (time.monotonic() + ttl, serialized)
            self._entries.move_to_end(full_key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"♻️ Cache EVICT: {evicted}")
        logger.debug(f"✅ Cache SET: {key} (TTL: {ttl}s)")
        return True

    def delete(self, key: str) -> bool:
        """Delete value from cache"""
        full_key = self._key(key)
        if self.redis_client is not None:
            try:
                self.redis_client.delete(full_key)
                return True
            except redis.RedisError as e:
                logger.error(f"❌ Cache delete error for {key}: {e}")
                return False

        with self._lock:
            self._entries.pop(full_key, None)
        return True

    def delete_prefix(self, prefix: str) -> int:
        """Delete all keys starting with prefix (e.g. 'availability:')"""
        full_prefix = self._key(prefix)
        if self.redis_client is not None:
            try:
                keys = list(self.redis_client.scan_iter(match=f"{full_prefix}*"))
                deleted = self.redis_client.delete(*keys) if keys else 0
            except redis.RedisError as e:
                logger.error(f"❌ Cache delete prefix error for {prefix}: {e}")
                return 0
            logger.debug(f"✅ Cache DELETE prefix: {prefix} ({deleted} keys)")
            return deleted

        with self._lock:
            keys = [k for k in self._entries if k.startswith(full_prefix)]
            for k in keys:
                del self._entries[k]
        logger.debug(f"✅ Cache DELETE prefix: {prefix} ({len(keys)} keys)")
        return len(keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def get_redis_client(redis_url: str) -> redis.Redis:
    """Create and ping a Redis client; raises if the server is unreachable"""
    client = redis.from_url(
        redis_url,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
        health_check_interval=30,
    )
    client.ping()
    return client


def build_cache(redis_url: Optional[str] = REDIS_URL, **kwargs) -> Cache:
    """Build the availability cache; Redis when configured and reachable, in-process otherwise"""
    if redis_url:
        try:
            client = get_redis_client(redis_url)
            logger.info("📡 Availability cache using Redis")
            return Cache(redis_client=client, **kwargs)
        except redis.RedisError as e:
            logger.warning(f"⚠️ Redis cache unavailable, using in-process cache: {e}")
    return Cache(**kwargs)
