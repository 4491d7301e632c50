"""
Best-effort TTL cache in front of every strategy.

Keys are deterministic in every parameter that influences a result:
    rec:{strategy}:{subject}:{digest of sorted params}
so logically identical requests always hit and different ones never collide.

A missing Redis client, a disabled cache, or any Redis error degrades to a
miss (reads) or a no-op (writes); callers just recompute.
"""

import asyncio
import hashlib
import json
import time
from typing import Any, Optional, Set

import redis.asyncio as redis

from personalization.config import CACHE_ENABLED, CACHE_KEY_PREFIX
from personalization.logging import setup_logging
from personalization.observability import metrics

logger = setup_logging("cache.log")


class ResultCache:
    def __init__(
        self,
        client: Optional[redis.Redis],
        enabled: bool = CACHE_ENABLED,
        prefix: str = CACHE_KEY_PREFIX,
    ):
        self.client = client
        self.enabled = enabled and client is not None
        self.prefix = prefix
        self._writes: Set[asyncio.Task] = set()

    def key(self, strategy: str, subject: Any, **params: Any) -> str:
        canonical = json.dumps(params, sort_keys=True, default=str, separators=(",", ":"))
        digest = hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:16]
        return f"{self.prefix}{strategy}:{subject}:{digest}"

    async def get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None

        start_time = time.time()
        try:
            raw = await self.client.get(key)
        except Exception as e:
            metrics.cache_errors.labels(operation="get").inc()
            logger.warning(f"Cache read failed for {key}: {e}")
            return None
        finally:
            metrics.redis_operation_duration.labels(operation="get").observe(
                time.time() - start_time
            )

        if raw is None:
            metrics.cache_lookups.labels(result="miss").inc()
            return None

        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as e:
            metrics.cache_errors.labels(operation="decode").inc()
            logger.warning(f"Discarding undecodable cache entry {key}: {e}")
            return None

        metrics.cache_lookups.labels(result="hit").inc()
        return value

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        if not self.enabled:
            return False
        try:
            # single SET: readers see the old value or the new one, never a mix
            await self.client.set(key, json.dumps(value, default=str), ex=ttl)
            return True
        except Exception as e:
            metrics.cache_errors.labels(operation="set").inc()
            logger.warning(f"Cache write failed for {key}: {e}")
            return False

    def set_background(self, key: str, value: Any, ttl: int) -> None:
        """Fire-and-forget write; the caller never waits on Redis."""
        if not self.enabled:
            return
        task = asyncio.create_task(self.set(key, value, ttl))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def delete(self, key: str) -> bool:
        if not self.enabled:
            return False
        try:
            await self.client.delete(key)
            return True
        except Exception as e:
            metrics.cache_errors.labels(operation="delete").inc()
            logger.warning(f"Cache delete failed for {key}: {e}")
            return False

    async def clear(self, prefix: Optional[str] = None) -> int:
        """Delete every key under `prefix` (default: the whole namespace)."""
        if not self.enabled:
            return 0
        pattern = f"{prefix or self.prefix}*"
        deleted = 0
        try:
            batch = []
            async for key in self.client.scan_iter(match=pattern, count=500):
                batch.append(key)
                if len(batch) >= 500:
                    deleted += await self.client.delete(*batch)
                    batch = []
            if batch:
                deleted += await self.client.delete(*batch)
        except Exception as e:
            metrics.cache_errors.labels(operation="clear").inc()
            logger.warning(f"Cache clear failed for {pattern}: {e}")
        logger.info(f"Cleared {deleted} cache entries matching {pattern}")
        return deleted

    async def flush_pending(self) -> None:
        if self._writes:
            await asyncio.gather(*list(self._writes), return_exceptions=True)
