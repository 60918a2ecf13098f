"""
Deduplication Service
======================
Atomic claim of webhook deliveries, checked before any durable write.

  L1: process-local TTLCache, claimed under a lock (concurrent deliveries
      handled by the same worker)
  L2: Redis SET NX EX, one key per delivery (concurrent deliveries spread
      across workers)

Durable dedup still follows: insert-if-absent on the comments table and the
platform message id kept in each DM session's message log.

Graceful fallback: If Redis is unavailable, only L1 and the database keys
apply.
"""

import threading

from cachetools import TTLCache

from config import logger
from services import supabase_service

TTL_SECONDS = 86400  # 24 hours

_claimed: TTLCache = TTLCache(maxsize=10000, ttl=TTL_SECONDS)
_lock = threading.Lock()


class DedupService:
    """Claim-once deduplication of webhook sub-events."""

    KEY_PREFIX = "webhook:seen:"

    @staticmethod
    def delivery_key(platform: str, kind: str, event_id: str) -> str:
        return f"{platform}:{kind}:{event_id}"

    @staticmethod
    def claim(key: str) -> bool:
        """True exactly once per delivery key; False for every later delivery.

        Check and mark are a single step at each level: the lock for L1,
        SET NX for Redis.
        """
        if not key:
            return True

        with _lock:
            if key in _claimed:
                return False
            _claimed[key] = True

        if not supabase_service._redis_available:
            return True
        try:
            return bool(supabase_service._redis.set(
                DedupService.KEY_PREFIX + key, 1, nx=True, ex=TTL_SECONDS,
            ))
        except Exception as e:
            logger.debug(f"Redis dedup claim failed (non-critical): {e}")
            return True

    @staticmethod
    def release(key: str):
        """Forget a claim (used when the durable claim itself errors out)."""
        with _lock:
            _claimed.pop(key, None)
        if not supabase_service._redis_available:
            return
        try:
            supabase_service._redis.delete(DedupService.KEY_PREFIX + key)
        except Exception as e:
            logger.debug(f"Redis dedup release failed (non-critical): {e}")

    @staticmethod
    def get_processed_count() -> int:
        """Claims held by this worker (for the status endpoint)."""
        with _lock:
            return len(_claimed)
