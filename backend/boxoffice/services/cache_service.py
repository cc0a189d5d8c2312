"""
Redis caching service for event inventory snapshots.

CACHING STRATEGY
================

What we cache:
  - The per-event inventory listing served to the storefront browse page
  - Cache key pattern: "inventory:event:{event_id}"

What we never cache:
  - Anything checkout or payment reads. Reservation decisions always
    recompute sold + held from the database; a stale snapshot there would
    oversell.

Invalidation strategy:
  - Every order transition and every new order deletes the event's key
  - Capacity and availability changes delete the event's key
  - Short TTL as a safety net, because held units lapse silently when a hold
    expires without any write happening

Failure policy:
  Redis is advisory. Every operation fails open: errors are logged and the
  caller falls back to the database.
"""

import json
from typing import Optional

from boxoffice.core.config import get_settings
from boxoffice.core.logging import get_logger
from boxoffice.core.metrics import cache_operations, record_cache_operation
from boxoffice.infrastructure.redis_client import get_redis

logger = get_logger(__name__)


def _make_inventory_key(event_id: int) -> str:
    return f"inventory:event:{event_id}"


async def get_cached_inventory(event_id: int) -> Optional[list[dict]]:
    client = await get_redis()
    if not client:
        return None

    key = _make_inventory_key(event_id)
    try:
        data = await client.get(key)
        record_cache_operation("get", hit=data is not None)
        if data:
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        logger.debug("cache_miss", key=key)
    except Exception as e:
        cache_operations.labels(operation="get", result="error").inc()
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_inventory(event_id: int, data: list[dict]) -> None:
    client = await get_redis()
    if not client:
        return

    settings = get_settings()
    key = _make_inventory_key(event_id)
    try:
        await client.setex(key, settings.INVENTORY_CACHE_TTL, json.dumps(data, default=str))
        logger.debug("cache_set", key=key, ttl=settings.INVENTORY_CACHE_TTL)
    except Exception as e:
        cache_operations.labels(operation="set", result="error").inc()
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_inventory_cache(event_id: int) -> None:
    client = await get_redis()
    if not client:
        return

    key = _make_inventory_key(event_id)
    try:
        await client.delete(key)
        logger.debug("cache_invalidated", key=key)
    except Exception as e:
        logger.error("cache_invalidation_error", key=key, error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
