"""
Redis caching for the public event listing.

CACHING STRATEGY: generation-stamped keys
=========================================

Only paginated listing responses are cached:

    events:list:g{generation}:page={page}&size={size}&time_frame=...&availability=...&city=...

Every listing filter is part of the key, in EventFilters field order.

Every committed reserve, cancel, capacity change, event creation, edit or
deletion bumps `events:list:generation` (one INCR). Keys stamped with an
older generation are never read again and expire through REDIS_CACHE_TTL.

The key is resolved once per request, before the database query. A listing
computed while a booking commits is therefore written under the generation
it was read in, which that booking has already retired, so it cannot
shadow fresher data.

Event detail and availability are never cached, and the capacity manager
never reads from Redis. Redis is optional: when it is disabled or
unreachable, listings come straight from the database.
"""

import json
from typing import Optional

import redis.asyncio as redis
from event_capacity.core.config import get_settings
from event_capacity.core.logging import get_logger
from event_capacity.schemas.event import EventFilters

logger = get_logger(__name__)

EVENT_LIST_PREFIX = "events:list"
GENERATION_KEY = f"{EVENT_LIST_PREFIX}:generation"

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled."""
    global _redis_client
    settings = get_settings()

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except Exception as e:
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def make_event_list_key(generation: int, page: int, page_size: int, filters: EventFilters) -> str:
    parts = [f"page={page}", f"size={page_size}"]
    parts += [f"{name}={value}" for name, value in filters.model_dump().items()]
    return f"{EVENT_LIST_PREFIX}:g{generation}:" + "&".join(parts)


async def resolve_event_list_key(
    page: int, page_size: int, filters: EventFilters
) -> Optional[str]:
    """Key for this listing page under the current generation, None without Redis."""
    client = await get_redis()
    if not client:
        return None

    try:
        generation = int(await client.get(GENERATION_KEY) or 0)
    except Exception as e:
        logger.error("cache_generation_error", error=str(e))
        return None
    return make_event_list_key(generation, page, page_size, filters)


async def get_cached_events(key: Optional[str]) -> Optional[dict]:
    if key is None:
        return None
    client = await get_redis()
    if not client:
        return None

    try:
        data = await client.get(key)
        if data:
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        logger.debug("cache_miss", key=key)
    except Exception as e:
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_events(key: Optional[str], data: dict) -> None:
    if key is None:
        return
    client = await get_redis()
    if not client:
        return

    ttl = get_settings().REDIS_CACHE_TTL
    try:
        await client.setex(key, ttl, json.dumps(data, default=str))
    except Exception as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_event_cache() -> None:
    """Retire every cached listing page by bumping the generation."""
    client = await get_redis()
    if not client:
        return

    try:
        generation = await client.incr(GENERATION_KEY)
        logger.info("cache_invalidated", generation=generation)
    except Exception as e:
        logger.error("cache_invalidation_error", error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        generation = int(await client.get(GENERATION_KEY) or 0)
        return {
            "status": "connected",
            "generation": generation,
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
