import json

import redis.asyncio as redis

from order_workflow.config import settings

_redis: redis.Redis | None = None

PENDING = ""


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


async def claim_idempotency_key(key: str, ttl_seconds: int | None = None) -> dict | None:
    """
    Returns None if this key is new: caller proceeds, then calls store_response or release.
    Returns the stored response body if the key was already completed, or {} while the first
    request holding the key is still in flight.
    Uses SET NX: if we set it, we're first. The in-flight marker gets the short pending TTL;
    store_response replaces it with the completed body under the long TTL.
    """
    r = await get_redis()
    ttl = ttl_seconds or settings.idempotency_pending_ttl_seconds
    was_set = await r.set(key, PENDING, nx=True, ex=ttl)
    if was_set:
        return None
    stored = await r.get(key)
    return json.loads(stored) if stored else {}


async def store_response(key: str, body: dict, ttl_seconds: int | None = None) -> None:
    r = await get_redis()
    await r.set(key, json.dumps(body), ex=ttl_seconds or settings.idempotency_ttl_seconds)


async def release_idempotency_key(key: str) -> None:
    """Forget a key whose request failed, so a retry with the same key is evaluated afresh."""
    r = await get_redis()
    await r.delete(key)
