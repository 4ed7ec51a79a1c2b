"""Redis access for the signal store.

Documents are orjson-encoded bytes. Each document can be indexed in a set
whose lifetime follows the newest member. When Redis is unreachable every
call returns an empty result instead of raising, and the engine runs on
without persistence.

Key layout:
- signal:{id}            orjson document
- signals:{instrument}   set of ids for that instrument
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TypeVar

import orjson
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

KEY_PREFIX_SIGNAL = "signal:"
KEY_PREFIX_SIGNALS = "signals:"

_pool: ConnectionPool | None = None
_client: redis.Redis | None = None


async def init_cache(redis_url: str | None = None) -> None:
    """Connect to Redis. On failure the cache stays disabled."""
    global _pool, _client

    if _client is not None:
        return

    url = redis_url or get_settings().redis_url
    _pool = ConnectionPool.from_url(url, max_connections=10, decode_responses=False)
    client = redis.Redis(connection_pool=_pool)

    try:
        await client.ping()
    except (redis.ConnectionError, OSError) as e:
        logger.warning(f"Redis unreachable at {url}: {e}. Signals will not be persisted.")
        await _pool.disconnect()
        _pool = None
        return

    _client = client
    logger.info(f"Redis connected: {url}")


async def close_cache() -> None:
    global _pool, _client

    if _client is not None:
        await _client.aclose()
        _client = None
    if _pool is not None:
        await _pool.disconnect()
        _pool = None
    logger.info("Redis connection closed")


def is_cache_available() -> bool:
    return _client is not None


async def _call(op: str, fn: Callable[[redis.Redis], Awaitable[T]], default: T) -> T:
    """Run one Redis operation, mapping connection loss to ``default``."""
    if _client is None:
        return default
    try:
        return await fn(_client)
    except redis.RedisError as e:
        logger.warning(f"Redis {op} failed: {e}")
        return default


def _encode(key: str, value: Any) -> bytes | None:
    try:
        return orjson.dumps(value)
    except (TypeError, orjson.JSONEncodeError) as e:
        logger.warning(f"Cannot encode {key}: {e}")
        return None


def _decode(key: str, data: bytes | None) -> Any | None:
    if data is None:
        return None
    try:
        return orjson.loads(data)
    except orjson.JSONDecodeError as e:
        logger.warning(f"Corrupt document at {key}: {e}")
        return None


# =============================================================================
# Documents
# =============================================================================

async def get_raw(key: str) -> bytes | None:
    return await _call("GET", lambda c: c.get(key), None)


async def get_json(key: str) -> Any | None:
    return _decode(key, await get_raw(key))


async def get_many_json(keys: list[str]) -> list[Any | None]:
    """Fetch several documents in one round trip, None for missing keys."""
    if not keys:
        return []
    raw = await _call("MGET", lambda c: c.mget(keys), [None] * len(keys))
    return [_decode(key, data) for key, data in zip(keys, raw)]


async def set_json_indexed(
    key: str,
    value: Any,
    index_key: str,
    member: str,
    ttl: int | None = None,
) -> bool:
    """Store a document and add it to an index set in one transaction.

    The index inherits ``ttl`` so it never outlives its newest document.
    """
    data = _encode(key, value)
    if data is None:
        return False

    async def write(c: redis.Redis) -> bool:
        async with c.pipeline(transaction=True) as pipe:
            pipe.set(key, data, ex=ttl)
            pipe.sadd(index_key, member)
            if ttl:
                pipe.expire(index_key, ttl)
            await pipe.execute()
        return True

    return await _call("MULTI", write, False)


# =============================================================================
# Index sets
# =============================================================================

async def srem(key: str, *members: str) -> int:
    if not members:
        return 0
    return await _call("SREM", lambda c: c.srem(key, *members), 0)


async def smembers(key: str) -> set[str]:
    result = await _call("SMEMBERS", lambda c: c.smembers(key), set())
    return {m.decode() if isinstance(m, bytes) else m for m in result}
