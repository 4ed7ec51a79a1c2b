"""Signal sink backed by Redis.

Registered on the dispatcher so emitted signals outlive the in-memory
recent-signal ring and can be read by other processes. Each signal is kept
for ``SIGNAL_TTL`` seconds.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from app.storage import cache
from core.models.signal import Signal

logger = logging.getLogger(__name__)

# Signals expire long before this; the TTL only bounds Redis memory
SIGNAL_TTL = 86400


def _signal_key(signal_id: str) -> str:
    return f"{cache.KEY_PREFIX_SIGNAL}{signal_id}"


def _instrument_key(instrument: str) -> str:
    return f"{cache.KEY_PREFIX_SIGNALS}{instrument}"


def _parse(signal_id: str, data: dict | None) -> Signal | None:
    if data is None:
        return None
    try:
        return Signal.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Discarding undecodable signal {signal_id}: {e}")
        return None


async def cache_signal(signal: Signal) -> bool:
    """Store an emitted signal and index it under its instrument.

    Returns:
        False when Redis is unavailable or the write failed
    """
    if not cache.is_cache_available():
        return False

    stored = await cache.set_json_indexed(
        _signal_key(signal.id),
        signal.model_dump(mode="json"),
        _instrument_key(signal.instrument),
        signal.id,
        ttl=SIGNAL_TTL,
    )
    if stored:
        logger.debug(f"Cached signal {signal.id}")
    return stored


async def get_signal(signal_id: str) -> Signal | None:
    if not cache.is_cache_available():
        return None
    return _parse(signal_id, await cache.get_json(_signal_key(signal_id)))


async def get_instrument_signal_ids(instrument: str) -> set[str]:
    if not cache.is_cache_available():
        return set()
    return await cache.smembers(_instrument_key(instrument))


async def get_instrument_signals(instrument: str, limit: int | None = None) -> list[Signal]:
    """Persisted signals for an instrument, newest first.

    Ids whose documents have expired are removed from the index.
    """
    ids = sorted(await get_instrument_signal_ids(instrument))
    if not ids:
        return []

    documents = await cache.get_many_json([_signal_key(i) for i in ids])
    expired = [i for i, doc in zip(ids, documents) if doc is None]
    if expired:
        await cache.srem(_instrument_key(instrument), *expired)

    signals = [s for s in (_parse(i, doc) for i, doc in zip(ids, documents)) if s is not None]
    signals.sort(key=lambda s: s.created_at, reverse=True)
    return signals[:limit] if limit is not None else signals
