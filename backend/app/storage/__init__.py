"""Data storage layer."""

from app.storage import cache
from app.storage import signal_cache

__all__ = [
    "cache",
    "signal_cache",
]
