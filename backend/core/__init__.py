"""Core signal analysis logic: buffering, indicators, scoring and gating.

This package contains pure business logic with no I/O dependencies
(no Redis, HTTP or network access). It is shared between the live
asyncio runtime (app/) and the offline replay script.
"""
