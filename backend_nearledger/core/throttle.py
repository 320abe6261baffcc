"""
Minimum-interval pacing for node calls.

Every remote call to the primary node waits here first; the cancellation
token is polled before and after the wait so a stop request is honoured
without issuing another call.
"""

from __future__ import annotations

import asyncio
import time

from backend_nearledger.core.cancellation import CancellationToken


class RequestThrottle:
    """Enforce a fixed minimum delay between consecutive calls (shared lock, monotonic clock)."""

    def __init__(self, min_interval_sec: float, token: CancellationToken) -> None:
        self._interval = max(0.0, min_interval_sec)
        self._token = token
        self._last_acquire = 0.0
        self._lock = asyncio.Lock()

    @property
    def token(self) -> CancellationToken:
        return self._token

    async def acquire(self) -> None:
        self._token.raise_if_cancelled()
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_acquire
            if elapsed < self._interval:
                await asyncio.sleep(self._interval - elapsed)
            self._last_acquire = time.monotonic()
        self._token.raise_if_cancelled()
