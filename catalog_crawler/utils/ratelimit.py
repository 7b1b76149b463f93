"""
Requests-per-minute ceiling shared by all crawl workers.
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional


class RateLimiter:
    """
    Enforces a minimum interval between request starts.
    """

    def __init__(self, *, max_requests_per_minute: Optional[int]) -> None:
        if max_requests_per_minute and max_requests_per_minute > 0:
            self._min_interval = 60.0 / max_requests_per_minute
        else:
            self._min_interval = 0.0
        self._next_slot = 0.0
        self._lock = asyncio.Lock()

    @property
    def min_interval(self) -> float:
        return self._min_interval

    async def wait(self) -> None:
        """
        Sleep as needed so request starts stay under the configured ceiling.
        """
        if not self._min_interval:
            return

        async with self._lock:
            now = time.monotonic()
            wait_seconds = self._next_slot - now
            if wait_seconds > 0:
                await asyncio.sleep(wait_seconds)
            self._next_slot = max(now, self._next_slot) + self._min_interval
