"""Pacing and backoff for provider calls."""
import asyncio
import time
from typing import Optional


class RateLimiter:
    """Keeps a minimum interval between consecutive calls and computes retry delays."""

    def __init__(
        self,
        min_interval: float = 0.3,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
    ):
        self.min_interval = min_interval
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._last_call: Optional[float] = None
        self._lock = asyncio.Lock()

    async def wait(self):
        """Sleep until the configured interval has passed since the previous call."""
        async with self._lock:
            now = time.monotonic()
            if self._last_call is not None:
                remaining = self.min_interval - (now - self._last_call)
                if remaining > 0:
                    await asyncio.sleep(remaining)
            self._last_call = time.monotonic()

    def backoff_delay(self, attempt: int) -> float:
        """Exponential delay for retry number ``attempt`` (0-based)."""
        return min(self.backoff_max, self.backoff_base * (2 ** attempt))

    async def backoff(self, attempt: int):
        await asyncio.sleep(self.backoff_delay(attempt))
