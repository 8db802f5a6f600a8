"""
Send-rate limiting
Token bucket shared by all probe tasks of a scan
"""

import asyncio
import time
from typing import Optional


class RateLimiter:
    """Token bucket limiting probes to `rate` per second"""

    def __init__(self, rate: int, burst: Optional[int] = None):
        if rate <= 0:
            raise ValueError("rate must be > 0")
        self.rate = float(rate)
        self.capacity = float(burst or rate)
        self.tokens = self.capacity
        self.last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self):
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.tokens + elapsed * self.rate, self.capacity)
        self.last_refill = now

    async def acquire(self):
        """Wait until a token is available, then take it"""
        async with self._lock:
            self._refill()
            if self.tokens < 1:
                await asyncio.sleep((1 - self.tokens) / self.rate)
                self._refill()
            self.tokens -= 1
