from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any


@dataclass
class RateLimiter:
    """
    Token bucket: at most `limit` acquisitions per `window_sec`, refilled
    continuously. `clock` is injectable for tests.
    """

    limit: int
    window_sec: float = 1.0
    clock: Any = None
    _tokens: float = field(init=False, default=0.0)
    _last_refill: float = field(init=False, default=0.0)

    def __post_init__(self) -> None:
        if self.limit <= 0:
            raise ValueError("limit must be positive")
        if self.clock is None:
            self.clock = time.monotonic
        self._tokens = float(self.limit)
        self._last_refill = self.clock()

    def _refill(self) -> None:
        now = self.clock()
        elapsed = max(now - self._last_refill, 0.0)
        self._tokens = min(float(self.limit), self._tokens + elapsed * (self.limit / self.window_sec))
        self._last_refill = now

    def try_acquire(self) -> bool:
        self._refill()
        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return True
        return False

    def wait_time(self) -> float:
        """
        Seconds until one token is available.
        """
        self._refill()
        if self._tokens >= 1.0:
            return 0.0
        return (1.0 - self._tokens) * (self.window_sec / self.limit)

    async def acquire(self) -> None:
        while not self.try_acquire():
            await asyncio.sleep(self.wait_time())
