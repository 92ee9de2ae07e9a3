from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicScheduler:
    """
    Runs `tick` every `interval_sec` (with jitter) on the running loop until
    `stop()` is called. A failing tick is logged and does not stop the loop.
    """

    def __init__(
        self,
        name: str,
        interval_sec: float,
        tick: Callable[[], Awaitable[object]],
        *,
        jitter: float = 0.1,
        run_immediately: bool = True,
    ) -> None:
        self.name = name
        self.interval_sec = float(interval_sec)
        self._tick = tick
        self._jitter = jitter
        self._run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _next_delay(self) -> float:
        spread = self.interval_sec * self._jitter
        return max(self.interval_sec + random.uniform(-spread, spread), 0.0)

    async def _run(self) -> None:
        if not self._run_immediately:
            await self._sleep(self._next_delay())
        while not self._stopping.is_set():
            try:
                await self._tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("scheduler %s tick failed", self.name)
            await self._sleep(self._next_delay())

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name=f"scheduler:{self.name}")
        logger.info("scheduler %s started (every %.1fs)", self.name, self.interval_sec)

    async def stop(self) -> None:
        self._stopping.set()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._task, timeout=5)
        except asyncio.TimeoutError:
            self._task.cancel()
        self._task = None
        logger.info("scheduler %s stopped", self.name)
