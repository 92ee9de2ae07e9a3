from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from core.services.exceptions import TransientRpcError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay: float = 0.5,
    jitter: float = 0.2,
    retry_on: Tuple[Type[BaseException], ...] = (TransientRpcError,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "rpc",
) -> T:
    """
    Run `fn` up to `attempts` times, sleeping base_delay * 2^n (+/- jitter)
    between tries. Only exceptions in `retry_on` are retried.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except retry_on as exc:
            if attempt >= attempts:
                raise
            delay = base_delay * (2 ** (attempt - 1))
            delay *= 1 + random.uniform(-jitter, jitter)
            logger.warning("%s attempt %d/%d failed (%s); retrying in %.2fs", label, attempt, attempts, exc, delay)
            await sleep(delay)

    raise RuntimeError("retry_async called with attempts < 1")
