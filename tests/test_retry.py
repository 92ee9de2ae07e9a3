import pytest

from core.services.exceptions import BroadcastError, TransientRpcError
from core.services.retry import retry_async


class Sleeps:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.mark.asyncio
async def test_retries_transient_errors_with_growing_delay():
    sleep = Sleeps()
    calls = []

    async def fn():
        calls.append(1)
        if len(calls) < 3:
            raise TransientRpcError("timeout")
        return "0xhash"

    assert await retry_async(fn, sleep=sleep, jitter=0.0) == "0xhash"
    assert sleep.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_gives_up_after_attempts():
    sleep = Sleeps()

    async def fn():
        raise TransientRpcError("timeout")

    with pytest.raises(TransientRpcError):
        await retry_async(fn, attempts=3, sleep=sleep)
    assert len(sleep.delays) == 2


@pytest.mark.asyncio
async def test_other_errors_are_not_retried():
    sleep = Sleeps()
    calls = []

    async def fn():
        calls.append(1)
        raise BroadcastError("nonce too low")

    with pytest.raises(BroadcastError):
        await retry_async(fn, sleep=sleep)
    assert calls == [1]
    assert sleep.delays == []
