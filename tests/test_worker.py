import asyncio

import pytest

from adapters.entry.worker.runner import CONSUMER_LIMITS, bulk_check_enqueuer
from core.domain.enums.job_enums import BackoffType, JobStatus, QueueName
from core.domain.enums.trigger_enums import TriggerKind
from core.services.job_queue import JobQueue
from core.services.scheduler import PeriodicScheduler
from tests.fakes import InMemoryJobRepository


@pytest.mark.asyncio
async def test_bulk_check_ticks_do_not_pile_up(clock):
    repo = InMemoryJobRepository()
    tick = bulk_check_enqueuer(JobQueue(repo, clock=clock), TriggerKind.LIMIT_ORDER)

    await tick()
    await tick()

    [job] = repo.jobs.values()
    assert job.queue == QueueName.LIMIT_ORDER_CHECK
    assert job.dedupe_key == "bulk-check:limit-order"
    assert job.max_attempts == 3
    assert job.backoff.type == BackoffType.EXPONENTIAL
    assert job.backoff.delay_ms == 1000


@pytest.mark.asyncio
async def test_failed_bulk_check_is_retried_with_backoff(clock):
    repo = InMemoryJobRepository()
    queue = JobQueue(repo, clock=clock)
    tick = bulk_check_enqueuer(queue, TriggerKind.ALERT)
    calls = []

    async def handler(job, payload):
        calls.append(job.attempts_made)
        if len(calls) == 1:
            raise RuntimeError("price provider outage")
        return {"checked": 0}

    consumer = queue.consume(QueueName.ALERT_CHECK, handler, concurrency=1)

    await tick()
    assert await consumer.drain() == 1

    [job] = repo.jobs.values()
    assert job.status == JobStatus.WAITING
    assert job.run_at == clock() + 1000
    assert job.last_error == "RuntimeError: price provider outage"

    # the retry still holds the dedupe key, so another tick adds nothing
    await tick()
    assert len(repo.jobs) == 1

    clock.advance(1000)
    assert await consumer.drain() == 1
    assert calls == [1, 2]
    assert repo.jobs[job.id].status == JobStatus.COMPLETED


def test_consumer_limits():
    assert CONSUMER_LIMITS[QueueName.ALERT_CHECK].concurrency == 10
    assert CONSUMER_LIMITS[QueueName.ALERT_CHECK].per_second == 100
    assert CONSUMER_LIMITS[QueueName.LIMIT_ORDER_CHECK].concurrency == 5
    assert CONSUMER_LIMITS[QueueName.DCA_CHECK].per_second == 10


@pytest.mark.asyncio
async def test_scheduler_survives_failing_ticks():
    calls = []

    async def tick():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("mongo blip")

    s = PeriodicScheduler("test", 0.01, tick, jitter=0.0)
    s.start()
    for _ in range(100):
        if len(calls) >= 3:
            break
        await asyncio.sleep(0.01)
    await s.stop()

    assert len(calls) >= 3
    assert not s.running
