import pytest

from core.domain.entities.job_entity import Backoff
from core.domain.enums.job_enums import BackoffType, JobStatus, QueueName
from core.domain.enums.swap_enums import MonitorType
from core.domain.enums.trigger_enums import TriggerKind
from core.domain.schemas.job_payloads import BulkCheckJob, TransactionMonitorJob
from core.services.exceptions import JobPayloadMismatchError
from core.services.job_queue import JobQueue, RescheduleJob
from tests.fakes import Clock, InMemoryJobRepository


def monitor_payload(tx="0xabc"):
    return TransactionMonitorJob(swap_id="s1", step_index=0, chain_id="base", tx_hash=tx, type=MonitorType.EVM)


@pytest.fixture
def repo():
    return InMemoryJobRepository()


@pytest.fixture
def queue(repo, clock):
    return JobQueue(repo, clock=clock)


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_dedupe_key_returns_existing_job(self, queue, repo):
        a = await queue.enqueue(QueueName.TRANSACTION_MONITOR, monitor_payload(), dedupe_key="k")
        b = await queue.enqueue(QueueName.TRANSACTION_MONITOR, monitor_payload(), dedupe_key="k")

        assert a.id == b.id
        assert len(repo.jobs) == 1

    @pytest.mark.asyncio
    async def test_dedupe_key_is_released_once_the_job_finishes(self, queue, repo):
        await queue.enqueue(QueueName.TRANSACTION_MONITOR, monitor_payload(), dedupe_key="k")

        async def handler(job, payload):
            return None

        await queue.consume(QueueName.TRANSACTION_MONITOR, handler, concurrency=1).drain()
        again = await queue.enqueue(QueueName.TRANSACTION_MONITOR, monitor_payload(), dedupe_key="k")

        assert len(repo.jobs) == 2
        assert again.status == JobStatus.WAITING

    @pytest.mark.asyncio
    async def test_payload_must_match_queue(self, queue):
        with pytest.raises(JobPayloadMismatchError):
            await queue.enqueue(QueueName.DCA_CHECK, monitor_payload())

        job = await queue.enqueue(QueueName.DCA_CHECK, BulkCheckJob(kind=TriggerKind.DCA))
        assert job.payload == {"job": "bulk-check", "kind": "dca"}

    @pytest.mark.asyncio
    async def test_delay_sets_run_at(self, queue, clock):
        job = await queue.enqueue(QueueName.TRANSACTION_MONITOR, monitor_payload(), delay_ms=2_000)
        assert job.run_at == clock() + 2_000


class TestConsume:
    @pytest.mark.asyncio
    async def test_failures_back_off_then_fail(self, queue, repo, clock):
        job = await queue.enqueue(
            QueueName.TRANSACTION_MONITOR,
            monitor_payload(),
            attempts=3,
            backoff=Backoff(type=BackoffType.EXPONENTIAL, delay_ms=1_000),
        )
        calls = []

        async def handler(j, payload):
            calls.append(j.attempts_made)
            raise RuntimeError("rpc down")

        consumer = queue.consume(QueueName.TRANSACTION_MONITOR, handler, concurrency=1)

        assert await consumer.drain() == 1
        assert repo.jobs[job.id].run_at == clock() + 1_000

        clock.advance(1_000)
        assert await consumer.drain() == 1
        assert repo.jobs[job.id].run_at == clock() + 2_000

        clock.advance(2_000)
        assert await consumer.drain() == 1

        stored = repo.jobs[job.id]
        assert calls == [1, 2, 3]
        assert stored.status == JobStatus.FAILED
        assert stored.last_error == "RuntimeError: rpc down"

    @pytest.mark.asyncio
    async def test_reschedule_does_not_spend_an_attempt(self, queue, repo, clock):
        job = await queue.enqueue(QueueName.TRANSACTION_MONITOR, monitor_payload(), attempts=1)
        polls = []

        async def handler(j, payload):
            polls.append(payload.tx_hash)
            if len(polls) < 4:
                return RescheduleJob(delay_ms=500, reason="PENDING")
            return {"ok": True}

        consumer = queue.consume(QueueName.TRANSACTION_MONITOR, handler, concurrency=1)
        for _ in range(4):
            await consumer.drain()
            clock.advance(500)

        stored = repo.jobs[job.id]
        assert len(polls) == 4
        assert stored.status == JobStatus.COMPLETED
        assert stored.result == {"ok": True}

    @pytest.mark.asyncio
    async def test_invalid_stored_payload_fails_without_running(self, queue, repo):
        job = await queue.enqueue(QueueName.TRANSACTION_MONITOR, monitor_payload())
        repo.jobs[job.id].payload = {"job": "bulk-check", "kind": "alert"}
        ran = []

        async def handler(j, payload):
            ran.append(payload)

        await queue.consume(QueueName.TRANSACTION_MONITOR, handler, concurrency=1).drain()

        assert ran == []
        assert repo.jobs[job.id].status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_expired_lease_is_reclaimed(self, queue, repo, clock):
        job = await queue.enqueue(QueueName.TRANSACTION_MONITOR, monitor_payload())
        leased = await repo.claim_next(queue=QueueName.TRANSACTION_MONITOR.value, worker_id="dead", now_ms=clock(), lease_ms=1_000)
        assert leased.id == job.id

        async def handler(j, payload):
            return None

        consumer = queue.consume(QueueName.TRANSACTION_MONITOR, handler, concurrency=1)
        assert await consumer.drain() == 0

        clock.advance(1_001)
        assert await consumer.drain() == 1
        assert repo.jobs[job.id].status == JobStatus.COMPLETED


class TestBackoff:
    def test_exponential(self):
        b = Backoff(delay_ms=1_000)
        assert [b.delay_for(n) for n in (1, 2, 3)] == [1_000, 2_000, 4_000]

    def test_fixed(self):
        b = Backoff(type=BackoffType.FIXED, delay_ms=30_000)
        assert b.delay_for(4) == 30_000
