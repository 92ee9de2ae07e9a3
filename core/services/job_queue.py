from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from pydantic import BaseModel, ValidationError

from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.job_entity import Backoff, JobEntity
from core.domain.enums.job_enums import QueueName
from core.domain.repositories.job_repository_interface import JobRepository
from core.domain.schemas.job_payloads import QUEUE_PAYLOADS, parse_job_payload
from core.services.exceptions import JobPayloadMismatchError
from core.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RescheduleJob:
    """
    Returned by a handler to run the same job again after `delay_ms`
    without consuming a retry attempt.
    """

    delay_ms: int
    reason: str = ""


HandlerResult = Union[None, Dict[str, Any], RescheduleJob]
JobHandler = Callable[[JobEntity, BaseModel], Awaitable[HandlerResult]]


def _check_payload(queue: QueueName, payload: BaseModel) -> None:
    allowed = QUEUE_PAYLOADS.get(QueueName(queue), ())
    if not isinstance(payload, allowed):
        raise JobPayloadMismatchError(
            f"payload {type(payload).__name__} is not accepted by queue {queue}",
            details={"queue": str(queue)},
        )


class JobQueue:
    """
    Persistent job queue over the `jobs` collection.
    """

    def __init__(
        self,
        repo: JobRepository,
        *,
        retention_seconds: int = 86_400,
        clock: Callable[[], int] = MongoEntity.now_ms,
    ) -> None:
        self.repo = repo
        self.retention_seconds = int(retention_seconds)
        self.clock = clock

    async def enqueue(
        self,
        queue: QueueName,
        payload: BaseModel,
        *,
        attempts: int = 3,
        backoff: Optional[Backoff] = None,
        dedupe_key: Optional[str] = None,
        delay_ms: int = 0,
    ) -> JobEntity:
        _check_payload(queue, payload)

        job = JobEntity(
            queue=queue,
            payload=payload.model_dump(mode="json"),
            max_attempts=max(int(attempts), 1),
            backoff=backoff or Backoff(),
            dedupe_key=dedupe_key,
            run_at=self.clock() + max(int(delay_ms), 0),
        )
        saved = await self.repo.insert(job)
        if saved.id != job.id:
            logger.debug("job deduplicated queue=%s key=%s existing=%s", queue, dedupe_key, saved.id)
        return saved

    def expire_at(self) -> datetime:
        return datetime.now(timezone.utc) + timedelta(seconds=self.retention_seconds)

    def consume(
        self,
        queue: QueueName,
        handler: JobHandler,
        *,
        concurrency: int,
        rate_limit: Optional[RateLimiter] = None,
        lease_ms: int = 60_000,
        poll_interval: float = 1.0,
    ) -> "QueueConsumer":
        return QueueConsumer(
            queue=self,
            name=queue,
            handler=handler,
            concurrency=concurrency,
            rate_limit=rate_limit,
            lease_ms=lease_ms,
            poll_interval=poll_interval,
        )


class QueueConsumer:
    """
    Leases jobs from one queue and runs them with bounded concurrency under
    an optional token-bucket rate limit.
    """

    def __init__(
        self,
        *,
        queue: JobQueue,
        name: QueueName,
        handler: JobHandler,
        concurrency: int,
        rate_limit: Optional[RateLimiter],
        lease_ms: int,
        poll_interval: float,
    ) -> None:
        self._queue = queue
        self.name = QueueName(name)
        self._handler = handler
        self.concurrency = max(int(concurrency), 1)
        self._rate = rate_limit
        self._lease_ms = int(lease_ms)
        self._poll_interval = float(poll_interval)

        self.worker_id = f"{self.name}:{uuid.uuid4().hex[:8]}"
        self._slots = asyncio.Semaphore(self.concurrency)
        self._inflight: Set[asyncio.Task] = set()
        self._stopping = asyncio.Event()

    async def _claim(self) -> Optional[JobEntity]:
        return await self._queue.repo.claim_next(
            queue=self.name.value,
            worker_id=self.worker_id,
            now_ms=self._queue.clock(),
            lease_ms=self._lease_ms,
        )

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=self._poll_interval)
        except asyncio.TimeoutError:
            pass

    async def run(self) -> None:
        logger.info("consumer %s started (concurrency=%d)", self.worker_id, self.concurrency)
        while not self._stopping.is_set():
            await self._slots.acquire()
            if self._stopping.is_set():
                self._slots.release()
                break

            try:
                job = await self._claim()
            except Exception:
                self._slots.release()
                logger.exception("consumer %s failed to lease a job", self.worker_id)
                await self._idle()
                continue

            if job is None:
                self._slots.release()
                await self._idle()
                continue

            if self._rate is not None:
                await self._rate.acquire()

            task = asyncio.create_task(self._process_and_release(job))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        logger.info("consumer %s stopped", self.worker_id)

    async def stop(self) -> None:
        self._stopping.set()

    async def _process_and_release(self, job: JobEntity) -> None:
        try:
            await self.process(job)
        finally:
            self._slots.release()

    async def drain(self, *, max_jobs: int = 1000) -> int:
        """
        Process due jobs one by one until none is runnable. Returns how many ran.
        """
        n = 0
        while n < max_jobs:
            job = await self._claim()
            if job is None:
                break
            await self.process(job)
            n += 1
        return n

    async def process(self, job: JobEntity) -> None:
        repo = self._queue.repo
        clock = self._queue.clock

        try:
            payload = parse_job_payload(job.payload)
            _check_payload(self.name, payload)
        except (ValidationError, JobPayloadMismatchError) as exc:
            logger.error("job %s on %s has an invalid payload: %s", job.id, self.name, exc)
            await repo.fail(job_id=job.id, worker_id=self.worker_id, error=f"invalid payload: {exc}", expire_at=self._queue.expire_at())
            return

        try:
            result = await self._handler(job, payload)
        except Exception as exc:
            err = f"{type(exc).__name__}: {exc}"
            if job.attempts_made < job.max_attempts:
                delay = Backoff.model_validate(job.backoff).delay_for(job.attempts_made)
                await repo.reschedule(job_id=job.id, worker_id=self.worker_id, run_at=clock() + delay, error=err)
                logger.warning(
                    "job %s on %s failed (attempt %d/%d), retrying in %dms: %s",
                    job.id, self.name, job.attempts_made, job.max_attempts, delay, err,
                )
            else:
                await repo.fail(job_id=job.id, worker_id=self.worker_id, error=err, expire_at=self._queue.expire_at())
                logger.error("job %s on %s failed permanently: %s", job.id, self.name, err)
            return

        if isinstance(result, RescheduleJob):
            await repo.reschedule(
                job_id=job.id,
                worker_id=self.worker_id,
                run_at=clock() + int(result.delay_ms),
                count_attempt=False,
            )
            logger.debug("job %s on %s rescheduled in %dms %s", job.id, self.name, result.delay_ms, result.reason)
            return

        await repo.complete(job_id=job.id, worker_id=self.worker_id, result=result, expire_at=self._queue.expire_at())
        logger.info("job %s on %s completed", job.id, self.name)
