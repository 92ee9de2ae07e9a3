from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from typing import List

from adapters.external.database.indexes import init_mongo_indexes
from adapters.external.database.mongo_client import close_mongo_client
from config import Settings, configure_logging, get_settings
from core.domain.entities.job_entity import Backoff
from core.domain.enums.job_enums import BackoffType, QueueName
from core.domain.enums.trigger_enums import TriggerKind
from core.domain.schemas.job_payloads import BULK_CHECK_QUEUES, BulkCheckJob
from core.services.job_queue import JobQueue, QueueConsumer
from core.services.rate_limiter import RateLimiter
from core.services.scheduler import PeriodicScheduler
from core.services.transaction_monitor import TransactionMonitorService
from core.use_cases.dca_usecase import DCAUseCase
from core.use_cases.limit_orders_usecase import LimitOrdersUseCase
from core.use_cases.price_alerts_usecase import PriceAlertsUseCase
from core.use_cases.swaps_usecase import SwapsUseCase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsumerLimits:
    concurrency: int
    per_second: int


CONSUMER_LIMITS = {
    QueueName.ALERT_CHECK: ConsumerLimits(concurrency=10, per_second=100),
    QueueName.LIMIT_ORDER_CHECK: ConsumerLimits(concurrency=5, per_second=50),
    QueueName.DCA_CHECK: ConsumerLimits(concurrency=3, per_second=10),
    QueueName.TRANSACTION_MONITOR: ConsumerLimits(concurrency=20, per_second=50),
}


def bulk_check_enqueuer(queue: JobQueue, kind: TriggerKind):
    """
    Scheduler tick: enqueue one bulk check for `kind` unless one is
    already waiting or running. A failed pass is retried by the queue.
    """

    async def _tick() -> None:
        await queue.enqueue(
            BULK_CHECK_QUEUES[kind],
            BulkCheckJob(kind=kind),
            attempts=3,
            backoff=Backoff(type=BackoffType.EXPONENTIAL, delay_ms=1000),
            dedupe_key=f"bulk-check:{kind.value}",
        )

    return _tick


@dataclass
class Worker:
    """
    Background process: periodic bulk-check schedulers plus one consumer
    per queue.
    """

    settings: Settings
    queue: JobQueue
    monitor: TransactionMonitorService
    swaps: SwapsUseCase
    alerts: PriceAlertsUseCase
    limit_orders: LimitOrdersUseCase
    dca: DCAUseCase
    schedulers: List[PeriodicScheduler] = field(default_factory=list)
    consumers: List[QueueConsumer] = field(default_factory=list)

    @classmethod
    def from_settings(cls) -> "Worker":
        st = get_settings()
        monitor = TransactionMonitorService.from_settings()
        swaps = SwapsUseCase.from_settings(monitor=monitor)
        monitor.set_listener(swaps)
        return cls(
            settings=st,
            queue=monitor.queue,
            monitor=monitor,
            swaps=swaps,
            alerts=PriceAlertsUseCase.from_settings(),
            limit_orders=LimitOrdersUseCase.from_settings(swaps=swaps),
            dca=DCAUseCase.from_settings(swaps=swaps),
        )

    def _consumer(self, name: QueueName, handler) -> QueueConsumer:
        limits = CONSUMER_LIMITS[name]
        return self.queue.consume(
            name,
            handler,
            concurrency=limits.concurrency,
            rate_limit=RateLimiter(limit=limits.per_second, window_sec=1.0),
        )

    def build(self) -> None:
        st = self.settings
        self.schedulers = [
            PeriodicScheduler("alerts", st.ALERT_CHECK_INTERVAL_SECONDS, bulk_check_enqueuer(self.queue, TriggerKind.ALERT)),
            PeriodicScheduler(
                "limit-orders",
                st.LIMIT_ORDER_CHECK_INTERVAL_SECONDS,
                bulk_check_enqueuer(self.queue, TriggerKind.LIMIT_ORDER),
            ),
            PeriodicScheduler("dca", st.DCA_CHECK_INTERVAL_SECONDS, bulk_check_enqueuer(self.queue, TriggerKind.DCA)),
        ]
        self.consumers = [
            self._consumer(QueueName.ALERT_CHECK, self.alerts.handle_job),
            self._consumer(QueueName.LIMIT_ORDER_CHECK, self.limit_orders.handle_job),
            self._consumer(QueueName.DCA_CHECK, self.dca.handle_job),
            self._consumer(QueueName.TRANSACTION_MONITOR, self.monitor.handle_job),
        ]

    async def run(self, stop: asyncio.Event) -> None:
        await init_mongo_indexes()
        await self.monitor.load_pending()
        self.build()

        tasks = [asyncio.create_task(c.run(), name=f"consumer:{c.name}") for c in self.consumers]
        for s in self.schedulers:
            s.start()
        logger.info("worker started (%d consumers, %d schedulers)", len(self.consumers), len(self.schedulers))

        await stop.wait()
        logger.info("worker stopping")

        for s in self.schedulers:
            await s.stop()
        for c in self.consumers:
            await c.stop()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("worker stopped")


async def _main() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop.set())

    try:
        await Worker.from_settings().run(stop)
    finally:
        await close_mongo_client()


def main() -> None:
    configure_logging()
    asyncio.run(_main())


if __name__ == "__main__":
    main()
