from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Optional, Protocol

from adapters.external.database.job_repository_mongodb import JobRepositoryMongoDB
from adapters.external.database.monitored_tx_repository_mongodb import MonitoredTransactionRepositoryMongoDB
from adapters.external.database.swap_repository_mongodb import SwapRepositoryMongoDB
from adapters.external.market.bridge_status_http_client import BridgeStatusHttpClient
from config import get_settings
from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.job_entity import Backoff, JobEntity
from core.domain.entities.monitored_tx_entity import MonitoredTransactionEntity
from core.domain.entities.swap_entity import SwapEntity, SwapStepExecution
from core.domain.enums.job_enums import QueueName
from core.domain.enums.swap_enums import ChainTxState, MonitorType, StepStatus
from core.domain.repositories.monitored_tx_repository_interface import MonitoredTransactionRepository
from core.domain.repositories.swap_repository_interface import SwapRepository
from core.domain.schemas.chain_types import ChainTxStatus
from core.domain.schemas.job_payloads import TransactionMonitorJob
from core.services.exceptions import (
    InsufficientOutputError,
    OmniSwapError,
    TransactionDroppedError,
    TransactionRevertedError,
    TransactionTimeoutError,
    TransientRpcError,
)
from core.services.executors.registry import ExecutorRegistry
from core.services.job_queue import JobQueue, RescheduleJob

logger = logging.getLogger(__name__)

_SECOND = 1000
_MINUTE = 60 * _SECOND

POLL_DELAY_MS: Dict[MonitorType, int] = {
    MonitorType.EVM: 5 * _SECOND,
    MonitorType.SOLANA: 2 * _SECOND,
    MonitorType.SUI: 3 * _SECOND,
    MonitorType.BRIDGE: 30 * _SECOND,
    MonitorType.CEX: 30 * _SECOND,
}

MAX_WAIT_MS: Dict[MonitorType, int] = {
    MonitorType.EVM: 30 * _MINUTE,
    MonitorType.SOLANA: 5 * _MINUTE,
    MonitorType.SUI: 5 * _MINUTE,
    MonitorType.BRIDGE: 120 * _MINUTE,
    MonitorType.CEX: 120 * _MINUTE,
}


class SwapStepListener(Protocol):
    async def on_step_confirming(self, swap_id: str, step_index: int, block_number: Optional[int]) -> object: ...

    async def on_step_confirmed(
        self,
        swap_id: str,
        step_index: int,
        *,
        block_number: Optional[int] = None,
        actual_output: Optional[str] = None,
        gas_used: Optional[str] = None,
        gas_cost: Optional[str] = None,
        destination_tx_hash: Optional[str] = None,
    ) -> object: ...

    async def on_step_failed(self, swap_id: str, step_index: int, error: str) -> object: ...


@dataclass(frozen=True)
class MonitorOutcome:
    state: str
    done: bool
    delay_ms: int = 0


def _watch_key(swap_id: str, step_index: int, tx_hash: str) -> str:
    return f"{swap_id}:{step_index}:{tx_hash}"


class TransactionMonitorService:
    """
    Tracks submitted step transactions until they settle and reports the
    result to the swap state machine.

    Each watch is persisted and polled by `transaction-monitor` jobs; a poll
    that does not settle the transaction reschedules the job with the
    per-type delay.
    """

    def __init__(
        self,
        *,
        watches: MonitoredTransactionRepository,
        swaps: SwapRepository,
        queue: JobQueue,
        executors: ExecutorRegistry,
        bridge_status: BridgeStatusHttpClient,
        max_drop_rechecks: int = 5,
        clock: Callable[[], int] = MongoEntity.now_ms,
    ) -> None:
        self.watches = watches
        self.swaps = swaps
        self.queue = queue
        self.executors = executors
        self.bridge_status = bridge_status
        self.max_drop_rechecks = int(max_drop_rechecks)
        self.clock = clock
        self._listener: Optional[SwapStepListener] = None

    @classmethod
    def from_settings(cls) -> "TransactionMonitorService":
        st = get_settings()
        return cls(
            watches=MonitoredTransactionRepositoryMongoDB(),
            swaps=SwapRepositoryMongoDB(),
            queue=JobQueue(JobRepositoryMongoDB(), retention_seconds=st.JOB_RETENTION_SECONDS),
            executors=ExecutorRegistry.from_settings(),
            bridge_status=BridgeStatusHttpClient.from_settings(),
            max_drop_rechecks=st.MONITOR_MAX_DROP_RECHECKS,
        )

    def set_listener(self, listener: SwapStepListener) -> None:
        self._listener = listener

    @property
    def listener(self) -> SwapStepListener:
        if self._listener is None:
            raise RuntimeError("TransactionMonitorService has no listener; call set_listener() first")
        return self._listener

    async def _enqueue(self, watch: MonitoredTransactionEntity, *, delay_ms: int) -> JobEntity:
        payload = TransactionMonitorJob(
            swap_id=watch.swap_id,
            step_index=watch.step_index,
            chain_id=watch.chain_id,
            tx_hash=watch.tx_hash,
            type=watch.type,
        )
        return await self.queue.enqueue(
            QueueName.TRANSACTION_MONITOR,
            payload,
            attempts=5,
            backoff=Backoff(delay_ms=POLL_DELAY_MS[MonitorType(watch.type)]),
            dedupe_key=_watch_key(watch.swap_id, watch.step_index, watch.tx_hash),
            delay_ms=delay_ms,
        )

    async def add_transaction(
        self,
        swap_id: str,
        step_index: int,
        chain_id: str,
        tx_hash: str,
        type: MonitorType,
    ) -> MonitoredTransactionEntity:
        watch = await self.watches.upsert(
            MonitoredTransactionEntity(
                swap_id=swap_id,
                step_index=int(step_index),
                chain_id=chain_id,
                tx_hash=tx_hash,
                type=type,
                started_at=self.clock(),
            )
        )
        await self._enqueue(watch, delay_ms=POLL_DELAY_MS[MonitorType(type)])
        logger.info("monitoring %s tx %s (swap=%s step=%d)", type, tx_hash, swap_id, step_index)
        return watch

    async def load_pending(self) -> int:
        """
        Re-enqueue a poll for every persisted watch. Used on worker start.
        """
        watches = await self.watches.list_all()
        for w in watches:
            await self._enqueue(w, delay_ms=0)
        if watches:
            logger.info("resumed monitoring of %d pending transactions", len(watches))
        return len(watches)

    async def _finish(self, watch: MonitoredTransactionEntity, state: str) -> MonitorOutcome:
        await self.watches.delete(swap_id=watch.swap_id, step_index=watch.step_index)
        return MonitorOutcome(state=state, done=True)

    async def _fail(self, watch: MonitoredTransactionEntity, exc: OmniSwapError) -> MonitorOutcome:
        logger.warning("swap %s step %d failed: %s", watch.swap_id, watch.step_index, exc.message)
        await self.listener.on_step_failed(watch.swap_id, watch.step_index, f"{exc.code}: {exc.message}")
        return await self._finish(watch, ChainTxState.FAILED.value)

    async def _pending(
        self,
        watch: MonitoredTransactionEntity,
        state: str,
        *,
        drop_rechecks: Optional[int] = None,
        seen_block_number: Optional[int] = None,
    ) -> MonitorOutcome:
        await self.watches.record_check(
            swap_id=watch.swap_id,
            step_index=watch.step_index,
            now_ms=self.clock(),
            drop_rechecks=drop_rechecks,
            seen_block_number=seen_block_number,
        )
        return MonitorOutcome(state=state, done=False, delay_ms=POLL_DELAY_MS[MonitorType(watch.type)])

    async def _poll(self, watch: MonitoredTransactionEntity, swap: SwapEntity, step: SwapStepExecution) -> ChainTxStatus:
        if MonitorType(watch.type) == MonitorType.BRIDGE:
            bs = await self.bridge_status.get_status(
                tx_hash=watch.tx_hash,
                from_chain=watch.chain_id,
                to_chain=step.destination_chain_id,
            )
            return ChainTxStatus(
                state=bs.state,
                actual_output=bs.received_amount,
                destination_tx_hash=bs.destination_tx_hash,
                error=bs.error,
            )

        executor = self.executors.for_chain(watch.chain_id)
        return await executor.get_status(
            watch.chain_id,
            watch.tx_hash,
            step=step,
            user_address=swap.user_address,
            cex_credentials=swap.cex_credentials,
        )

    async def check_transaction(self, swap_id: str, step_index: int) -> MonitorOutcome:
        watch = await self.watches.get(swap_id=swap_id, step_index=step_index)
        if watch is None:
            return MonitorOutcome(state="GONE", done=True)

        swap = await self.swaps.get(swap_id)
        if swap is None or swap.is_terminal or not (0 <= step_index < len(swap.steps)):
            return await self._finish(watch, "GONE")

        step = swap.steps[step_index]
        if StepStatus(step.status).is_terminal:
            return await self._finish(watch, str(step.status))

        mtype = MonitorType(watch.type)
        if self.clock() - watch.started_at > MAX_WAIT_MS[mtype]:
            return await self._fail(
                watch,
                TransactionTimeoutError(f"{mtype} transaction {watch.tx_hash} not settled in time"),
            )

        try:
            status = await self._poll(watch, swap, step)
        except TransientRpcError as exc:
            logger.warning("poll of %s failed transiently: %s", watch.tx_hash, exc.message)
            return await self._pending(watch, ChainTxState.PENDING.value)

        state = ChainTxState(status.state)

        if state == ChainTxState.CONFIRMED:
            if mtype == MonitorType.BRIDGE and status.actual_output is not None:
                if Decimal(status.actual_output) < Decimal(step.minimum_output or "0"):
                    return await self._fail(
                        watch,
                        InsufficientOutputError(
                            f"bridge delivered {status.actual_output}, minimum was {step.minimum_output}"
                        ),
                    )
            await self.listener.on_step_confirmed(
                swap_id,
                step_index,
                block_number=status.block_number,
                actual_output=status.actual_output,
                gas_used=status.gas_used,
                gas_cost=status.gas_cost,
                destination_tx_hash=status.destination_tx_hash,
            )
            return await self._finish(watch, state.value)

        if state == ChainTxState.FAILED:
            return await self._fail(watch, TransactionRevertedError(watch.tx_hash, status.error or ""))

        if state == ChainTxState.CONFIRMING:
            await self.listener.on_step_confirming(swap_id, step_index, status.block_number)
            return await self._pending(watch, state.value, seen_block_number=status.block_number)

        if state == ChainTxState.DROPPED:
            if watch.seen_block_number is not None:
                return await self._fail(
                    watch,
                    TransactionDroppedError(f"transaction {watch.tx_hash} was reorged out of block {watch.seen_block_number}"),
                )
            rechecks = watch.drop_rechecks + 1
            if rechecks > self.max_drop_rechecks:
                return await self._fail(watch, TransactionDroppedError(f"transaction {watch.tx_hash} was dropped"))
            return await self._pending(watch, state.value, drop_rechecks=rechecks)

        return await self._pending(watch, state.value)

    async def handle_job(self, job: JobEntity, payload: TransactionMonitorJob) -> Optional[RescheduleJob]:
        outcome = await self.check_transaction(payload.swap_id, payload.step_index)
        if outcome.done:
            return None
        return RescheduleJob(delay_ms=outcome.delay_ms, reason=outcome.state)
