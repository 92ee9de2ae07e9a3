"""
In-memory implementations of the repository interfaces and of the outside
services, for unit tests.

Every conditional write completes without awaiting in between, which gives
the same atomicity a single Mongo update has under asyncio.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.domain.entities.job_entity import JobEntity
from core.domain.entities.monitored_tx_entity import MonitoredTransactionEntity
from core.domain.entities.quote_entity import QuoteEntity, RouteStep
from core.domain.entities.swap_entity import SwapEntity
from core.domain.entities.trigger_entities import (
    AlertHistoryEntity,
    DCAExecutionEntity,
    DCAStrategyEntity,
    LimitOrderEntity,
    PriceAlertEntity,
    TriggerClaim,
)
from core.domain.enums.job_enums import JobStatus
from core.domain.enums.swap_enums import ChainTxState, ChainType
from core.domain.enums.trigger_enums import DCAExecutionStatus, DCAStatus, LimitOrderStatus
from core.domain.repositories import (
    AlertHistoryRepository,
    DCAExecutionRepository,
    DCAStrategyRepository,
    JobRepository,
    LimitOrderRepository,
    MonitoredTransactionRepository,
    PriceAlertRepository,
    QuoteRepository,
    SwapRepository,
)
from core.domain.schemas.chain_types import BridgeStatus, ChainTxStatus, SubmitResult, UnsignedTransaction
from core.services.exceptions import PriceUnavailableError
from core.services.executors.base import BaseStepExecutor
from core.services.normalize import _norm_address
from core.services.price_service import PriceRequest, price_key


class Clock:
    def __init__(self, now_ms: int = 1_700_000_000_000) -> None:
        self.now = now_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def _copy(entity):
    return entity.model_copy(deep=True) if entity is not None else None


def _claim_free(entity, now_ms: int) -> bool:
    claim = entity.claim
    if claim is None:
        return True
    return TriggerClaim.model_validate(claim).until < now_ms


def _holds(entity, token: str) -> bool:
    return entity.claim is not None and TriggerClaim.model_validate(entity.claim).token == token


# ---------------------------------------------------------------------- #
# repositories
# ---------------------------------------------------------------------- #


class InMemoryQuoteRepository(QuoteRepository):
    def __init__(self) -> None:
        self.docs: Dict[str, QuoteEntity] = {}

    async def insert(self, entity: QuoteEntity) -> QuoteEntity:
        entity = entity.touch_for_insert()
        self.docs[entity.id] = _copy(entity)
        return entity

    async def get(self, quote_id: str) -> Optional[QuoteEntity]:
        return _copy(self.docs.get(quote_id))


class InMemorySwapRepository(SwapRepository):
    def __init__(self) -> None:
        self.docs: Dict[str, SwapEntity] = {}
        self.writes = 0

    async def insert(self, entity: SwapEntity) -> SwapEntity:
        if entity.client_ref:
            for s in self.docs.values():
                if s.client_ref == entity.client_ref:
                    return _copy(s)
        entity = entity.touch_for_insert()
        self.docs[entity.id] = _copy(entity)
        return entity

    async def get(self, swap_id: str) -> Optional[SwapEntity]:
        return _copy(self.docs.get(swap_id))

    async def get_by_client_ref(self, client_ref: str) -> Optional[SwapEntity]:
        for s in self.docs.values():
            if s.client_ref == client_ref:
                return _copy(s)
        return None

    async def update_if(self, entity: SwapEntity, *, expected_version: int) -> bool:
        current = self.docs.get(entity.id)
        if current is None or current.version != expected_version:
            return False
        entity.touch_for_update()
        entity.version = expected_version + 1
        self.docs[entity.id] = _copy(entity)
        self.writes += 1
        return True

    async def list_by_user(
        self,
        *,
        user_address: str,
        limit: int = 20,
        offset: int = 0,
        status: Optional[str] = None,
    ) -> Tuple[List[SwapEntity], int]:
        rows = [
            s for s in reversed(list(self.docs.values()))
            if s.user_address == _norm_address(user_address) and (status is None or s.status == status)
        ]
        return [_copy(s) for s in rows[offset:offset + limit]], len(rows)


class InMemoryMonitoredTransactionRepository(MonitoredTransactionRepository):
    def __init__(self) -> None:
        self.docs: Dict[Tuple[str, int], MonitoredTransactionEntity] = {}

    async def upsert(self, entity: MonitoredTransactionEntity) -> MonitoredTransactionEntity:
        entity = entity.touch_for_insert()
        key = (entity.swap_id, entity.step_index)
        existing = self.docs.get(key)
        if existing is not None:
            entity.id = existing.id
        self.docs[key] = _copy(entity)
        return _copy(entity)

    async def get(self, *, swap_id: str, step_index: int) -> Optional[MonitoredTransactionEntity]:
        return _copy(self.docs.get((swap_id, int(step_index))))

    async def record_check(
        self,
        *,
        swap_id: str,
        step_index: int,
        now_ms: int,
        drop_rechecks: Optional[int] = None,
        seen_block_number: Optional[int] = None,
    ) -> None:
        w = self.docs.get((swap_id, int(step_index)))
        if w is None:
            return
        w.last_checked_at = now_ms
        w.checks += 1
        if drop_rechecks is not None:
            w.drop_rechecks = drop_rechecks
        if seen_block_number is not None:
            w.seen_block_number = seen_block_number

    async def delete(self, *, swap_id: str, step_index: int) -> None:
        self.docs.pop((swap_id, int(step_index)), None)

    async def list_all(self) -> List[MonitoredTransactionEntity]:
        return [_copy(w) for w in sorted(self.docs.values(), key=lambda w: w.started_at)]


class InMemoryJobRepository(JobRepository):
    def __init__(self) -> None:
        self.jobs: Dict[str, JobEntity] = {}

    async def insert(self, job: JobEntity) -> JobEntity:
        if job.dedupe_key:
            for j in self.jobs.values():
                if j.dedupe_key == job.dedupe_key:
                    return _copy(j)
        job = job.touch_for_insert()
        self.jobs[job.id] = _copy(job)
        return job

    async def get(self, job_id: str) -> Optional[JobEntity]:
        return _copy(self.jobs.get(job_id))

    async def claim_next(self, *, queue: str, worker_id: str, now_ms: int, lease_ms: int) -> Optional[JobEntity]:
        runnable = [
            j for j in self.jobs.values()
            if j.queue == queue and (
                (j.status == JobStatus.WAITING and j.run_at <= now_ms)
                or (j.status == JobStatus.ACTIVE and j.locked_until is not None and j.locked_until < now_ms)
            )
        ]
        if not runnable:
            return None
        job = min(runnable, key=lambda j: j.run_at)
        job.status = JobStatus.ACTIVE.value
        job.locked_until = now_ms + lease_ms
        job.worker_id = worker_id
        job.attempts_made += 1
        return _copy(job)

    def _active(self, job_id: str, worker_id: str) -> Optional[JobEntity]:
        job = self.jobs.get(job_id)
        if job is None or job.worker_id != worker_id or job.status != JobStatus.ACTIVE:
            return None
        return job

    async def complete(self, *, job_id: str, worker_id: str, result: Optional[Dict[str, Any]], expire_at) -> bool:
        job = self._active(job_id, worker_id)
        if job is None:
            return False
        job.status = JobStatus.COMPLETED.value
        job.result = result or {}
        job.dedupe_key = None
        job.locked_until = None
        job.expire_at = expire_at
        return True

    async def fail(self, *, job_id: str, worker_id: str, error: str, expire_at) -> bool:
        job = self._active(job_id, worker_id)
        if job is None:
            return False
        job.status = JobStatus.FAILED.value
        job.last_error = error
        job.dedupe_key = None
        job.locked_until = None
        job.expire_at = expire_at
        return True

    async def reschedule(
        self,
        *,
        job_id: str,
        worker_id: str,
        run_at: int,
        error: Optional[str] = None,
        count_attempt: bool = True,
    ) -> bool:
        job = self._active(job_id, worker_id)
        if job is None:
            return False
        job.status = JobStatus.WAITING.value
        job.run_at = run_at
        job.locked_until = None
        job.worker_id = None
        if error is not None:
            job.last_error = error
        if not count_attempt:
            job.attempts_made -= 1
        return True


class InMemoryPriceAlertRepository(PriceAlertRepository):
    def __init__(self) -> None:
        self.docs: Dict[str, PriceAlertEntity] = {}

    async def insert(self, entity: PriceAlertEntity) -> PriceAlertEntity:
        entity = entity.touch_for_insert()
        self.docs[entity.id] = _copy(entity)
        return entity

    async def get(self, alert_id: str) -> Optional[PriceAlertEntity]:
        return _copy(self.docs.get(alert_id))

    async def list_by_user(self, *, user_address: str, active_only: bool = False) -> List[PriceAlertEntity]:
        return [
            _copy(a) for a in self.docs.values()
            if a.user_address == _norm_address(user_address) and (a.is_active or not active_only)
        ]

    async def list_active(self) -> List[PriceAlertEntity]:
        return [_copy(a) for a in self.docs.values() if a.is_active and not a.fired]

    async def deactivate(self, *, alert_id: str, user_address: str) -> bool:
        a = self.docs.get(alert_id)
        if a is None or a.user_address != _norm_address(user_address) or not a.is_active:
            return False
        a.is_active = False
        return True

    async def touch_checked(self, alert_ids: Sequence[str], *, now_ms: int) -> None:
        for i in alert_ids:
            if i in self.docs:
                self.docs[i].last_checked_at = now_ms

    async def claim(self, alert_id: str, *, token: str, until_ms: int, now_ms: int) -> bool:
        a = self.docs.get(alert_id)
        if a is None or not a.is_active or a.fired or not _claim_free(a, now_ms):
            return False
        a.claim = TriggerClaim(token=token, until=until_ms)
        return True

    async def mark_fired(self, alert_id: str, *, token: str, price: float, now_ms: int) -> bool:
        a = self.docs.get(alert_id)
        if a is None or not _holds(a, token):
            return False
        a.fired, a.is_active, a.fired_at, a.triggered_price = True, False, now_ms, price
        a.claim, a.last_error, a.consecutive_failures = None, None, 0
        return True

    async def release(self, alert_id: str, *, token: str, error: str) -> bool:
        a = self.docs.get(alert_id)
        if a is None or not _holds(a, token):
            return False
        a.claim, a.last_error = None, error
        a.consecutive_failures += 1
        return True


class InMemoryAlertHistoryRepository(AlertHistoryRepository):
    def __init__(self) -> None:
        self.rows: Dict[str, AlertHistoryEntity] = {}

    async def insert_once(self, entity: AlertHistoryEntity) -> bool:
        if entity.alert_id in self.rows:
            return False
        self.rows[entity.alert_id] = _copy(entity.touch_for_insert())
        return True

    async def set_notifications(self, alert_id: str, channels: Sequence[str]) -> None:
        if alert_id in self.rows:
            self.rows[alert_id].notifications_sent = list(channels)

    async def list_by_user(self, *, user_address: str, limit: int = 50) -> List[AlertHistoryEntity]:
        rows = [r for r in reversed(list(self.rows.values())) if r.user_address == _norm_address(user_address)]
        return [_copy(r) for r in rows[:limit]]


class InMemoryLimitOrderRepository(LimitOrderRepository):
    def __init__(self) -> None:
        self.docs: Dict[str, LimitOrderEntity] = {}

    async def insert(self, entity: LimitOrderEntity) -> LimitOrderEntity:
        entity = entity.touch_for_insert()
        self.docs[entity.id] = _copy(entity)
        return entity

    async def get(self, order_id: str) -> Optional[LimitOrderEntity]:
        return _copy(self.docs.get(order_id))

    async def list_by_user(self, *, user_address: str, status: Optional[str] = None) -> List[LimitOrderEntity]:
        return [
            _copy(o) for o in self.docs.values()
            if o.user_address == _norm_address(user_address) and (status is None or o.status == status)
        ]

    async def list_pending(self) -> List[LimitOrderEntity]:
        return [_copy(o) for o in self.docs.values() if o.status == LimitOrderStatus.PENDING and o.is_active]

    def _close(self, o: LimitOrderEntity, status: LimitOrderStatus) -> None:
        o.status = status.value
        o.is_active = False

    async def cancel(self, *, order_id: str, user_address: str) -> bool:
        o = self.docs.get(order_id)
        if o is None or o.user_address != _norm_address(user_address) or o.status != LimitOrderStatus.PENDING:
            return False
        self._close(o, LimitOrderStatus.CANCELLED)
        return True

    async def expire(self, order_id: str, *, now_ms: int) -> bool:
        o = self.docs.get(order_id)
        if (
            o is None
            or o.status != LimitOrderStatus.PENDING
            or o.expires_at is None
            or o.expires_at > now_ms
            or not _claim_free(o, now_ms)
        ):
            return False
        self._close(o, LimitOrderStatus.EXPIRED)
        return True

    async def touch_checked(self, order_ids: Sequence[str], *, now_ms: int) -> None:
        for i in order_ids:
            if i in self.docs:
                self.docs[i].last_checked_at = now_ms

    async def claim(self, order_id: str, *, token: str, until_ms: int, now_ms: int) -> bool:
        o = self.docs.get(order_id)
        if o is None or o.status != LimitOrderStatus.PENDING or not o.is_active or not _claim_free(o, now_ms):
            return False
        o.claim = TriggerClaim(token=token, until=until_ms)
        return True

    async def mark_triggered(self, order_id: str, *, token: str, swap_id: str, execution_price: float, now_ms: int) -> bool:
        o = self.docs.get(order_id)
        if o is None or o.status != LimitOrderStatus.PENDING or not _holds(o, token):
            return False
        self._close(o, LimitOrderStatus.TRIGGERED)
        o.swap_id, o.execution_price, o.triggered_at = swap_id, execution_price, now_ms
        o.claim, o.last_error, o.consecutive_failures = None, None, 0
        return True

    async def release(self, order_id: str, *, token: str, error: str, max_failures: int) -> Optional[LimitOrderEntity]:
        o = self.docs.get(order_id)
        if o is None or not _holds(o, token):
            return None
        o.claim, o.last_error = None, error
        o.consecutive_failures += 1
        if o.consecutive_failures >= max_failures and o.status == LimitOrderStatus.PENDING:
            self._close(o, LimitOrderStatus.FAILED)
        return _copy(o)


class InMemoryDCAStrategyRepository(DCAStrategyRepository):
    def __init__(self) -> None:
        self.docs: Dict[str, DCAStrategyEntity] = {}

    async def insert(self, entity: DCAStrategyEntity) -> DCAStrategyEntity:
        entity = entity.touch_for_insert()
        self.docs[entity.id] = _copy(entity)
        return entity

    async def get(self, strategy_id: str) -> Optional[DCAStrategyEntity]:
        return _copy(self.docs.get(strategy_id))

    async def list_by_user(self, *, user_address: str) -> List[DCAStrategyEntity]:
        return [_copy(s) for s in self.docs.values() if s.user_address == _norm_address(user_address)]

    async def list_due(self, *, now_ms: int) -> List[DCAStrategyEntity]:
        return [
            _copy(s) for s in self.docs.values()
            if s.status == DCAStatus.ACTIVE and s.next_execution_at <= now_ms
        ]

    async def transition(
        self,
        *,
        strategy_id: str,
        user_address: str,
        from_statuses: Sequence[str],
        to_status: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> bool:
        s = self.docs.get(strategy_id)
        if s is None or s.user_address != _norm_address(user_address) or s.status not in list(from_statuses):
            return False
        s.status = to_status
        s.is_active = to_status == DCAStatus.ACTIVE
        for k, v in (extra or {}).items():
            setattr(s, k, v)
        return True

    async def touch_checked(self, strategy_ids: Sequence[str], *, now_ms: int) -> None:
        for i in strategy_ids:
            if i in self.docs:
                self.docs[i].last_checked_at = now_ms

    async def claim(self, strategy_id: str, *, token: str, until_ms: int, now_ms: int) -> bool:
        s = self.docs.get(strategy_id)
        if s is None or s.status != DCAStatus.ACTIVE or s.next_execution_at > now_ms or not _claim_free(s, now_ms):
            return False
        s.claim = TriggerClaim(token=token, until=until_ms)
        return True

    async def record_success(
        self,
        strategy_id: str,
        *,
        token: str,
        expected_execution_number: int,
        next_execution_at: int,
        total_input_spent: str,
        total_output_expected: str,
        completed: bool,
        now_ms: int,
    ) -> bool:
        s = self.docs.get(strategy_id)
        if s is None or not _holds(s, token) or s.execution_number != expected_execution_number:
            return False
        s.execution_number += 1
        s.next_execution_at = next_execution_at
        s.total_input_spent = total_input_spent
        s.total_output_expected = total_output_expected
        s.consecutive_failures = 0
        s.claim, s.last_error = None, None
        if completed:
            s.status, s.is_active, s.completed_at = DCAStatus.COMPLETED.value, False, now_ms
        return True

    async def record_skip(self, strategy_id: str, *, token: str, next_execution_at: int, reason: str) -> bool:
        s = self.docs.get(strategy_id)
        if s is None or not _holds(s, token):
            return False
        s.next_execution_at, s.last_error, s.claim = next_execution_at, reason, None
        return True

    async def record_failure(
        self,
        strategy_id: str,
        *,
        token: str,
        next_execution_at: int,
        error: str,
        max_failures: int,
    ) -> Optional[DCAStrategyEntity]:
        s = self.docs.get(strategy_id)
        if s is None or not _holds(s, token):
            return None
        s.next_execution_at, s.last_error, s.claim = next_execution_at, error, None
        s.consecutive_failures += 1
        if s.consecutive_failures >= max_failures and s.status == DCAStatus.ACTIVE:
            s.status, s.is_active = DCAStatus.FAILED.value, False
        return _copy(s)


class InMemoryDCAExecutionRepository(DCAExecutionRepository):
    def __init__(self) -> None:
        self.rows: List[DCAExecutionEntity] = []

    async def insert(self, entity: DCAExecutionEntity) -> bool:
        for r in self.rows:
            if (r.strategy_id, r.execution_number, r.attempt) == (entity.strategy_id, entity.execution_number, entity.attempt):
                return False
        self.rows.append(_copy(entity.touch_for_insert()))
        return True

    async def count_attempts(self, *, strategy_id: str, execution_number: int) -> int:
        return sum(1 for r in self.rows if r.strategy_id == strategy_id and r.execution_number == execution_number)

    async def find_completed(self, *, strategy_id: str, execution_number: int) -> Optional[DCAExecutionEntity]:
        for r in self.rows:
            if (r.strategy_id, r.execution_number, r.status) == (strategy_id, execution_number, DCAExecutionStatus.COMPLETED):
                return _copy(r)
        return None

    async def list_by_strategy(self, *, strategy_id: str, limit: int = 50) -> List[DCAExecutionEntity]:
        return [_copy(r) for r in reversed(self.rows) if r.strategy_id == strategy_id][:limit]


# ---------------------------------------------------------------------- #
# outside services
# ---------------------------------------------------------------------- #


class StubPriceService:
    """
    Stands in for PriceService: USD prices set per (chain, address).
    """

    def __init__(self, prices: Optional[Dict[Tuple[str, str], float]] = None) -> None:
        self.prices: Dict[str, float] = {}
        self.batches: List[List[str]] = []
        for (chain, address), p in (prices or {}).items():
            self.set(chain, address, p)

    def set(self, chain: str, address: str, price: Optional[float]) -> None:
        key = price_key(chain, address)
        if price is None:
            self.prices.pop(key, None)
        else:
            self.prices[key] = price

    async def get_prices(self, requests) -> Dict[str, Optional[float]]:
        keys = [r.key for r in requests]
        self.batches.append(keys)
        return {k: self.prices.get(k) for k in keys}

    async def get_price(self, chain: str, address: str, *, decimals: int = 18) -> float:
        key = PriceRequest(chain=chain, address=address, decimals=decimals).key
        if key not in self.prices:
            raise PriceUnavailableError(f"no USD price for {key}")
        return self.prices[key]


class FakeQuoteProvider:
    def __init__(self, response: Optional[Dict[str, Any]] = None) -> None:
        self.response = response
        self.calls: List[Dict[str, Any]] = []

    async def get_quote(self, **kwargs) -> Optional[Dict[str, Any]]:
        self.calls.append(kwargs)
        return self.response


class FakeNotifier:
    def __init__(self) -> None:
        self.sent: List[Tuple[str, Dict[str, Any]]] = []

    async def send_push(self, **kwargs) -> bool:
        self.sent.append(("push", kwargs))
        return True

    async def send_email(self, **kwargs) -> bool:
        self.sent.append(("email", kwargs))
        return True

    async def send_telegram(self, **kwargs) -> bool:
        self.sent.append(("telegram", kwargs))
        return True


class FakeExecutor(BaseStepExecutor):
    """
    Executor whose chain state is scripted by the test: `statuses[tx_hash]`
    is what `get_status` reports.
    """

    chain_type = ChainType.EVM

    def __init__(self) -> None:
        self.submitted: List[str] = []
        self.statuses: Dict[str, ChainTxStatus] = {}
        self.reject: Optional[Exception] = None

    def build_transaction(self, step: RouteStep, user_address: str) -> UnsignedTransaction:
        return UnsignedTransaction(chain_id=step.chain_id, to=step.tx_to, data=step.tx_data, value=step.tx_value or "0")

    async def submit(self, step, signed_transaction, *, user_address, cex_credentials=None) -> SubmitResult:
        if self.reject is not None:
            raise self.reject
        tx_hash = f"0x{len(self.submitted) + 1:064x}"
        self.submitted.append(signed_transaction)
        return SubmitResult(tx_hash=tx_hash)

    async def get_status(self, chain_id, tx_hash, *, step, user_address, cex_credentials=None) -> ChainTxStatus:
        return self.statuses.get(tx_hash, ChainTxStatus(state=ChainTxState.PENDING))


class FakeExecutorRegistry:
    def __init__(self, executor: BaseStepExecutor) -> None:
        self.executor = executor

    def for_chain(self, chain_id: str) -> BaseStepExecutor:
        return self.executor


class FakeBridgeStatus:
    def __init__(self) -> None:
        self.statuses: Dict[str, BridgeStatus] = {}

    async def get_status(self, *, tx_hash: str, from_chain: str, to_chain: Optional[str] = None) -> BridgeStatus:
        return self.statuses.get(tx_hash, BridgeStatus(state=ChainTxState.PENDING))
