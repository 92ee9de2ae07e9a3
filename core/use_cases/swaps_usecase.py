from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from adapters.external.database.quote_repository_mongodb import QuoteRepositoryMongoDB
from adapters.external.database.swap_repository_mongodb import SwapRepositoryMongoDB
from config import get_settings
from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.swap_entity import SwapEntity, SwapStepExecution
from core.domain.enums.swap_enums import StepStatus, SwapStatus
from core.domain.repositories.quote_repository_interface import QuoteRepository
from core.domain.repositories.swap_repository_interface import SwapRepository
from core.domain.schemas.chain_types import UnsignedTransaction
from core.services.chain_registry import monitor_type_for
from core.services.exceptions import (
    ConcurrentUpdateError,
    OmniSwapError,
    QueueUnavailableError,
    QuoteExpiredError,
    QuoteNotExecutableError,
    QuoteNotFoundError,
    RouteNotFoundError,
    StepIndexMismatchError,
    StepNotPendingError,
    SwapFinishedError,
    SwapNotFoundError,
    ValidationFailedError,
)
from core.services.executors.registry import ExecutorRegistry
from core.services.normalize import _norm, _norm_address, _to_decimal
from core.services.retry import retry_async
from core.services.swap_state_machine import ensure_step_transition, ensure_transition, status_after_submit
from core.services.transaction_monitor import TransactionMonitorService
from core.use_cases.quotes_usecase import platform_fee_for

logger = logging.getLogger(__name__)

Mutation = Callable[[SwapEntity], bool]


def _add_amounts(a: Optional[str], b: Optional[str]) -> str:
    total = _to_decimal(a) + _to_decimal(b)
    return str(int(total)) if total == total.to_integral_value() else format(total, "f")


@dataclass
class SwapsUseCase:
    """
    Swap state machine: turns a quote route into a sequence of step
    executions and advances it from monitor callbacks.

    Every write is a compare-and-swap on `SwapEntity.version`. Monitor
    callbacks re-read and re-apply on conflict up to `max_cas_retries` times.
    """

    swaps: SwapRepository
    quotes: QuoteRepository
    executors: ExecutorRegistry
    monitor: TransactionMonitorService
    fee_bps: int = 40
    max_cas_retries: int = 3
    clock: Callable[[], int] = MongoEntity.now_ms

    @classmethod
    def from_settings(cls, monitor: Optional[TransactionMonitorService] = None) -> "SwapsUseCase":
        st = get_settings()
        mon = monitor or TransactionMonitorService.from_settings()
        return cls(
            swaps=SwapRepositoryMongoDB(),
            quotes=QuoteRepositoryMongoDB(),
            executors=mon.executors,
            monitor=mon,
            fee_bps=int(st.PLATFORM_FEE_BPS),
        )

    # ------------------------------------------------------------------ #
    # helpers
    # ------------------------------------------------------------------ #

    async def _load(self, swap_id: str) -> SwapEntity:
        swap = await self.swaps.get(swap_id)
        if swap is None:
            raise SwapNotFoundError(f"swap {swap_id} not found", details={"swap_id": swap_id})
        return swap

    @staticmethod
    def _check_executable(swap: SwapEntity, step_index: int) -> SwapStepExecution:
        if swap.is_terminal:
            raise SwapFinishedError(
                f"swap {swap.id} is already {swap.status}",
                details={"swap_id": swap.id, "status": str(swap.status)},
            )
        if int(step_index) != swap.current_step_index:
            raise StepIndexMismatchError(
                f"step {step_index} is not the current step ({swap.current_step_index})",
                details={"expected": swap.current_step_index, "got": int(step_index)},
            )
        step = swap.steps[swap.current_step_index]
        if StepStatus(step.status) != StepStatus.PENDING:
            raise StepNotPendingError(
                f"step {step_index} is {step.status}",
                details={"step_index": int(step_index), "status": str(step.status)},
            )
        return step

    async def _apply(self, swap_id: str, mutate: Mutation, *, swap: Optional[SwapEntity] = None) -> SwapEntity:
        """
        Apply `mutate` and persist it conditionally on the version read.
        `mutate` returns False for a no-op and may raise to abort.
        """
        for _ in range(max(self.max_cas_retries, 1)):
            current = swap if swap is not None else await self._load(swap_id)
            swap = None
            expected = current.version
            if not mutate(current):
                return current
            if await self.swaps.update_if(current, expected_version=expected):
                return current
            logger.info("swap %s changed concurrently (version %d); re-reading", swap_id, expected)

        raise ConcurrentUpdateError(f"swap {swap_id} kept changing concurrently", details={"swap_id": swap_id})

    # ------------------------------------------------------------------ #
    # creation
    # ------------------------------------------------------------------ #

    async def create_swap(
        self,
        *,
        quote_id: str,
        route_id: str,
        user_address: str,
        tenant_id: Optional[str] = None,
        cex_credentials: Optional[Dict[str, Any]] = None,
        client_ref: Optional[str] = None,
    ) -> SwapEntity:
        if not _norm(user_address):
            raise ValidationFailedError("user_address is required", details={"field": "user_address"})

        if client_ref:
            existing = await self.swaps.get_by_client_ref(client_ref)
            if existing is not None:
                return existing

        quote = await self.quotes.get(quote_id)
        if quote is None:
            raise QuoteNotFoundError(f"quote {quote_id} not found", details={"quote_id": quote_id})
        if self.clock() > quote.expires_at:
            raise QuoteExpiredError(
                f"quote {quote_id} expired",
                details={"quote_id": quote_id, "expires_at": quote.expires_at},
            )

        route = quote.find_route(route_id)
        if route is None:
            raise RouteNotFoundError(f"route {route_id} not in quote {quote_id}", details={"route_id": route_id})
        if quote.indicative:
            raise QuoteNotExecutableError(
                "indicative quotes carry no executable route; request a new quote",
                details={"quote_id": quote_id},
            )
        if not route.steps:
            raise RouteNotFoundError(f"route {route_id} has no steps", details={"route_id": route_id})

        swap = SwapEntity(
            user_address=_norm_address(user_address),
            tenant_id=tenant_id,
            quote_id=quote.id,
            route_id=route.id,
            client_ref=client_ref,
            route=route,
            steps=[SwapStepExecution.from_route_step(s) for s in route.steps],
            status=SwapStatus.PENDING,
            current_step_index=0,
            input_amount=route.input_amount,
            expected_output=route.expected_output,
            platform_fee=str(platform_fee_for(int(route.input_amount), self.fee_bps)),
            cex_credentials=cex_credentials,
        )
        saved = await self.swaps.insert(swap)
        logger.info("swap %s created (%d steps, user=%s)", saved.id, len(saved.steps), saved.user_address)
        return saved

    # ------------------------------------------------------------------ #
    # client-driven execution
    # ------------------------------------------------------------------ #

    async def get_pending_transaction(self, swap_id: str, step_index: int) -> UnsignedTransaction:
        swap = await self._load(swap_id)
        step = self._check_executable(swap, step_index)
        return self.executors.for_chain(step.chain_id).build_transaction(step, swap.user_address)

    async def execute_step(self, swap_id: str, step_index: int, signed_transaction: str) -> Dict[str, Any]:
        if not _norm(signed_transaction):
            raise ValidationFailedError("signed_transaction is required", details={"field": "signed_transaction"})

        swap = await self._load(swap_id)
        step = self._check_executable(swap, step_index)
        executor = self.executors.for_chain(step.chain_id)

        try:
            result = await retry_async(
                lambda: executor.submit(
                    step,
                    signed_transaction,
                    user_address=swap.user_address,
                    cex_credentials=swap.cex_credentials,
                ),
                label=f"submit swap={swap_id} step={step_index}",
            )
        except OmniSwapError as exc:
            logger.warning("swap %s step %d submission failed: %s", swap_id, step_index, exc.message)
            await self._fail_step(swap_id, step_index, f"{exc.code}: {exc.message}", swap=swap)
            raise

        tx_hash = result.tx_hash
        now = self.clock()

        def _mark_submitted(s: SwapEntity) -> bool:
            st = self._check_executable(s, step_index)
            st.status = ensure_step_transition(st.status, StepStatus.SUBMITTED)
            st.tx_hash = tx_hash
            st.started_at = now
            target = status_after_submit(st.type)
            if SwapStatus(s.status) != target:
                s.status = ensure_transition(s.status, target)
            if s.started_at is None:
                s.started_at = now
            return True

        swap = await self._apply(swap_id, _mark_submitted, swap=swap)
        logger.info("swap %s step %d submitted tx=%s", swap_id, step_index, tx_hash)

        try:
            await self.monitor.add_transaction(
                swap_id,
                step_index,
                step.chain_id,
                tx_hash,
                monitor_type_for(step.type, step.chain_id),
            )
        except OmniSwapError:
            raise
        except Exception as exc:
            logger.exception("could not register monitor watch for swap %s step %d", swap_id, step_index)
            raise QueueUnavailableError(
                "transaction broadcast but monitoring could not be scheduled",
                details={"swap_id": swap_id, "tx_hash": tx_hash},
            ) from exc

        return {"tx_hash": tx_hash, "swap": swap}

    # ------------------------------------------------------------------ #
    # monitor callbacks
    # ------------------------------------------------------------------ #

    async def on_step_confirming(self, swap_id: str, step_index: int, block_number: Optional[int]) -> SwapEntity:
        def _mutate(s: SwapEntity) -> bool:
            if s.is_terminal or not (0 <= step_index < len(s.steps)):
                return False
            st = s.steps[step_index]
            status = StepStatus(st.status)
            if status == StepStatus.CONFIRMING:
                if block_number is None or st.block_number == block_number:
                    return False
                st.block_number = block_number
                return True
            if status != StepStatus.SUBMITTED:
                return False
            st.status = ensure_step_transition(status, StepStatus.CONFIRMING)
            st.block_number = block_number
            return True

        return await self._apply(swap_id, _mutate)

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
    ) -> SwapEntity:
        now = self.clock()

        def _mutate(s: SwapEntity) -> bool:
            if s.is_terminal or not (0 <= step_index < len(s.steps)):
                return False
            st = s.steps[step_index]
            if StepStatus(st.status) == StepStatus.CONFIRMED:
                return False
            if step_index != s.current_step_index:
                logger.warning(
                    "ignoring confirmation of swap %s step %d (current is %d)",
                    swap_id, step_index, s.current_step_index,
                )
                return False

            st.status = ensure_step_transition(st.status, StepStatus.CONFIRMED)
            if block_number is not None:
                st.block_number = block_number
            st.actual_output = actual_output or st.actual_output
            st.gas_used = gas_used or st.gas_used
            st.destination_tx_hash = destination_tx_hash or st.destination_tx_hash
            st.completed_at = now
            if gas_cost:
                s.gas_cost = _add_amounts(s.gas_cost, gas_cost)

            if step_index == len(s.steps) - 1:
                s.status = ensure_transition(s.status, SwapStatus.COMPLETING)
                s.status = ensure_transition(s.status, SwapStatus.COMPLETED)
                s.actual_output = st.actual_output or st.expected_output
                s.completed_at = now
            else:
                s.current_step_index = step_index + 1
                s.status = ensure_transition(s.status, SwapStatus.PROCESSING)
            return True

        swap = await self._apply(swap_id, _mutate)
        if swap.status == SwapStatus.COMPLETED:
            logger.info("swap %s completed (output=%s)", swap_id, swap.actual_output)
        return swap

    async def _fail_step(
        self,
        swap_id: str,
        step_index: int,
        error: str,
        *,
        swap: Optional[SwapEntity] = None,
    ) -> SwapEntity:
        now = self.clock()

        def _mutate(s: SwapEntity) -> bool:
            if s.is_terminal:
                return False
            if 0 <= step_index < len(s.steps):
                st = s.steps[step_index]
                if not StepStatus(st.status).is_terminal:
                    st.status = ensure_step_transition(st.status, StepStatus.FAILED)
                    st.error = error
                    st.completed_at = now
            s.status = ensure_transition(s.status, SwapStatus.FAILED)
            s.error = error
            s.completed_at = now
            return True

        return await self._apply(swap_id, _mutate, swap=swap)

    async def on_step_failed(self, swap_id: str, step_index: int, error: str) -> SwapEntity:
        swap = await self._fail_step(swap_id, step_index, error)
        logger.warning("swap %s failed at step %d: %s", swap_id, step_index, error)
        return swap

    async def refund_swap(
        self,
        swap_id: str,
        *,
        refund_tx_hash: str,
        reason: str = "",
        refunded_by: Optional[str] = None,
    ) -> SwapEntity:
        if not _norm(refund_tx_hash):
            raise ValidationFailedError("refund_tx_hash is required", details={"field": "refund_tx_hash"})
        now = self.clock()

        def _mutate(s: SwapEntity) -> bool:
            if s.is_terminal:
                raise SwapFinishedError(
                    f"swap {swap_id} is already {s.status}",
                    details={"swap_id": swap_id, "status": str(s.status)},
                )
            s.status = ensure_transition(s.status, SwapStatus.REFUNDED)
            s.refund_tx_hash = refund_tx_hash
            s.refund_reason = reason or None
            s.refunded_by = refunded_by
            s.completed_at = now
            return True

        swap = await self._apply(swap_id, _mutate)
        logger.info("swap %s refunded tx=%s by=%s", swap_id, refund_tx_hash, refunded_by or "-")
        return swap

    # ------------------------------------------------------------------ #
    # reads
    # ------------------------------------------------------------------ #

    async def get_swap(self, swap_id: str) -> SwapEntity:
        return await self._load(swap_id)

    async def get_swaps_by_user(
        self,
        address: str,
        *,
        limit: int = 20,
        offset: int = 0,
        status: Optional[str] = None,
    ) -> Tuple[List[SwapEntity], int]:
        if not _norm(address):
            raise ValidationFailedError("address is required", details={"field": "address"})
        if not (1 <= int(limit) <= 100):
            raise ValidationFailedError("limit must be between 1 and 100", details={"field": "limit"})
        if int(offset) < 0:
            raise ValidationFailedError("offset must be >= 0", details={"field": "offset"})
        if status is not None:
            try:
                status = SwapStatus(status).value
            except ValueError:
                raise ValidationFailedError(f"unknown status {status}", details={"field": "status"})
        return await self.swaps.list_by_user(user_address=address, limit=int(limit), offset=int(offset), status=status)
