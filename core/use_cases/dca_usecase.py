from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel

from adapters.external.database.dca_repository_mongodb import (
    DCAExecutionRepositoryMongoDB,
    DCAStrategyRepositoryMongoDB,
)
from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.job_entity import JobEntity
from core.domain.entities.quote_entity import TokenRef
from core.domain.entities.trigger_entities import DCAExecutionEntity, DCAStrategyEntity
from core.domain.enums.trigger_enums import (
    DCA_INTERVAL_MS,
    DCAExecutionStatus,
    DCAFrequency,
    DCAStatus,
    TriggerKind,
)
from core.domain.repositories.dca_repository_interface import DCAExecutionRepository, DCAStrategyRepository
from core.domain.schemas.job_payloads import BulkCheckJob
from core.services.chain_registry import get_chain
from core.services.exceptions import (
    InvalidTransitionError,
    PriceUnavailableError,
    TriggerNotFoundError,
    ValidationFailedError,
)
from core.services.normalize import _norm_address, _norm_lower, _to_decimal
from core.services.price_service import PriceRequest, PriceService
from core.services.trigger_engine import MAX_CONSECUTIVE_FAILURES, BulkCheckResult, FireOutcome, run_bulk_check
from core.use_cases.quotes_usecase import QuotesUseCase
from core.use_cases.swaps_usecase import SwapsUseCase

logger = logging.getLogger(__name__)

MIN_CUSTOM_INTERVAL_MS = 60 * 60 * 1000
FAILURE_BACKOFF_BASE_MS = 60_000
FAILURE_BACKOFF_MAX_MS = 60 * 60 * 1000


def interval_ms(strategy: DCAStrategyEntity) -> int:
    freq = DCAFrequency(strategy.frequency)
    if freq == DCAFrequency.CUSTOM:
        return int(strategy.custom_interval_ms or 0)
    return DCA_INTERVAL_MS[freq]


def failure_backoff_ms(consecutive_failures: int) -> int:
    n = max(int(consecutive_failures), 1)
    return min(FAILURE_BACKOFF_BASE_MS * 2 ** (n - 1), FAILURE_BACKOFF_MAX_MS)


def _sum(a: str, b: str) -> str:
    return str(int(_to_decimal(a) + _to_decimal(b)))


@dataclass
class DCAUseCase:
    """
    Dollar-cost averaging strategies: CRUD plus the recurring executor.

    Each due occurrence is claimed, quoted and turned into a swap with
    `client_ref = dca:<id>:<n>`; `execution_number` only advances through a
    conditional update on its previous value.
    """

    strategies: DCAStrategyRepository
    executions: DCAExecutionRepository
    prices: PriceService
    quotes: QuotesUseCase
    swaps: SwapsUseCase
    max_failures: int = MAX_CONSECUTIVE_FAILURES
    clock: Callable[[], int] = MongoEntity.now_ms

    kind: TriggerKind = TriggerKind.DCA

    @classmethod
    def from_settings(cls, swaps: Optional[SwapsUseCase] = None) -> "DCAUseCase":
        quotes = QuotesUseCase.from_settings()
        return cls(
            strategies=DCAStrategyRepositoryMongoDB(),
            executions=DCAExecutionRepositoryMongoDB(),
            prices=quotes.prices,
            quotes=quotes,
            swaps=swaps or SwapsUseCase.from_settings(),
        )

    # ------------------------------------------------------------------ #
    # CRUD
    # ------------------------------------------------------------------ #

    async def create_strategy(
        self,
        *,
        user_address: str,
        input_token: TokenRef,
        output_token: TokenRef,
        amount_per_execution: str,
        frequency: str,
        total_executions: Optional[int] = None,
        custom_interval_ms: Optional[int] = None,
        name: str = "",
        slippage_bps: int = 100,
        max_price_impact_bps: Optional[int] = 300,
        tenant_id: Optional[str] = None,
    ) -> DCAStrategyEntity:
        try:
            freq = DCAFrequency(str(frequency).upper())
        except ValueError:
            raise ValidationFailedError(f"unknown frequency {frequency}", details={"field": "frequency"})
        if freq == DCAFrequency.CUSTOM:
            if not custom_interval_ms or int(custom_interval_ms) < MIN_CUSTOM_INTERVAL_MS:
                raise ValidationFailedError(
                    f"custom_interval_ms must be at least {MIN_CUSTOM_INTERVAL_MS}",
                    details={"field": "custom_interval_ms"},
                )
        if total_executions is not None and not (2 <= int(total_executions) <= 365):
            raise ValidationFailedError("total_executions must be between 2 and 365", details={"field": "total_executions"})
        try:
            amount = int(str(amount_per_execution))
        except ValueError:
            raise ValidationFailedError("amount_per_execution must be an integer amount", details={"field": "amount_per_execution"})
        if amount <= 0:
            raise ValidationFailedError("amount_per_execution must be positive", details={"field": "amount_per_execution"})
        if not (1 <= int(slippage_bps) <= 5000):
            raise ValidationFailedError("slippage_bps must be between 1 and 5000", details={"field": "slippage_bps"})

        for t in (input_token, output_token):
            get_chain(t.chain)
        input_token = input_token.model_copy(update={"chain": _norm_lower(input_token.chain), "address": _norm_address(input_token.address)})
        output_token = output_token.model_copy(update={"chain": _norm_lower(output_token.chain), "address": _norm_address(output_token.address)})

        entity = DCAStrategyEntity(
            user_address=_norm_address(user_address),
            tenant_id=tenant_id,
            name=name or f"DCA {input_token.symbol or 'input'} -> {output_token.symbol or 'output'}",
            input_token=input_token,
            output_token=output_token,
            amount_per_execution=str(amount),
            frequency=freq,
            custom_interval_ms=int(custom_interval_ms) if freq == DCAFrequency.CUSTOM else None,
            total_executions=int(total_executions) if total_executions is not None else None,
            next_execution_at=0,
            slippage_bps=int(slippage_bps),
            max_price_impact_bps=max_price_impact_bps,
        )
        entity.next_execution_at = self.clock() + interval_ms(entity)
        strategy = await self.strategies.insert(entity)
        logger.info("dca strategy %s created (%s, %s executions)", strategy.id, freq, total_executions or "unbounded")
        return strategy

    async def get_strategy(self, strategy_id: str, user_address: str) -> DCAStrategyEntity:
        strategy = await self.strategies.get(strategy_id)
        if strategy is None or strategy.user_address != _norm_address(user_address):
            raise TriggerNotFoundError(f"dca strategy {strategy_id} not found", details={"strategy_id": strategy_id})
        return strategy

    async def list_strategies(self, user_address: str) -> List[DCAStrategyEntity]:
        return await self.strategies.list_by_user(user_address=user_address)

    async def list_executions(self, strategy_id: str, user_address: str, *, limit: int = 50) -> List[DCAExecutionEntity]:
        await self.get_strategy(strategy_id, user_address)
        return await self.executions.list_by_strategy(strategy_id=strategy_id, limit=max(1, min(int(limit), 200)))

    async def _transition(
        self,
        strategy_id: str,
        user_address: str,
        from_statuses: Sequence[DCAStatus],
        to_status: DCAStatus,
        extra: Optional[Dict[str, Any]] = None,
    ) -> DCAStrategyEntity:
        current = await self.get_strategy(strategy_id, user_address)
        ok = await self.strategies.transition(
            strategy_id=strategy_id,
            user_address=user_address,
            from_statuses=[s.value for s in from_statuses],
            to_status=to_status.value,
            extra=extra,
        )
        if not ok:
            raise InvalidTransitionError(
                f"dca strategy {strategy_id} cannot move from {current.status} to {to_status}",
                details={"from": str(current.status), "to": to_status.value},
            )
        logger.info("dca strategy %s -> %s", strategy_id, to_status)
        return await self.get_strategy(strategy_id, user_address)

    async def pause_strategy(self, strategy_id: str, user_address: str) -> DCAStrategyEntity:
        return await self._transition(strategy_id, user_address, [DCAStatus.ACTIVE], DCAStatus.PAUSED)

    async def resume_strategy(self, strategy_id: str, user_address: str) -> DCAStrategyEntity:
        current = await self.get_strategy(strategy_id, user_address)
        return await self._transition(
            strategy_id,
            user_address,
            [DCAStatus.PAUSED],
            DCAStatus.ACTIVE,
            extra={
                "next_execution_at": self.clock() + interval_ms(current),
                "consecutive_failures": 0,
                "last_error": None,
            },
        )

    async def cancel_strategy(self, strategy_id: str, user_address: str) -> DCAStrategyEntity:
        return await self._transition(strategy_id, user_address, [DCAStatus.ACTIVE, DCAStatus.PAUSED], DCAStatus.CANCELLED)

    # ------------------------------------------------------------------ #
    # trigger evaluation
    # ------------------------------------------------------------------ #

    async def load(self, now_ms: int) -> List[DCAStrategyEntity]:
        return await self.strategies.list_due(now_ms=now_ms)

    def price_requests(self, item: DCAStrategyEntity) -> Sequence[PriceRequest]:
        return []

    async def touch(self, ids: Sequence[str], now_ms: int) -> None:
        await self.strategies.touch_checked(ids, now_ms=now_ms)

    async def evaluate(self, item: DCAStrategyEntity, prices: Dict[str, Optional[float]], now_ms: int) -> Optional[int]:
        if DCAStatus(item.status) != DCAStatus.ACTIVE or item.next_execution_at > now_ms:
            return None
        return item.execution_number + 1

    async def claim(self, item: DCAStrategyEntity, *, token: str, until_ms: int, now_ms: int) -> bool:
        return await self.strategies.claim(item.id, token=token, until_ms=until_ms, now_ms=now_ms)

    async def _next_attempt(self, strategy_id: str, execution_number: int) -> int:
        return await self.executions.count_attempts(strategy_id=strategy_id, execution_number=execution_number) + 1

    async def fire(self, item: DCAStrategyEntity, context: int, *, token: str, now_ms: int) -> FireOutcome:
        number = int(context)

        # swap already recorded before a crash: only the strategy update is missing
        done = await self.executions.find_completed(strategy_id=item.id, execution_number=number)
        if done is not None:
            return await self._record_success(item, number, done, token=token, now_ms=now_ms)

        attempt = await self._next_attempt(item.id, number)

        quote = await self.quotes.get_quote(
            input_token=item.input_token,
            output_token=item.output_token,
            input_amount=item.amount_per_execution,
            slippage=item.slippage_bps / 100,
            user_address=item.user_address,
        )
        if quote.indicative:
            raise PriceUnavailableError("no executable route for the dca execution", details={"strategy_id": item.id})
        route = quote.find_route(quote.best_route_id)

        impact_bps = int(round((route.price_impact or 0) * 100))
        if item.max_price_impact_bps is not None and impact_bps > item.max_price_impact_bps:
            reason = f"price impact {impact_bps} bps above limit {item.max_price_impact_bps} bps"
            await self.executions.insert(
                DCAExecutionEntity(
                    strategy_id=item.id,
                    execution_number=number,
                    attempt=attempt,
                    status=DCAExecutionStatus.SKIPPED,
                    input_amount=item.amount_per_execution,
                    expected_output=route.expected_output,
                    price_impact_bps=impact_bps,
                    reason=reason,
                )
            )
            await self.strategies.record_skip(
                item.id,
                token=token,
                next_execution_at=now_ms + interval_ms(item),
                reason=reason,
            )
            logger.info("dca %s execution %d skipped: %s", item.id, number, reason)
            return FireOutcome.SKIPPED

        swap = await self.swaps.create_swap(
            quote_id=quote.id,
            route_id=route.id,
            user_address=item.user_address,
            tenant_id=item.tenant_id,
            client_ref=f"dca:{item.id}:{number}",
        )
        execution = DCAExecutionEntity(
            strategy_id=item.id,
            execution_number=number,
            attempt=attempt,
            status=DCAExecutionStatus.COMPLETED,
            swap_id=swap.id,
            input_amount=item.amount_per_execution,
            expected_output=route.expected_output,
            price_impact_bps=impact_bps,
        )
        await self.executions.insert(execution)
        return await self._record_success(item, number, execution, token=token, now_ms=now_ms)

    async def _record_success(
        self,
        item: DCAStrategyEntity,
        number: int,
        execution: DCAExecutionEntity,
        *,
        token: str,
        now_ms: int,
    ) -> FireOutcome:
        completed = item.total_executions is not None and number >= item.total_executions
        advanced = await self.strategies.record_success(
            item.id,
            token=token,
            expected_execution_number=item.execution_number,
            next_execution_at=now_ms + interval_ms(item),
            total_input_spent=_sum(item.total_input_spent, item.amount_per_execution),
            total_output_expected=_sum(item.total_output_expected, execution.expected_output or "0"),
            completed=completed,
            now_ms=now_ms,
        )
        if not advanced:
            logger.warning("dca %s execution %d already recorded or lease lost", item.id, number)
        else:
            logger.info(
                "dca %s execution %d -> swap %s%s", item.id, number, execution.swap_id, " (completed)" if completed else ""
            )
        return FireOutcome.FIRED

    async def release(self, item: DCAStrategyEntity, *, token: str, error: str, now_ms: int) -> None:
        number = item.execution_number + 1
        await self.executions.insert(
            DCAExecutionEntity(
                strategy_id=item.id,
                execution_number=number,
                attempt=await self._next_attempt(item.id, number),
                status=DCAExecutionStatus.FAILED,
                input_amount=item.amount_per_execution,
                reason=error,
            )
        )
        strategy = await self.strategies.record_failure(
            item.id,
            token=token,
            next_execution_at=now_ms + failure_backoff_ms(item.consecutive_failures + 1),
            error=error,
            max_failures=self.max_failures,
        )
        if strategy is not None and DCAStatus(strategy.status) == DCAStatus.FAILED:
            logger.error("dca %s failed after %d consecutive failures", item.id, strategy.consecutive_failures)

    async def run_bulk_check(self) -> BulkCheckResult:
        return await run_bulk_check(self, self.prices, clock=self.clock)

    async def handle_job(self, job: JobEntity, payload: BaseModel) -> Dict[str, Any]:
        if not isinstance(payload, BulkCheckJob):
            raise ValidationFailedError(f"unexpected payload {type(payload).__name__} for dca")
        return (await self.run_bulk_check()).as_dict()
