from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel

from adapters.external.database.limit_order_repository_mongodb import LimitOrderRepositoryMongoDB
from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.job_entity import JobEntity
from core.domain.entities.quote_entity import TokenRef
from core.domain.entities.trigger_entities import LimitOrderEntity
from core.domain.enums.trigger_enums import LimitOrderStatus, OrderSide, TriggerKind
from core.domain.repositories.limit_order_repository_interface import LimitOrderRepository
from core.domain.schemas.job_payloads import BulkCheckJob
from core.services.chain_registry import get_chain
from core.services.exceptions import (
    InvalidTransitionError,
    PriceUnavailableError,
    TriggerNotFoundError,
    ValidationFailedError,
)
from core.services.normalize import _norm_address, _norm_lower
from core.services.price_service import PriceRequest, PriceService
from core.services.trigger_engine import MAX_CONSECUTIVE_FAILURES, BulkCheckResult, FireOutcome, run_bulk_check
from core.use_cases.quotes_usecase import QuotesUseCase
from core.use_cases.swaps_usecase import SwapsUseCase

logger = logging.getLogger(__name__)


def _requests(input_token: TokenRef, output_token: TokenRef) -> List[PriceRequest]:
    return [
        PriceRequest(chain=input_token.chain, address=input_token.address, decimals=input_token.decimals),
        PriceRequest(chain=output_token.chain, address=output_token.address, decimals=output_token.decimals),
    ]


def pair_price(prices: Dict[str, Optional[float]], input_token: TokenRef, output_token: TokenRef) -> Optional[float]:
    """
    Output tokens per input token, from USD prices.
    """
    req_in, req_out = _requests(input_token, output_token)
    p_in, p_out = prices.get(req_in.key), prices.get(req_out.key)
    if not p_in or not p_out:
        return None
    return p_in / p_out


def limit_reached(side: str, price: float, target: float) -> bool:
    if OrderSide(side) == OrderSide.BUY:
        return price <= target
    return price >= target


@dataclass
class LimitOrdersUseCase:
    orders: LimitOrderRepository
    prices: PriceService
    quotes: QuotesUseCase
    swaps: SwapsUseCase
    max_failures: int = MAX_CONSECUTIVE_FAILURES
    clock: Callable[[], int] = MongoEntity.now_ms

    kind: TriggerKind = TriggerKind.LIMIT_ORDER

    @classmethod
    def from_settings(cls, swaps: Optional[SwapsUseCase] = None) -> "LimitOrdersUseCase":
        quotes = QuotesUseCase.from_settings()
        return cls(
            orders=LimitOrderRepositoryMongoDB(),
            prices=quotes.prices,
            quotes=quotes,
            swaps=swaps or SwapsUseCase.from_settings(),
        )

    async def create_order(
        self,
        *,
        user_address: str,
        side: str,
        input_token: TokenRef,
        output_token: TokenRef,
        input_amount: str,
        target_price: float,
        slippage_bps: int = 50,
        expires_in_ms: Optional[int] = None,
        tenant_id: Optional[str] = None,
    ) -> LimitOrderEntity:
        try:
            order_side = OrderSide(str(side).upper())
        except ValueError:
            raise ValidationFailedError(f"unknown side {side}", details={"field": "side"})
        if target_price is None or float(target_price) <= 0:
            raise ValidationFailedError("target_price must be positive", details={"field": "target_price"})
        if not (1 <= int(slippage_bps) <= 5000):
            raise ValidationFailedError("slippage_bps must be between 1 and 5000", details={"field": "slippage_bps"})
        try:
            amount = int(str(input_amount))
        except ValueError:
            raise ValidationFailedError("input_amount must be an integer amount", details={"field": "input_amount"})
        if amount <= 0:
            raise ValidationFailedError("input_amount must be positive", details={"field": "input_amount"})
        if expires_in_ms is not None and int(expires_in_ms) <= 0:
            raise ValidationFailedError("expires_in_ms must be positive", details={"field": "expires_in_ms"})

        for t in (input_token, output_token):
            get_chain(t.chain)
        input_token = input_token.model_copy(update={"chain": _norm_lower(input_token.chain), "address": _norm_address(input_token.address)})
        output_token = output_token.model_copy(update={"chain": _norm_lower(output_token.chain), "address": _norm_address(output_token.address)})

        current = pair_price(await self.prices.get_prices(_requests(input_token, output_token)), input_token, output_token)
        if current is None:
            raise PriceUnavailableError("unable to fetch the current market price for this pair")
        if limit_reached(order_side, current, float(target_price)):
            raise ValidationFailedError(
                f"{order_side} target {target_price} is already reached at the current price {current:.8g}",
                details={"field": "target_price", "current_price": current},
            )

        now = self.clock()
        order = await self.orders.insert(
            LimitOrderEntity(
                user_address=_norm_address(user_address),
                tenant_id=tenant_id,
                side=order_side,
                input_token=input_token,
                output_token=output_token,
                input_amount=str(amount),
                target_price=float(target_price),
                slippage_bps=int(slippage_bps),
                expires_at=now + int(expires_in_ms) if expires_in_ms else None,
            )
        )
        logger.info("limit order %s created (%s at %s)", order.id, order_side, target_price)
        return order

    async def list_orders(self, user_address: str, *, status: Optional[str] = None) -> List[LimitOrderEntity]:
        if status is not None:
            try:
                status = LimitOrderStatus(str(status).upper()).value
            except ValueError:
                raise ValidationFailedError(f"unknown status {status}", details={"field": "status"})
        return await self.orders.list_by_user(user_address=user_address, status=status)

    async def cancel_order(self, order_id: str, user_address: str) -> LimitOrderEntity:
        order = await self.orders.get(order_id)
        if order is None or order.user_address != _norm_address(user_address):
            raise TriggerNotFoundError(f"limit order {order_id} not found", details={"order_id": order_id})
        if not await self.orders.cancel(order_id=order_id, user_address=user_address):
            raise InvalidTransitionError(
                f"limit order {order_id} can no longer be cancelled",
                details={"order_id": order_id, "status": str(order.status)},
            )
        order.status = LimitOrderStatus.CANCELLED
        order.is_active = False
        return order

    # trigger evaluation

    async def load(self, now_ms: int) -> List[LimitOrderEntity]:
        return await self.orders.list_pending()

    def price_requests(self, item: LimitOrderEntity) -> Sequence[PriceRequest]:
        return _requests(item.input_token, item.output_token)

    async def touch(self, ids: Sequence[str], now_ms: int) -> None:
        await self.orders.touch_checked(ids, now_ms=now_ms)

    async def evaluate(self, item: LimitOrderEntity, prices: Dict[str, Optional[float]], now_ms: int) -> Optional[float]:
        if item.expires_at is not None and now_ms >= item.expires_at:
            if await self.orders.expire(item.id, now_ms=now_ms):
                logger.info("limit order %s expired", item.id)
            return None

        price = pair_price(prices, item.input_token, item.output_token)
        if price is None:
            return None
        return price if limit_reached(item.side, price, item.target_price) else None

    async def claim(self, item: LimitOrderEntity, *, token: str, until_ms: int, now_ms: int) -> bool:
        return await self.orders.claim(item.id, token=token, until_ms=until_ms, now_ms=now_ms)

    async def fire(self, item: LimitOrderEntity, context: float, *, token: str, now_ms: int) -> FireOutcome:
        quote = await self.quotes.get_quote(
            input_token=item.input_token,
            output_token=item.output_token,
            input_amount=item.input_amount,
            slippage=item.slippage_bps / 100,
            user_address=item.user_address,
        )
        if quote.indicative:
            raise PriceUnavailableError("no executable route for the limit order", details={"order_id": item.id})

        swap = await self.swaps.create_swap(
            quote_id=quote.id,
            route_id=quote.best_route_id,
            user_address=item.user_address,
            tenant_id=item.tenant_id,
            client_ref=f"limit:{item.id}",
        )
        if not await self.orders.mark_triggered(
            item.id,
            token=token,
            swap_id=swap.id,
            execution_price=float(context),
            now_ms=now_ms,
        ):
            logger.warning("limit order %s lease lost before it could be marked triggered", item.id)
        else:
            logger.info("limit order %s triggered at %.8g -> swap %s", item.id, context, swap.id)
        return FireOutcome.FIRED

    async def release(self, item: LimitOrderEntity, *, token: str, error: str, now_ms: int) -> None:
        order = await self.orders.release(item.id, token=token, error=error, max_failures=self.max_failures)
        if order is not None and LimitOrderStatus(order.status) == LimitOrderStatus.FAILED:
            logger.error("limit order %s failed after %d attempts: %s", item.id, order.consecutive_failures, error)

    async def run_bulk_check(self) -> BulkCheckResult:
        return await run_bulk_check(self, self.prices, clock=self.clock)

    async def handle_job(self, job: JobEntity, payload: BaseModel) -> Dict[str, Any]:
        if not isinstance(payload, BulkCheckJob):
            raise ValidationFailedError(f"unexpected payload {type(payload).__name__} for limit orders")
        return (await self.run_bulk_check()).as_dict()
