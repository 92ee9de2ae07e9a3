from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from adapters.entry.http.dependencies import get_limit_orders_use_case, get_tenant_id
from adapters.entry.http.dtos.limit_order_dtos import CreateLimitOrderIn
from adapters.entry.http.envelope import ok
from core.domain.entities.trigger_entities import LimitOrderEntity
from core.use_cases.limit_orders_usecase import LimitOrdersUseCase

router = APIRouter(prefix="/limit-orders", tags=["limit-orders"])


def render_order(order: LimitOrderEntity) -> dict:
    return order.model_dump(mode="json", exclude={"claim"})


@router.post("", summary="Place a limit order")
async def create_order(
    body: CreateLimitOrderIn,
    request: Request,
    tenant_id: Optional[str] = Depends(get_tenant_id),
    use_case: LimitOrdersUseCase = Depends(get_limit_orders_use_case),
):
    order = await use_case.create_order(
        user_address=body.user_address,
        side=body.side,
        input_token=body.input_token.to_ref(),
        output_token=body.output_token.to_ref(),
        input_amount=body.input_amount,
        target_price=body.target_price,
        slippage_bps=body.slippage_bps,
        expires_in_ms=body.expires_in_ms,
        tenant_id=tenant_id,
    )
    return ok(render_order(order), request)


@router.get("", summary="List the limit orders of one address")
async def list_orders(
    request: Request,
    address: str = Query(..., min_length=1),
    status: Optional[str] = Query(None),
    use_case: LimitOrdersUseCase = Depends(get_limit_orders_use_case),
):
    orders = await use_case.list_orders(address, status=status)
    return ok([render_order(o) for o in orders], request)


@router.delete("/{order_id}", summary="Cancel a pending limit order")
async def cancel_order(
    order_id: str,
    request: Request,
    address: str = Query(..., min_length=1),
    use_case: LimitOrdersUseCase = Depends(get_limit_orders_use_case),
):
    return ok(render_order(await use_case.cancel_order(order_id, address)), request)
