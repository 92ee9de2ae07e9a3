from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from adapters.entry.http.dependencies import get_dca_use_case, get_tenant_id
from adapters.entry.http.dtos.dca_dtos import CreateDCAIn
from adapters.entry.http.envelope import ok
from core.domain.entities.trigger_entities import DCAStrategyEntity
from core.use_cases.dca_usecase import DCAUseCase

router = APIRouter(prefix="/dca", tags=["dca"])


def render_strategy(strategy: DCAStrategyEntity) -> dict:
    return strategy.model_dump(mode="json", exclude={"claim"})


@router.post("", summary="Create a DCA strategy")
async def create_strategy(
    body: CreateDCAIn,
    request: Request,
    tenant_id: Optional[str] = Depends(get_tenant_id),
    use_case: DCAUseCase = Depends(get_dca_use_case),
):
    strategy = await use_case.create_strategy(
        user_address=body.user_address,
        input_token=body.input_token.to_ref(),
        output_token=body.output_token.to_ref(),
        amount_per_execution=body.amount_per_execution,
        frequency=body.frequency,
        total_executions=body.total_executions,
        custom_interval_ms=body.custom_interval_ms,
        name=body.name,
        slippage_bps=body.slippage_bps,
        max_price_impact_bps=body.max_price_impact_bps,
        tenant_id=tenant_id,
    )
    return ok(render_strategy(strategy), request)


@router.get("", summary="List the DCA strategies of one address")
async def list_strategies(
    request: Request,
    address: str = Query(..., min_length=1),
    use_case: DCAUseCase = Depends(get_dca_use_case),
):
    return ok([render_strategy(s) for s in await use_case.list_strategies(address)], request)


@router.get("/{strategy_id}", summary="Read one DCA strategy")
async def get_strategy(
    strategy_id: str,
    request: Request,
    address: str = Query(..., min_length=1),
    use_case: DCAUseCase = Depends(get_dca_use_case),
):
    return ok(render_strategy(await use_case.get_strategy(strategy_id, address)), request)


@router.get("/{strategy_id}/executions", summary="Execution log of a DCA strategy")
async def list_executions(
    strategy_id: str,
    request: Request,
    address: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=200),
    use_case: DCAUseCase = Depends(get_dca_use_case),
):
    rows = await use_case.list_executions(strategy_id, address, limit=limit)
    return ok([r.model_dump(mode="json") for r in rows], request)


@router.post("/{strategy_id}/pause")
async def pause_strategy(
    strategy_id: str,
    request: Request,
    address: str = Query(..., min_length=1),
    use_case: DCAUseCase = Depends(get_dca_use_case),
):
    return ok(render_strategy(await use_case.pause_strategy(strategy_id, address)), request)


@router.post("/{strategy_id}/resume")
async def resume_strategy(
    strategy_id: str,
    request: Request,
    address: str = Query(..., min_length=1),
    use_case: DCAUseCase = Depends(get_dca_use_case),
):
    return ok(render_strategy(await use_case.resume_strategy(strategy_id, address)), request)


@router.delete("/{strategy_id}", summary="Cancel a DCA strategy")
async def cancel_strategy(
    strategy_id: str,
    request: Request,
    address: str = Query(..., min_length=1),
    use_case: DCAUseCase = Depends(get_dca_use_case),
):
    return ok(render_strategy(await use_case.cancel_strategy(strategy_id, address)), request)
