from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from adapters.entry.http.dependencies import get_swaps_use_case, get_tenant_id
from adapters.entry.http.dtos.swap_dtos import CreateSwapIn, ExecuteStepIn
from adapters.entry.http.envelope import ok
from core.domain.entities.swap_entity import SwapEntity
from core.services.chain_registry import explorer_url
from core.use_cases.swaps_usecase import SwapsUseCase

router = APIRouter(prefix="/swaps", tags=["swaps"])


def render_swap(swap: SwapEntity) -> dict:
    return swap.model_dump(mode="json", exclude={"cex_credentials"})


@router.post("", summary="Create a swap from a quote route")
async def create_swap(
    body: CreateSwapIn,
    request: Request,
    tenant_id: Optional[str] = Depends(get_tenant_id),
    use_case: SwapsUseCase = Depends(get_swaps_use_case),
):
    swap = await use_case.create_swap(
        quote_id=body.quote_id,
        route_id=body.route_id,
        user_address=body.user_address,
        tenant_id=tenant_id,
        cex_credentials=body.credentials(),
    )
    return ok(render_swap(swap), request)


@router.get("/history", summary="Paginated swaps of one address, newest first")
async def get_history(
    request: Request,
    address: str = Query(..., min_length=1),
    limit: int = Query(20),
    offset: int = Query(0),
    status: Optional[str] = Query(None),
    use_case: SwapsUseCase = Depends(get_swaps_use_case),
):
    items, total = await use_case.get_swaps_by_user(address, limit=limit, offset=offset, status=status)
    return ok(
        {"items": [render_swap(s) for s in items], "total": total, "limit": limit, "offset": offset},
        request,
    )


@router.get("/{swap_id}", summary="Read a swap")
async def get_swap(
    swap_id: str,
    request: Request,
    use_case: SwapsUseCase = Depends(get_swaps_use_case),
):
    return ok(render_swap(await use_case.get_swap(swap_id)), request)


@router.get("/{swap_id}/transaction", summary="Unsigned transaction for a step (defaults to the current one)")
async def get_transaction(
    swap_id: str,
    request: Request,
    step_index: Optional[int] = Query(None, ge=0),
    use_case: SwapsUseCase = Depends(get_swaps_use_case),
):
    if step_index is None:
        step_index = (await use_case.get_swap(swap_id)).current_step_index
    tx = await use_case.get_pending_transaction(swap_id, step_index)
    return ok({"step_index": step_index, "transaction": tx.model_dump(mode="json")}, request)


@router.post("/{swap_id}/execute", summary="Submit the signed transaction of the current step")
async def execute_step(
    swap_id: str,
    body: ExecuteStepIn,
    request: Request,
    use_case: SwapsUseCase = Depends(get_swaps_use_case),
):
    out = await use_case.execute_step(swap_id, body.step_index, body.signed_transaction)
    return ok({"tx_hash": out["tx_hash"], "swap": render_swap(out["swap"])}, request)


@router.get("/{swap_id}/steps", summary="Step progress with block explorer links")
async def get_steps(
    swap_id: str,
    request: Request,
    use_case: SwapsUseCase = Depends(get_swaps_use_case),
):
    swap = await use_case.get_swap(swap_id)
    steps = []
    for idx, st in enumerate(swap.steps):
        row = st.model_dump(mode="json", exclude={"tx_data", "serialized_transaction"})
        row["index"] = idx
        row["explorer_url"] = explorer_url(st.chain_id, st.tx_hash) if st.tx_hash else None
        dest = st.destination_chain_id or st.chain_id
        row["destination_explorer_url"] = (
            explorer_url(dest, st.destination_tx_hash) if st.destination_tx_hash else None
        )
        steps.append(row)
    return ok(
        {
            "swap_id": swap.id,
            "status": swap.status,
            "current_step_index": swap.current_step_index,
            "steps": steps,
        },
        request,
    )
