import logging

from fastapi import APIRouter, Depends, Request

from adapters.entry.http.dependencies import get_swaps_use_case
from adapters.entry.http.dtos.swap_dtos import RefundIn
from adapters.entry.http.envelope import ok
from adapters.entry.http.views.operator.operator_auth import OperatorPrincipal, require_operator
from adapters.entry.http.views.swaps_view import render_swap
from core.use_cases.swaps_usecase import SwapsUseCase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/operator", tags=["operator"])


@router.post("/swaps/{swap_id}/refund", summary="Record an operator refund of a non-terminal swap")
async def refund_swap(
    swap_id: str,
    body: RefundIn,
    request: Request,
    operator: OperatorPrincipal = Depends(require_operator),
    use_case: SwapsUseCase = Depends(get_swaps_use_case),
):
    operator.ensure_can_refund(await use_case.get_swap(swap_id))
    swap = await use_case.refund_swap(
        swap_id,
        refund_tx_hash=body.refund_tx_hash,
        reason=body.reason,
        refunded_by=operator.wallet_address,
    )
    logger.info("operator %s refunded swap %s", operator.wallet_address, swap_id)
    return ok(render_swap(swap), request)
