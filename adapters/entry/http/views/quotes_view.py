from fastapi import APIRouter, Depends, Request

from adapters.entry.http.dependencies import get_quotes_use_case
from adapters.entry.http.dtos.quote_dtos import QuoteRequestIn
from adapters.entry.http.envelope import ok
from core.domain.entities.quote_entity import QuoteEntity
from core.use_cases.quotes_usecase import QuotesUseCase

router = APIRouter(prefix="/quotes", tags=["quotes"])


def render_quote(quote: QuoteEntity) -> dict:
    return quote.model_dump(mode="json", exclude={"expires_at_dt"})


@router.post("", summary="Fetch routes for a token pair and store them as a short-lived quote")
async def create_quote(
    body: QuoteRequestIn,
    request: Request,
    use_case: QuotesUseCase = Depends(get_quotes_use_case),
):
    quote = await use_case.get_quote(
        input_token=body.input_token.to_ref(),
        output_token=body.output_token.to_ref(),
        input_amount=body.input_amount,
        slippage=body.slippage,
        user_address=body.user_address,
    )
    return ok(render_quote(quote), request)


@router.get("/{quote_id}", summary="Read a stored quote")
async def get_quote(
    quote_id: str,
    request: Request,
    use_case: QuotesUseCase = Depends(get_quotes_use_case),
):
    return ok(render_quote(await use_case.get_quote_by_id(quote_id)), request)
