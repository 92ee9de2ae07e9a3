from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from adapters.external.database.quote_repository_mongodb import QuoteRepositoryMongoDB
from adapters.external.market.quote_provider_http_client import QuoteProviderHttpClient
from config import get_settings
from core.domain.entities.base_entity import MongoEntity, new_id
from core.domain.entities.quote_entity import QuoteEntity, RouteEntity, RouteStep, TokenRef
from core.domain.enums.swap_enums import StepType
from core.domain.repositories.quote_repository_interface import QuoteRepository
from core.services.chain_registry import get_chain
from core.services.exceptions import (
    PriceUnavailableError,
    QuoteNotFoundError,
    ValidationFailedError,
)
from core.services.normalize import _norm_address, _norm_lower
from core.services.price_service import PriceRequest, PriceService

logger = logging.getLogger(__name__)


def _parse_amount(raw: str, field: str) -> int:
    try:
        v = int(str(raw).strip())
    except (TypeError, ValueError):
        raise ValidationFailedError(f"{field} must be an integer amount in base units", details={"field": field})
    if v <= 0:
        raise ValidationFailedError(f"{field} must be positive", details={"field": field})
    return v


def platform_fee_for(input_amount: int, fee_bps: int) -> int:
    return (int(input_amount) * int(fee_bps)) // 10_000


def minimum_after_slippage(expected: int, slippage_pct: float) -> int:
    factor = (Decimal(100) - Decimal(str(slippage_pct))) / Decimal(100)
    return int((Decimal(int(expected)) * factor).to_integral_value(rounding=ROUND_DOWN))


def _normalize_token(t: TokenRef) -> TokenRef:
    get_chain(t.chain)
    return t.model_copy(update={"chain": _norm_lower(t.chain), "address": _norm_address(t.address)})


@dataclass
class QuotesUseCase:
    """
    Fetches routes from the aggregator, stamps them with the platform fee and
    a validity window, and stores the resulting quote.
    """

    quotes: QuoteRepository
    provider: QuoteProviderHttpClient
    prices: PriceService
    fee_bps: int = 40
    ttl_seconds: int = 30
    clock: Callable[[], int] = MongoEntity.now_ms

    @classmethod
    def from_settings(cls) -> "QuotesUseCase":
        st = get_settings()
        return cls(
            quotes=QuoteRepositoryMongoDB(),
            provider=QuoteProviderHttpClient.from_settings(),
            prices=PriceService.from_settings(),
            fee_bps=int(st.PLATFORM_FEE_BPS),
            ttl_seconds=int(st.QUOTE_TTL_SECONDS),
        )

    def _build_routes(self, raw_routes: List[Dict[str, Any]], amount: int) -> List[RouteEntity]:
        fee = str(platform_fee_for(amount, self.fee_bps))
        routes: List[RouteEntity] = []
        for raw in raw_routes:
            data = dict(raw)
            data.setdefault("id", new_id())
            data["platform_fee"] = fee
            try:
                routes.append(RouteEntity.model_validate(data))
            except ValidationError as exc:
                logger.warning("dropping malformed provider route %s: %s", data.get("id"), exc.errors()[:2])
        return routes

    async def _indicative_route(
        self,
        input_token: TokenRef,
        output_token: TokenRef,
        amount: int,
        slippage: float,
    ) -> RouteEntity:
        req_in = PriceRequest(chain=input_token.chain, address=input_token.address, decimals=input_token.decimals)
        req_out = PriceRequest(chain=output_token.chain, address=output_token.address, decimals=output_token.decimals)
        prices = await self.prices.get_prices([req_in, req_out])
        p_in, p_out = prices.get(req_in.key), prices.get(req_out.key)
        if not p_in or not p_out:
            raise PriceUnavailableError(
                "no route and no price estimate available",
                details={"input": req_in.key, "output": req_out.key},
            )

        human_in = Decimal(amount) / (Decimal(10) ** input_token.decimals)
        human_out = human_in * Decimal(str(p_in)) / Decimal(str(p_out))
        expected = int((human_out * (Decimal(10) ** output_token.decimals)).to_integral_value(rounding=ROUND_DOWN))
        minimum = minimum_after_slippage(expected, slippage)

        step = RouteStep(
            type=StepType.SWAP,
            chain_id=input_token.chain,
            protocol="indicative",
            input_token=input_token,
            output_token=output_token,
            input_amount=str(amount),
            expected_output=str(expected),
            minimum_output=str(minimum),
            slippage=slippage,
        )
        return RouteEntity(
            id=new_id(),
            steps=[step],
            input_token=input_token,
            output_token=output_token,
            input_amount=str(amount),
            expected_output=str(expected),
            minimum_output=str(minimum),
            platform_fee=str(platform_fee_for(amount, self.fee_bps)),
            tags=["indicative"],
        )

    async def get_quote(
        self,
        *,
        input_token: TokenRef,
        output_token: TokenRef,
        input_amount: str,
        slippage: float = 0.5,
        user_address: Optional[str] = None,
    ) -> QuoteEntity:
        amount = _parse_amount(input_amount, "input_amount")
        if not (0 < float(slippage) <= 50):
            raise ValidationFailedError("slippage must be within (0, 50] percent", details={"field": "slippage"})

        input_token = _normalize_token(input_token)
        output_token = _normalize_token(output_token)

        raw = await self.provider.get_quote(
            input_token=input_token.model_dump(mode="json"),
            output_token=output_token.model_dump(mode="json"),
            input_amount=str(amount),
            slippage=float(slippage),
            user_address=user_address,
        )

        routes = self._build_routes((raw or {}).get("routes") or [], amount)
        indicative = not routes
        if indicative:
            logger.info("quote provider returned no route for %s -> %s; using price estimate", input_token.address, output_token.address)
            routes = [await self._indicative_route(input_token, output_token, amount, float(slippage))]

        best_id = (raw or {}).get("best_route_id")
        if not best_id or not any(r.id == best_id for r in routes):
            best_id = max(routes, key=lambda r: int(r.expected_output)).id

        expires_at = self.clock() + self.ttl_seconds * 1000
        quote = QuoteEntity(
            input_token=input_token,
            output_token=output_token,
            input_amount=str(amount),
            slippage=float(slippage),
            user_address=_norm_address(user_address) if user_address else None,
            routes=routes,
            best_route_id=best_id,
            expires_at=expires_at,
            expires_at_dt=datetime.fromtimestamp(expires_at / 1000, tz=timezone.utc),
            indicative=indicative,
        )
        return await self.quotes.insert(quote)

    async def get_quote_by_id(self, quote_id: str) -> QuoteEntity:
        quote = await self.quotes.get(quote_id)
        if quote is None:
            raise QuoteNotFoundError(f"quote {quote_id} not found", details={"quote_id": quote_id})
        return quote
