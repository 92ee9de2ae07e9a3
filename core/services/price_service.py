from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from time import time
from typing import Dict, Iterable, List, Optional, Tuple

from adapters.external.market.market_data_http_client import MarketDataHttpClient
from adapters.external.market.quote_provider_http_client import QuoteProviderHttpClient
from config import get_settings
from core.services.exceptions import PriceUnavailableError
from core.services.normalize import _norm_address, _norm_lower

logger = logging.getLogger(__name__)

# key -> (fetched_at, usd price)
_PRICE_CACHE: Dict[str, Tuple[float, float]] = {}


@dataclass(frozen=True)
class PriceRequest:
    chain: str
    address: str
    decimals: int = 18

    @property
    def key(self) -> str:
        return price_key(self.chain, self.address)


def price_key(chain: str, address: str) -> str:
    return f"{_norm_lower(chain)}:{_norm_address(address)}"


def invalidate_price(key: Optional[str] = None) -> None:
    if key is None:
        _PRICE_CACHE.clear()
    else:
        _PRICE_CACHE.pop(key, None)


@dataclass
class PriceService:
    """
    USD token prices with a short read-through cache. The market-data API is
    the primary source; when it fails, a 1-unit quote against the chain's USD
    stable is used as an estimate.
    """

    market: MarketDataHttpClient
    quotes: QuoteProviderHttpClient
    stable_tokens: Dict[str, str] = field(default_factory=dict)
    ttl_seconds: float = 10.0

    @classmethod
    def from_settings(cls) -> "PriceService":
        st = get_settings()
        return cls(
            market=MarketDataHttpClient.from_settings(),
            quotes=QuoteProviderHttpClient.from_settings(),
            stable_tokens=dict(st.STABLE_TOKEN_ADDRESSES or {}),
            ttl_seconds=float(st.PRICE_CACHE_TTL_SECONDS),
        )

    def _cached(self, key: str) -> Optional[float]:
        hit = _PRICE_CACHE.get(key)
        if hit and (time() - hit[0]) < self.ttl_seconds:
            return hit[1]
        return None

    def _store(self, key: str, price: float) -> None:
        _PRICE_CACHE[key] = (time(), float(price))

    async def get_price(self, chain: str, address: str, *, decimals: int = 18) -> float:
        req = PriceRequest(chain=chain, address=address, decimals=decimals)
        prices = await self.get_prices([req])
        price = prices.get(req.key)
        if price is None:
            raise PriceUnavailableError(f"no USD price for {req.key}", details={"token": req.key})
        return price

    async def get_prices(self, requests: Iterable[PriceRequest]) -> Dict[str, Optional[float]]:
        """
        Resolve many tokens at once. Unknown prices map to None.
        """
        unique: Dict[str, PriceRequest] = {}
        for r in requests:
            unique.setdefault(r.key, r)

        out: Dict[str, Optional[float]] = {}
        missing: List[PriceRequest] = []
        for key, r in unique.items():
            cached = self._cached(key)
            if cached is not None:
                out[key] = cached
            else:
                missing.append(r)

        if not missing:
            return out

        fetched: Dict[str, Optional[float]] = {}
        try:
            fetched = await self.market.get_token_prices_usd(
                items=[{"chain": _norm_lower(r.chain), "address": r.address} for r in missing]
            )
        except Exception as exc:
            logger.warning("market data batch failed (%s); falling back to quote estimates", exc)

        fallbacks = [r for r in missing if fetched.get(r.key) is None]
        if fallbacks:
            estimates = await asyncio.gather(*(self._estimate_from_quote(r) for r in fallbacks))
            for r, est in zip(fallbacks, estimates):
                fetched[r.key] = est

        for r in missing:
            price = fetched.get(r.key)
            if price is not None and price > 0:
                self._store(r.key, price)
                out[r.key] = price
            else:
                out[r.key] = None
        return out

    async def _estimate_from_quote(self, req: PriceRequest) -> Optional[float]:
        stable = self.stable_tokens.get(_norm_lower(req.chain))
        if not stable:
            return None
        if _norm_address(stable) == _norm_address(req.address):
            return 1.0

        try:
            quote = await self.quotes.get_quote(
                input_token={"chain": req.chain, "address": req.address, "decimals": req.decimals},
                output_token={"chain": req.chain, "address": stable},
                input_amount=str(10 ** req.decimals),
                slippage=1.0,
            )
        except Exception as exc:
            logger.warning("quote estimate for %s failed: %s", req.key, exc)
            return None
        if not quote:
            return None

        route = quote["routes"][0]
        out_decimals = int((route.get("output_token") or {}).get("decimals") or 6)
        expected = Decimal(str(route.get("expected_output") or "0"))
        if expected <= 0:
            return None
        return float(expected / (Decimal(10) ** out_decimals))
