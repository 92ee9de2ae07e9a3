from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from config import get_settings


@dataclass
class MarketDataHttpClient:
    base_url: str

    @classmethod
    def from_settings(cls) -> "MarketDataHttpClient":
        st = get_settings()
        return cls(base_url=(st.API_MARKET_DATA_URL or "").rstrip("/"))

    async def get_token_price_usd(self, *, chain: str, token_address: str) -> Dict[str, Any]:
        """
        Calls api-market-data:
          GET /api/pricing/tokens/{token_address}/usd?chain=...

        Expected response: {"price_usd": <number>, ...}
        """
        url = f"{self.base_url}/api/pricing/tokens/{token_address}/usd"
        params = {"chain": (chain or "").strip().lower()}

        async with httpx.AsyncClient(timeout=15.0) as cli:
            res = await cli.get(url, params=params)
            data = res.json() if res.content else {}
            if res.status_code >= 400:
                raise RuntimeError(data.get("detail") or data.get("message") or f"market_data_error_{res.status_code}")
            return data

    async def get_token_prices_usd(self, *, items: List[Dict[str, str]]) -> Dict[str, Optional[float]]:
        """
        Calls api-market-data:
          POST /api/pricing/tokens/usd/batch  {"tokens": [{"chain", "address"}]}

        Returns a map "chain:address" -> price (None when unknown).
        """
        url = f"{self.base_url}/api/pricing/tokens/usd/batch"
        async with httpx.AsyncClient(timeout=15.0) as cli:
            res = await cli.post(url, json={"tokens": items})
            data = res.json() if res.content else {}
            if res.status_code >= 400:
                raise RuntimeError(data.get("detail") or data.get("message") or f"market_data_error_{res.status_code}")

        out: Dict[str, Optional[float]] = {}
        for row in data.get("prices") or []:
            key = f"{(row.get('chain') or '').lower()}:{row.get('address') or ''}"
            price = row.get("price_usd")
            out[key] = float(price) if price is not None else None
        return out
