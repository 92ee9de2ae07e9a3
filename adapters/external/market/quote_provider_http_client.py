from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class QuoteProviderHttpClient:
    """
    Client for the route aggregator (1inch/0x/Jupiter/Cetus behind one API).
    """

    base_url: str
    api_key: str = ""

    @classmethod
    def from_settings(cls) -> "QuoteProviderHttpClient":
        st = get_settings()
        return cls(base_url=(st.QUOTE_PROVIDER_URL or "").rstrip("/"), api_key=st.QUOTE_PROVIDER_API_KEY or "")

    async def get_quote(
        self,
        *,
        input_token: Dict[str, Any],
        output_token: Dict[str, Any],
        input_amount: str,
        slippage: float,
        user_address: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        POST /v1/quote

        Returns {"routes": [...], "best_route_id": ...} or None when the
        aggregator has no route or is unavailable.
        """
        body = {
            "input_token": input_token,
            "output_token": output_token,
            "input_amount": input_amount,
            "slippage": slippage,
            "user_address": user_address,
        }
        headers = {"X-API-Key": self.api_key} if self.api_key else {}

        try:
            async with httpx.AsyncClient(timeout=20.0) as cli:
                res = await cli.post(f"{self.base_url}/v1/quote", json=body, headers=headers)
        except httpx.TransportError as exc:
            logger.warning("quote provider unreachable: %s", exc)
            return None

        if res.status_code == 404 or not res.content:
            return None
        if res.status_code >= 400:
            logger.warning("quote provider error %s: %s", res.status_code, res.text[:200])
            return None

        data = res.json()
        if not data.get("routes"):
            return None
        return data
