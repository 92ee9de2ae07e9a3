from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from config import get_settings
from core.services.exceptions import BroadcastError, TransientRpcError


@dataclass
class CexGatewayHttpClient:
    """
    Exchange gateway that signs and relays exchange-API calls with the
    user's API credentials.
    """

    base_url: str

    @classmethod
    def from_settings(cls) -> "CexGatewayHttpClient":
        return cls(base_url=(get_settings().CEX_GATEWAY_URL or "").rstrip("/"))

    async def _request(self, method: str, path: str, *, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=20.0) as cli:
                res = await cli.request(method, f"{self.base_url}{path}", json=json)
        except httpx.TransportError as exc:
            raise TransientRpcError(f"cex gateway unavailable: {exc}") from exc

        data = res.json() if res.content else {}
        if res.status_code >= 500:
            raise TransientRpcError(f"cex gateway error {res.status_code}")
        if res.status_code >= 400:
            raise BroadcastError(data.get("message") or f"cex_gateway_error_{res.status_code}", details=data)
        return data

    async def submit_operation(
        self,
        *,
        exchange: str,
        operation: str,
        params: Dict[str, Any],
        credentials: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        POST /v1/{exchange}/operations -> {"operation_id", "status", "executed_qty"?}
        """
        body = {"operation": operation, "params": params, "credentials": credentials}
        return await self._request("POST", f"/v1/{exchange}/operations", json=body)

    async def get_operation(self, *, exchange: str, operation_id: str, credentials: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST /v1/{exchange}/operations/{id}/status -> {"status", "executed_qty"?, "tx_hash"?, "error"?}
        """
        return await self._request(
            "POST",
            f"/v1/{exchange}/operations/{operation_id}/status",
            json={"credentials": credentials},
        )
