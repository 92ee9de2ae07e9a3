from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from config import get_settings
from core.domain.enums.swap_enums import ChainTxState
from core.domain.schemas.chain_types import BridgeStatus
from core.services.exceptions import TransientRpcError

_STATUS_MAP = {
    "DONE": ChainTxState.CONFIRMED,
    "FAILED": ChainTxState.FAILED,
    "INVALID": ChainTxState.FAILED,
    "NOT_FOUND": ChainTxState.PENDING,
    "PENDING": ChainTxState.CONFIRMING,
}


@dataclass
class BridgeStatusHttpClient:
    base_url: str

    @classmethod
    def from_settings(cls) -> "BridgeStatusHttpClient":
        return cls(base_url=(get_settings().BRIDGE_STATUS_URL or "").rstrip("/"))

    async def get_status(self, *, tx_hash: str, from_chain: str, to_chain: Optional[str] = None) -> BridgeStatus:
        """
        GET /status?txHash=...&fromChain=...&toChain=...
        """
        params = {"txHash": tx_hash, "fromChain": from_chain}
        if to_chain:
            params["toChain"] = to_chain

        try:
            async with httpx.AsyncClient(timeout=15.0) as cli:
                res = await cli.get(f"{self.base_url}/status", params=params)
        except httpx.TransportError as exc:
            raise TransientRpcError(f"bridge status unavailable: {exc}") from exc

        if res.status_code == 404:
            return BridgeStatus(state=ChainTxState.PENDING)
        if res.status_code >= 400:
            raise TransientRpcError(f"bridge status error {res.status_code}")

        data = res.json() if res.content else {}
        state = _STATUS_MAP.get(str(data.get("status") or "").upper(), ChainTxState.CONFIRMING)
        receiving = data.get("receiving") or {}
        return BridgeStatus(
            state=state,
            destination_tx_hash=receiving.get("txHash"),
            received_amount=receiving.get("amount"),
            error=data.get("substatusMessage") if state == ChainTxState.FAILED else None,
        )
