from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from adapters.chain.jsonrpc_http_client import JsonRpcError, JsonRpcHttpClient
from config import get_settings
from core.services.exceptions import BroadcastError, InvalidSignatureError

_TX_OPTIONS = {"showEffects": True, "showBalanceChanges": True}


@dataclass
class SuiChainClient:
    rpc: JsonRpcHttpClient

    @classmethod
    def from_settings(cls) -> "SuiChainClient":
        return cls(rpc=JsonRpcHttpClient(get_settings().SUI_RPC_URL))

    async def execute_transaction_block(self, tx_bytes: str, signatures: List[str]) -> str:
        try:
            res = await self.rpc.call(
                "sui_executeTransactionBlock",
                [tx_bytes, signatures, _TX_OPTIONS, "WaitForLocalExecution"],
            )
        except JsonRpcError as exc:
            if "signature" in exc.message.lower():
                raise InvalidSignatureError(f"sui rejected signature: {exc.message}") from exc
            raise BroadcastError(f"sui rejected transaction: {exc.message}") from exc
        return str((res or {}).get("digest") or "")

    async def get_transaction_block(self, digest: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.rpc.call("sui_getTransactionBlock", [digest, _TX_OPTIONS])
        except JsonRpcError as exc:
            # unknown digest: not yet executed or indexed
            if "could not find" in exc.message.lower() or exc.code == -32602:
                return None
            raise


def balance_change(tx: Dict[str, Any], *, owner: str, coin_type: str) -> int:
    total = 0
    for ch in tx.get("balanceChanges") or []:
        ch_owner = (ch.get("owner") or {}).get("AddressOwner")
        if ch_owner == owner and ch.get("coinType") == coin_type:
            total += int(ch.get("amount") or 0)
    return total
