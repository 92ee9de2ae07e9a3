from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from adapters.chain.jsonrpc_http_client import JsonRpcError, JsonRpcHttpClient
from config import get_settings
from core.services.exceptions import BroadcastError, InvalidSignatureError

NATIVE_SOL_MINT = "So11111111111111111111111111111111111111112"


@dataclass
class SolanaChainClient:
    rpc: JsonRpcHttpClient

    @classmethod
    def from_settings(cls) -> "SolanaChainClient":
        return cls(rpc=JsonRpcHttpClient(get_settings().SOLANA_RPC_URL))

    async def send_transaction(self, signed_tx_b64: str) -> str:
        try:
            return str(
                await self.rpc.call(
                    "sendTransaction",
                    [signed_tx_b64, {"encoding": "base64", "preflightCommitment": "confirmed", "maxRetries": 3}],
                )
            )
        except JsonRpcError as exc:
            if "signature" in exc.message.lower():
                raise InvalidSignatureError(f"solana rejected signature: {exc.message}") from exc
            raise BroadcastError(f"solana rejected transaction: {exc.message}") from exc

    async def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        res = await self.rpc.call("getSignatureStatuses", [[signature], {"searchTransactionHistory": True}])
        values = (res or {}).get("value") or [None]
        return values[0]

    async def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        return await self.rpc.call(
            "getTransaction",
            [signature, {"encoding": "jsonParsed", "commitment": "finalized", "maxSupportedTransactionVersion": 0}],
        )


def token_balance_delta(tx: Dict[str, Any], *, owner: str, mint: str) -> int:
    """
    Net change of `owner`'s balance of `mint` in a parsed transaction,
    in raw units. Native SOL is read from lamport balances.
    """
    meta = tx.get("meta") or {}

    if mint == NATIVE_SOL_MINT:
        keys = (tx.get("transaction") or {}).get("message", {}).get("accountKeys") or []
        for i, k in enumerate(keys):
            pubkey = k.get("pubkey") if isinstance(k, dict) else k
            if pubkey == owner:
                pre = (meta.get("preBalances") or [])[i:i + 1] or [0]
                post = (meta.get("postBalances") or [])[i:i + 1] or [0]
                return int(post[0]) - int(pre[0])
        return 0

    def _sum(entries: Any) -> int:
        total = 0
        for b in entries or []:
            if b.get("owner") == owner and b.get("mint") == mint:
                total += int((b.get("uiTokenAmount") or {}).get("amount") or 0)
        return total

    return _sum(meta.get("postTokenBalances")) - _sum(meta.get("preTokenBalances"))
