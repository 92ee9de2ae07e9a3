from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from hexbytes import HexBytes
from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound, Web3RPCError
from web3.providers.rpc import AsyncHTTPProvider

from config import get_settings
from core.services.exceptions import BroadcastError, TransientRpcError, UnsupportedChainError
from core.services.normalize import _norm_lower

logger = logging.getLogger(__name__)

DEFAULT_EVM_RPC_URLS: Dict[str, str] = {
    "ethereum": "https://eth.llamarpc.com",
    "arbitrum": "https://arb1.arbitrum.io/rpc",
    "optimism": "https://mainnet.optimism.io",
    "polygon": "https://polygon-rpc.com",
    "bsc": "https://bsc-dataseed.binance.org",
    "base": "https://mainnet.base.org",
    "avalanche": "https://api.avax.network/ext/bc/C/rpc",
}

_TRANSIENT = (asyncio.TimeoutError, TimeoutError, OSError)

# one provider (and HTTP session) per RPC url for the whole process
_W3_CACHE: Dict[str, AsyncWeb3] = {}


def to_json_safe(obj: Any) -> Any:
    """
    Turn AttributeDict / HexBytes receipts into plain JSON-compatible data.
    """
    if isinstance(obj, (HexBytes, bytes, bytearray)):
        return Web3.to_hex(obj)
    if isinstance(obj, (str, int, float, bool)) or obj is None:
        return obj
    if isinstance(obj, dict) or hasattr(obj, "items"):
        return {str(k): to_json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [to_json_safe(v) for v in obj]
    return str(obj)


@dataclass
class EvmChainClient:
    """
    Thin async wrapper over AsyncWeb3 that maps node failures onto the
    domain error taxonomy.
    """

    rpc_urls: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_settings(cls) -> "EvmChainClient":
        urls = dict(DEFAULT_EVM_RPC_URLS)
        urls.update(get_settings().CHAIN_RPC_URLS or {})
        return cls(rpc_urls=urls)

    def w3(self, chain_id: str) -> AsyncWeb3:
        url = self.rpc_urls.get(_norm_lower(chain_id))
        if not url:
            raise UnsupportedChainError(f"no RPC URL configured for chain {chain_id}")
        w3 = _W3_CACHE.get(url)
        if w3 is None:
            w3 = _W3_CACHE[url] = AsyncWeb3(AsyncHTTPProvider(url))
        return w3

    async def send_raw_transaction(self, chain_id: str, raw_tx: str) -> str:
        local_hash = Web3.to_hex(Web3.keccak(hexstr=raw_tx))
        try:
            txh = await self.w3(chain_id).eth.send_raw_transaction(raw_tx)
            return Web3.to_hex(txh)
        except _TRANSIENT as exc:
            raise TransientRpcError(f"{chain_id} RPC unavailable: {exc}") from exc
        except (Web3RPCError, ValueError) as exc:
            msg = str(exc)
            if "already known" in msg.lower():
                logger.info("tx %s already in mempool on %s", local_hash, chain_id)
                return local_hash
            raise BroadcastError(f"{chain_id} rejected transaction: {msg}", details={"chain_id": chain_id}) from exc

    async def get_receipt(self, chain_id: str, tx_hash: str) -> Optional[Dict[str, Any]]:
        try:
            rcpt = await self.w3(chain_id).eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        except _TRANSIENT as exc:
            raise TransientRpcError(f"{chain_id} RPC unavailable: {exc}") from exc
        return to_json_safe(dict(rcpt)) if rcpt else None

    async def get_transaction(self, chain_id: str, tx_hash: str) -> Optional[Dict[str, Any]]:
        try:
            tx = await self.w3(chain_id).eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return None
        except _TRANSIENT as exc:
            raise TransientRpcError(f"{chain_id} RPC unavailable: {exc}") from exc
        return to_json_safe(dict(tx)) if tx else None

    async def block_number(self, chain_id: str) -> int:
        try:
            return int(await self.w3(chain_id).eth.block_number)
        except _TRANSIENT as exc:
            raise TransientRpcError(f"{chain_id} RPC unavailable: {exc}") from exc
