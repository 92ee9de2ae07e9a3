from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from core.domain.enums.swap_enums import ChainType, MonitorType, StepType
from core.services.exceptions import UnsupportedChainError
from core.services.normalize import _norm_lower


@dataclass(frozen=True)
class ChainInfo:
    key: str
    type: ChainType
    name: str
    confirmations: int
    evm_chain_id: Optional[int] = None
    explorer_tx_url: str = ""


CHAINS: Dict[str, ChainInfo] = {
    "ethereum": ChainInfo("ethereum", ChainType.EVM, "Ethereum", 12, 1, "https://etherscan.io/tx/"),
    "arbitrum": ChainInfo("arbitrum", ChainType.EVM, "Arbitrum One", 1, 42161, "https://arbiscan.io/tx/"),
    "optimism": ChainInfo("optimism", ChainType.EVM, "Optimism", 1, 10, "https://optimistic.etherscan.io/tx/"),
    "polygon": ChainInfo("polygon", ChainType.EVM, "Polygon", 128, 137, "https://polygonscan.com/tx/"),
    "bsc": ChainInfo("bsc", ChainType.EVM, "BNB Smart Chain", 15, 56, "https://bscscan.com/tx/"),
    "base": ChainInfo("base", ChainType.EVM, "Base", 1, 8453, "https://basescan.org/tx/"),
    "avalanche": ChainInfo("avalanche", ChainType.EVM, "Avalanche C-Chain", 1, 43114, "https://snowtrace.io/tx/"),
    "solana": ChainInfo("solana", ChainType.SOLANA, "Solana", 32, None, "https://solscan.io/tx/"),
    "sui": ChainInfo("sui", ChainType.SUI, "Sui", 1, None, "https://suiscan.xyz/mainnet/tx/"),
    "cex:mexc": ChainInfo("cex:mexc", ChainType.CEX, "MEXC", 0, None, ""),
}

_MONITOR_BY_CHAIN_TYPE: Dict[ChainType, MonitorType] = {
    ChainType.EVM: MonitorType.EVM,
    ChainType.SOLANA: MonitorType.SOLANA,
    ChainType.SUI: MonitorType.SUI,
    ChainType.CEX: MonitorType.CEX,
}


def get_chain(chain_id: str) -> ChainInfo:
    info = CHAINS.get(_norm_lower(chain_id))
    if info is None:
        raise UnsupportedChainError(f"unsupported chain: {chain_id}")
    return info


def monitor_type_for(step_type: str, chain_id: str) -> MonitorType:
    if StepType(step_type) == StepType.BRIDGE:
        return MonitorType.BRIDGE
    return _MONITOR_BY_CHAIN_TYPE[get_chain(chain_id).type]


def explorer_url(chain_id: str, tx_hash: str) -> Optional[str]:
    info = CHAINS.get(_norm_lower(chain_id))
    if not info or not info.explorer_tx_url or not tx_hash:
        return None
    return f"{info.explorer_tx_url}{tx_hash}"
