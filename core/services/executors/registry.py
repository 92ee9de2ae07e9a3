from __future__ import annotations

from typing import Dict

from adapters.chain.evm_client import EvmChainClient
from adapters.chain.solana_client import SolanaChainClient
from adapters.chain.sui_client import SuiChainClient
from adapters.external.market.cex_gateway_http_client import CexGatewayHttpClient
from core.domain.enums.swap_enums import ChainType
from core.services.chain_registry import get_chain
from core.services.exceptions import UnsupportedChainError
from core.services.executors.base import BaseStepExecutor
from core.services.executors.cex import CexStepExecutor
from core.services.executors.evm import EvmStepExecutor
from core.services.executors.solana import SolanaStepExecutor
from core.services.executors.sui import SuiStepExecutor


class ExecutorRegistry:
    def __init__(self, executors: Dict[ChainType, BaseStepExecutor]) -> None:
        self._executors = dict(executors)

    @classmethod
    def from_settings(cls) -> "ExecutorRegistry":
        return cls(
            {
                ChainType.EVM: EvmStepExecutor(EvmChainClient.from_settings()),
                ChainType.SOLANA: SolanaStepExecutor(SolanaChainClient.from_settings()),
                ChainType.SUI: SuiStepExecutor(SuiChainClient.from_settings()),
                ChainType.CEX: CexStepExecutor(CexGatewayHttpClient.from_settings()),
            }
        )

    def for_chain(self, chain_id: str) -> BaseStepExecutor:
        chain_type = get_chain(chain_id).type
        executor = self._executors.get(chain_type)
        if executor is None:
            raise UnsupportedChainError(f"no executor registered for {chain_type} ({chain_id})")
        return executor
