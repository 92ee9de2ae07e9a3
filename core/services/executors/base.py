from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from core.domain.entities.quote_entity import RouteStep
from core.domain.enums.swap_enums import ChainType
from core.domain.schemas.chain_types import ChainTxStatus, SubmitResult, UnsignedTransaction


class BaseStepExecutor(ABC):
    """
    Builds, submits and inspects the transaction of one route step on a
    given family of chains.

    `submit` raises InvalidSignatureError for a malformed or foreign
    signature, BroadcastError when the network rejects the transaction and
    TransientRpcError for failures worth retrying.
    """

    chain_type: ChainType

    @abstractmethod
    def build_transaction(self, step: RouteStep, user_address: str) -> UnsignedTransaction:
        raise NotImplementedError

    @abstractmethod
    async def submit(
        self,
        step: RouteStep,
        signed_transaction: str,
        *,
        user_address: str,
        cex_credentials: Optional[Dict[str, Any]] = None,
    ) -> SubmitResult:
        raise NotImplementedError

    @abstractmethod
    async def get_status(
        self,
        chain_id: str,
        tx_hash: str,
        *,
        step: RouteStep,
        user_address: str,
        cex_credentials: Optional[Dict[str, Any]] = None,
    ) -> ChainTxStatus:
        raise NotImplementedError
