from __future__ import annotations

import json
from typing import Any, Dict, Optional

from adapters.chain.sui_client import SuiChainClient, balance_change
from core.domain.entities.quote_entity import RouteStep
from core.domain.enums.swap_enums import ChainTxState, ChainType
from core.domain.schemas.chain_types import ChainTxStatus, SubmitResult, UnsignedTransaction
from core.services.exceptions import InvalidSignatureError, ValidationFailedError
from core.services.executors.base import BaseStepExecutor


class SuiStepExecutor(BaseStepExecutor):
    """
    The signed blob is a JSON object: {"tx_bytes": <b64>, "signatures": [<b64>, ...]}.
    """

    chain_type = ChainType.SUI

    def __init__(self, client: SuiChainClient) -> None:
        self.client = client

    def build_transaction(self, step: RouteStep, user_address: str) -> UnsignedTransaction:
        serialized = step.serialized_transaction or step.tx_data
        if not serialized:
            raise ValidationFailedError("serialized transaction not available in route step")
        return UnsignedTransaction(chain_id=step.chain_id, serialized_transaction=serialized)

    async def submit(
        self,
        step: RouteStep,
        signed_transaction: str,
        *,
        user_address: str,
        cex_credentials: Optional[Dict[str, Any]] = None,
    ) -> SubmitResult:
        try:
            blob = json.loads(signed_transaction or "")
        except json.JSONDecodeError as exc:
            raise InvalidSignatureError("signed transaction must be a JSON object") from exc

        if not isinstance(blob, dict):
            raise InvalidSignatureError("signed transaction must be a JSON object")
        tx_bytes = blob.get("tx_bytes")
        signatures = blob.get("signatures") or ([blob["signature"]] if blob.get("signature") else [])
        if not tx_bytes or not signatures:
            raise InvalidSignatureError("tx_bytes and signatures are required")

        digest = await self.client.execute_transaction_block(str(tx_bytes), [str(s) for s in signatures])
        if not digest:
            raise InvalidSignatureError("node returned no digest")
        return SubmitResult(tx_hash=digest)

    async def get_status(
        self,
        chain_id: str,
        tx_hash: str,
        *,
        step: RouteStep,
        user_address: str,
        cex_credentials: Optional[Dict[str, Any]] = None,
    ) -> ChainTxStatus:
        tx = await self.client.get_transaction_block(tx_hash)
        if not tx:
            return ChainTxStatus(state=ChainTxState.PENDING)

        effects = tx.get("effects") or {}
        status = (effects.get("status") or {}).get("status")
        checkpoint = tx.get("checkpoint")
        block_number = int(checkpoint) if checkpoint is not None else None

        if status == "failure":
            return ChainTxStatus(
                state=ChainTxState.FAILED,
                block_number=block_number,
                error=(effects.get("status") or {}).get("error") or "Transaction failed",
            )
        if status != "success":
            return ChainTxStatus(state=ChainTxState.PENDING)
        if block_number is None:
            return ChainTxStatus(state=ChainTxState.CONFIRMING)

        gas = effects.get("gasUsed") or {}
        gas_cost = (
            int(gas.get("computationCost") or 0)
            + int(gas.get("storageCost") or 0)
            - int(gas.get("storageRebate") or 0)
        )
        received = balance_change(tx, owner=user_address, coin_type=step.output_token.address)

        return ChainTxStatus(
            state=ChainTxState.CONFIRMED,
            confirmations=1,
            block_number=block_number,
            actual_output=str(received) if received > 0 else None,
            gas_cost=str(max(gas_cost, 0)),
        )
