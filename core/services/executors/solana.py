from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, Optional

from adapters.chain.solana_client import SolanaChainClient, token_balance_delta
from core.domain.entities.quote_entity import RouteStep
from core.domain.enums.swap_enums import ChainTxState, ChainType
from core.domain.schemas.chain_types import ChainTxStatus, SubmitResult, UnsignedTransaction
from core.services.exceptions import InvalidSignatureError, ValidationFailedError
from core.services.executors.base import BaseStepExecutor


def _first_signature(raw: bytes) -> bytes:
    """
    A serialized transaction starts with a compact-u16 signature count
    followed by 64-byte signatures.
    """
    count, offset, shift = 0, 0, 0
    while True:
        if offset >= len(raw) or offset > 2:
            raise InvalidSignatureError("malformed transaction header")
        byte = raw[offset]
        count |= (byte & 0x7F) << shift
        offset += 1
        if not byte & 0x80:
            break
        shift += 7

    if count < 1 or len(raw) < offset + 64:
        raise InvalidSignatureError("transaction carries no signature")
    return raw[offset:offset + 64]


class SolanaStepExecutor(BaseStepExecutor):
    chain_type = ChainType.SOLANA

    def __init__(self, client: SolanaChainClient) -> None:
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
        blob = (signed_transaction or "").strip()
        try:
            raw = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidSignatureError("signed transaction must be base64") from exc

        if not any(_first_signature(raw)):
            raise InvalidSignatureError("fee payer signature is empty")

        signature = await self.client.send_transaction(blob)
        return SubmitResult(tx_hash=signature)

    async def get_status(
        self,
        chain_id: str,
        tx_hash: str,
        *,
        step: RouteStep,
        user_address: str,
        cex_credentials: Optional[Dict[str, Any]] = None,
    ) -> ChainTxStatus:
        st = await self.client.get_signature_status(tx_hash)
        if not st:
            return ChainTxStatus(state=ChainTxState.PENDING)

        slot = st.get("slot")
        if st.get("err"):
            return ChainTxStatus(state=ChainTxState.FAILED, block_number=slot, error=str(st.get("err")))

        if st.get("confirmationStatus") != "finalized":
            return ChainTxStatus(
                state=ChainTxState.CONFIRMING,
                confirmations=int(st.get("confirmations") or 0),
                block_number=slot,
            )

        actual_output: Optional[str] = None
        fee: Optional[str] = None
        tx = await self.client.get_transaction(tx_hash)
        if tx:
            delta = token_balance_delta(tx, owner=user_address, mint=step.output_token.address)
            if delta > 0:
                actual_output = str(delta)
            fee = str((tx.get("meta") or {}).get("fee") or 0)

        return ChainTxStatus(
            state=ChainTxState.CONFIRMED,
            block_number=slot,
            actual_output=actual_output,
            gas_cost=fee,
        )
