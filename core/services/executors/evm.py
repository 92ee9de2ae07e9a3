from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from eth_account import Account
from web3 import Web3

from adapters.chain.erc20_transfers import parse_erc20_transfers, received_amount
from adapters.chain.evm_client import EvmChainClient
from core.domain.entities.quote_entity import RouteStep
from core.domain.enums.swap_enums import ChainTxState, ChainType, GasStrategy
from core.domain.schemas.chain_types import ChainTxStatus, SubmitResult, UnsignedTransaction
from core.services.chain_registry import get_chain
from core.services.exceptions import InvalidSignatureError, ValidationFailedError
from core.services.executors.base import BaseStepExecutor
from core.services.normalize import _norm_lower

logger = logging.getLogger(__name__)

FALLBACK_GAS_LIMIT = 500_000


def pad_gas(estimate: Optional[int], strategy: GasStrategy) -> int:
    """
    Applies a safety buffer to the provider's gas estimate.
    Falls back to a static 500k when the route carries no estimate.
    """
    base_estimate = int(estimate) if estimate else FALLBACK_GAS_LIMIT

    if strategy == GasStrategy.DEFAULT:
        return base_estimate
    if strategy == GasStrategy.BUFFERED:
        return int(base_estimate * 1.25) + 10_000
    if strategy == GasStrategy.AGGRESSIVE:
        return int(base_estimate * 1.5) + 25_000
    return base_estimate


class EvmStepExecutor(BaseStepExecutor):
    chain_type = ChainType.EVM

    def __init__(self, client: EvmChainClient, gas_strategy: GasStrategy = GasStrategy.BUFFERED) -> None:
        self.client = client
        self.gas_strategy = gas_strategy

    def build_transaction(self, step: RouteStep, user_address: str) -> UnsignedTransaction:
        if not step.tx_to or not step.tx_data:
            raise ValidationFailedError("transaction data not available in route step")

        chain = get_chain(step.chain_id)
        return UnsignedTransaction(
            chain_id=chain.key,
            to=Web3.to_checksum_address(step.tx_to),
            data=step.tx_data,
            value=str(step.tx_value or "0"),
            gas_limit=pad_gas(step.estimated_gas, self.gas_strategy),
            evm_chain_id=chain.evm_chain_id,
        )

    def recover_sender(self, signed_transaction: str) -> str:
        raw = (signed_transaction or "").strip()
        if not raw.startswith("0x") or len(raw) < 4:
            raise InvalidSignatureError("signed transaction must be a 0x-prefixed hex string")
        try:
            return Account.recover_transaction(raw)
        except Exception as exc:
            raise InvalidSignatureError(f"cannot recover signer: {exc}") from exc

    async def submit(
        self,
        step: RouteStep,
        signed_transaction: str,
        *,
        user_address: str,
        cex_credentials: Optional[Dict[str, Any]] = None,
    ) -> SubmitResult:
        sender = self.recover_sender(signed_transaction)
        if _norm_lower(sender) != _norm_lower(user_address):
            raise InvalidSignatureError(
                "transaction is not signed by the swap owner",
                details={"signer": sender, "owner": user_address},
            )

        tx_hash = await self.client.send_raw_transaction(step.chain_id, signed_transaction.strip())
        logger.info("EVM tx broadcast chain=%s hash=%s", step.chain_id, tx_hash)
        return SubmitResult(tx_hash=tx_hash)

    async def get_status(
        self,
        chain_id: str,
        tx_hash: str,
        *,
        step: RouteStep,
        user_address: str,
        cex_credentials: Optional[Dict[str, Any]] = None,
    ) -> ChainTxStatus:
        receipt = await self.client.get_receipt(chain_id, tx_hash)
        if receipt is None:
            tx = await self.client.get_transaction(chain_id, tx_hash)
            if tx is None:
                return ChainTxStatus(state=ChainTxState.DROPPED)
            return ChainTxStatus(state=ChainTxState.PENDING)

        block_number = int(receipt.get("blockNumber") or 0)
        if int(receipt.get("status", 1)) == 0:
            return ChainTxStatus(state=ChainTxState.FAILED, block_number=block_number, error="Transaction reverted")

        head = await self.client.block_number(chain_id)
        confirmations = max(head - block_number + 1, 0)
        required = get_chain(chain_id).confirmations
        if confirmations < required:
            return ChainTxStatus(state=ChainTxState.CONFIRMING, confirmations=confirmations, block_number=block_number)

        gas_used = int(receipt.get("gasUsed") or 0)
        gas_price = int(receipt.get("effectiveGasPrice") or 0)

        actual_output: Optional[str] = None
        out_token = step.output_token.address
        if Web3.is_address(out_token):
            transfers = parse_erc20_transfers(receipt, token_allowlist=[out_token])
            got = received_amount(transfers, token=out_token, recipient=user_address)
            if got > 0:
                actual_output = str(got)

        return ChainTxStatus(
            state=ChainTxState.CONFIRMED,
            confirmations=confirmations,
            block_number=block_number,
            actual_output=actual_output,
            gas_used=str(gas_used),
            gas_cost=str(gas_used * gas_price),
        )
