from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from core.domain.enums.swap_enums import ChainTxState


class UnsignedTransaction(BaseModel):
    """
    What the client must sign (or, for CEX legs, execute) for one step.
    """

    chain_id: str
    to: Optional[str] = None
    data: Optional[str] = None
    value: str = "0"
    gas_limit: Optional[int] = None
    evm_chain_id: Optional[int] = None
    serialized_transaction: Optional[str] = None
    cex_instructions: Optional[Dict[str, Any]] = None


class SubmitResult(BaseModel):
    tx_hash: str


class ChainTxStatus(BaseModel):
    state: ChainTxState
    confirmations: int = 0
    block_number: Optional[int] = None
    actual_output: Optional[str] = None
    gas_used: Optional[str] = None
    gas_cost: Optional[str] = None
    destination_tx_hash: Optional[str] = None
    error: Optional[str] = None


class TokenTransfer(BaseModel):
    token: str
    from_address: str = Field(..., alias="from")
    to_address: str = Field(..., alias="to")
    amount_raw: str

    model_config = {"populate_by_name": True}


class BridgeStatus(BaseModel):
    state: ChainTxState
    destination_tx_hash: Optional[str] = None
    received_amount: Optional[str] = None
    error: Optional[str] = None
