from __future__ import annotations

from typing import Any, Dict, Optional

from adapters.external.market.cex_gateway_http_client import CexGatewayHttpClient
from core.domain.entities.quote_entity import RouteStep
from core.domain.enums.swap_enums import ChainTxState, ChainType, StepType
from core.domain.schemas.chain_types import ChainTxStatus, SubmitResult, UnsignedTransaction
from core.services.exceptions import ValidationFailedError
from core.services.executors.base import BaseStepExecutor

CHAIN_TO_NETWORK: Dict[str, str] = {
    "ethereum": "ERC20",
    "arbitrum": "ARBITRUM",
    "optimism": "OPTIMISM",
    "polygon": "MATIC",
    "bsc": "BEP20",
    "avalanche": "AVAX_CCHAIN",
    "base": "BASE",
    "solana": "SOL",
    "sui": "SUI",
}

_DONE = {"FILLED", "COMPLETED", "SUCCESS", "DONE"}
_FAILED = {"FAILED", "REJECTED", "CANCELED", "CANCELLED", "EXPIRED"}

_OPERATIONS = {
    StepType.CEX_DEPOSIT: "deposit",
    StepType.CEX_TRADE: "market_order",
    StepType.CEX_WITHDRAW: "withdraw",
}


def _exchange(chain_id: str) -> str:
    return chain_id.split(":", 1)[1] if ":" in chain_id else chain_id


class CexStepExecutor(BaseStepExecutor):
    """
    CEX legs have no on-chain transaction to sign: the client receives
    exchange instructions and the gateway executes them with the swap's
    stored API credentials.
    """

    chain_type = ChainType.CEX

    def __init__(self, gateway: CexGatewayHttpClient) -> None:
        self.gateway = gateway

    def _params(self, step: RouteStep, user_address: str) -> Dict[str, Any]:
        step_type = StepType(step.type)
        if step_type == StepType.CEX_DEPOSIT:
            return {
                "coin": step.input_token.symbol,
                "network": CHAIN_TO_NETWORK.get(step.input_token.chain, step.input_token.chain.upper()),
                "amount": step.input_amount,
            }
        if step_type == StepType.CEX_TRADE:
            return {
                "symbol": f"{step.input_token.symbol}{step.output_token.symbol}",
                "side": "SELL",
                "type": "MARKET",
                "quantity": step.input_amount,
            }
        return {
            "coin": step.output_token.symbol,
            "network": CHAIN_TO_NETWORK.get(step.output_token.chain, step.output_token.chain.upper()),
            "address": user_address,
            "amount": step.input_amount,
        }

    def build_transaction(self, step: RouteStep, user_address: str) -> UnsignedTransaction:
        step_type = StepType(step.type)
        if step_type not in _OPERATIONS:
            raise ValidationFailedError(f"step type {step.type} is not a CEX operation")
        return UnsignedTransaction(
            chain_id=step.chain_id,
            cex_instructions={
                "exchange": _exchange(step.chain_id),
                "operation": _OPERATIONS[step_type],
                "params": self._params(step, user_address),
            },
        )

    async def submit(
        self,
        step: RouteStep,
        signed_transaction: str,
        *,
        user_address: str,
        cex_credentials: Optional[Dict[str, Any]] = None,
    ) -> SubmitResult:
        if not cex_credentials:
            raise ValidationFailedError("CEX credentials required")

        instructions = self.build_transaction(step, user_address).cex_instructions or {}
        params = dict(instructions.get("params") or {})
        if StepType(step.type) == StepType.CEX_DEPOSIT and signed_transaction:
            # hash of the on-chain transfer the user sent to the deposit address
            params["deposit_tx_hash"] = signed_transaction.strip()

        res = await self.gateway.submit_operation(
            exchange=instructions["exchange"],
            operation=instructions["operation"],
            params=params,
            credentials=cex_credentials,
        )
        op_id = res.get("operation_id")
        if not op_id:
            raise ValidationFailedError("exchange gateway returned no operation id")
        return SubmitResult(tx_hash=f"cex:{op_id}")

    async def get_status(
        self,
        chain_id: str,
        tx_hash: str,
        *,
        step: RouteStep,
        user_address: str,
        cex_credentials: Optional[Dict[str, Any]] = None,
    ) -> ChainTxStatus:
        op_id = tx_hash.split(":", 1)[1] if tx_hash.startswith("cex:") else tx_hash
        res = await self.gateway.get_operation(
            exchange=_exchange(chain_id),
            operation_id=op_id,
            credentials=cex_credentials or {},
        )
        status = str(res.get("status") or "").upper()

        if status in _DONE:
            return ChainTxStatus(
                state=ChainTxState.CONFIRMED,
                actual_output=res.get("executed_qty"),
                destination_tx_hash=res.get("tx_hash"),
            )
        if status in _FAILED:
            return ChainTxStatus(state=ChainTxState.FAILED, error=res.get("error") or f"operation {status.lower()}")
        return ChainTxStatus(state=ChainTxState.CONFIRMING if status else ChainTxState.PENDING)
