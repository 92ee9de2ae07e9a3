from __future__ import annotations

from enum import StrEnum


class SwapStatus(StrEnum):
    """
    Lifecycle of a swap as a whole.
    """

    PENDING = "PENDING"
    CONFIRMING = "CONFIRMING"
    PROCESSING = "PROCESSING"
    BRIDGING = "BRIDGING"
    COMPLETING = "COMPLETING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"

    @property
    def is_terminal(self) -> bool:
        return self in (SwapStatus.COMPLETED, SwapStatus.FAILED, SwapStatus.REFUNDED)


class StepStatus(StrEnum):
    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    CONFIRMING = "CONFIRMING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.CONFIRMED, StepStatus.FAILED)


class StepType(StrEnum):
    SWAP = "SWAP"
    BRIDGE = "BRIDGE"
    CEX_DEPOSIT = "CEX_DEPOSIT"
    CEX_TRADE = "CEX_TRADE"
    CEX_WITHDRAW = "CEX_WITHDRAW"


class ChainType(StrEnum):
    EVM = "EVM"
    SOLANA = "SOLANA"
    SUI = "SUI"
    CEX = "CEX"


class MonitorType(StrEnum):
    """
    How a submitted transaction is tracked until it settles.
    """

    EVM = "EVM"
    SOLANA = "SOLANA"
    SUI = "SUI"
    BRIDGE = "BRIDGE"
    CEX = "CEX"


class ChainTxState(StrEnum):
    PENDING = "PENDING"
    CONFIRMING = "CONFIRMING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    DROPPED = "DROPPED"


class GasStrategy(StrEnum):
    """
    Padding applied to a route step's provider gas estimate.
    """

    DEFAULT = "default"
    BUFFERED = "buffered"
    AGGRESSIVE = "aggressive"
