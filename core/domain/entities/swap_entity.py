from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import Field

from core.domain.entities.base_entity import MongoEntity
from core.domain.entities.quote_entity import RouteEntity, RouteStep
from core.domain.enums.swap_enums import StepStatus, SwapStatus


class SwapStepExecution(RouteStep):
    """
    A route step plus its execution progress.
    """

    status: StepStatus = StepStatus.PENDING
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    destination_tx_hash: Optional[str] = None
    actual_output: Optional[str] = None
    gas_used: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[int] = None
    completed_at: Optional[int] = None

    @classmethod
    def from_route_step(cls, step: RouteStep) -> "SwapStepExecution":
        return cls.model_validate(step.model_dump(mode="python"))


class SwapEntity(MongoEntity):
    """
    Collection: swaps

    `version` is bumped by every persisted mutation and guards
    compare-and-swap updates.
    """

    user_address: str
    tenant_id: Optional[str] = None
    quote_id: str
    route_id: str
    client_ref: Optional[str] = None

    route: RouteEntity
    steps: List[SwapStepExecution] = Field(default_factory=list)
    status: SwapStatus = SwapStatus.PENDING
    current_step_index: int = 0

    input_amount: str
    expected_output: str
    actual_output: Optional[str] = None
    platform_fee: str = "0"
    gas_cost: str = "0"

    started_at: Optional[int] = None
    completed_at: Optional[int] = None
    error: Optional[str] = None
    refund_tx_hash: Optional[str] = None
    refund_reason: Optional[str] = None
    refunded_by: Optional[str] = None

    version: int = 0
    cex_credentials: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return SwapStatus(self.status).is_terminal

    @property
    def current_step(self) -> Optional[SwapStepExecution]:
        if 0 <= self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None
