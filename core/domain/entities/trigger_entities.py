from __future__ import annotations

from typing import List, Optional

from pydantic import Field

from core.domain.entities.base_entity import EmbeddedModel, MongoEntity
from core.domain.entities.quote_entity import TokenRef
from core.domain.enums.trigger_enums import (
    AlertType,
    DCAExecutionStatus,
    DCAFrequency,
    DCAStatus,
    LimitOrderStatus,
    OrderSide,
)


class TriggerClaim(EmbeddedModel):
    token: str
    until: int


class TriggerEntity(MongoEntity):
    """
    Fields shared by every conditional trigger.
    """

    user_address: str
    tenant_id: Optional[str] = None
    is_active: bool = True
    last_checked_at: Optional[int] = None
    claim: Optional[TriggerClaim] = None
    last_error: Optional[str] = None
    consecutive_failures: int = 0


class PriceAlertEntity(TriggerEntity):
    """
    Collection: price_alerts
    """

    chain_id: str
    token_address: str
    token_symbol: str = ""
    token_decimals: int = 18

    alert_type: AlertType
    target_price: Optional[float] = None
    target_percent_change: Optional[float] = None
    price_at_creation: Optional[float] = None

    notify_push: bool = True
    notify_email: bool = False
    notify_telegram: bool = False
    telegram_chat_id: Optional[str] = None
    note: Optional[str] = None

    fired: bool = False
    fired_at: Optional[int] = None
    triggered_price: Optional[float] = None


class AlertHistoryEntity(MongoEntity):
    """
    Collection: alert_history (one row per fired alert)
    """

    alert_id: str
    user_address: str
    tenant_id: Optional[str] = None
    token_symbol: str = ""
    alert_type: AlertType
    target_price: Optional[float] = None
    target_percent_change: Optional[float] = None
    triggered_price: float
    notifications_sent: List[str] = Field(default_factory=list)


class LimitOrderEntity(TriggerEntity):
    """
    Collection: limit_orders

    `target_price` is expressed as output tokens per input token.
    """

    side: OrderSide
    input_token: TokenRef
    output_token: TokenRef
    input_amount: str
    target_price: float
    slippage_bps: int = 50
    expires_at: Optional[int] = None

    status: LimitOrderStatus = LimitOrderStatus.PENDING
    swap_id: Optional[str] = None
    execution_price: Optional[float] = None
    triggered_at: Optional[int] = None


class DCAStrategyEntity(TriggerEntity):
    """
    Collection: dca_strategies
    """

    name: str = ""
    input_token: TokenRef
    output_token: TokenRef
    amount_per_execution: str

    frequency: DCAFrequency
    custom_interval_ms: Optional[int] = None
    total_executions: Optional[int] = None
    execution_number: int = 0
    next_execution_at: int

    status: DCAStatus = DCAStatus.ACTIVE
    slippage_bps: int = 100
    max_price_impact_bps: Optional[int] = None

    total_input_spent: str = "0"
    total_output_expected: str = "0"
    completed_at: Optional[int] = None


class DCAExecutionEntity(MongoEntity):
    """
    Collection: dca_executions (unique per strategy, execution number and attempt)
    """

    strategy_id: str
    execution_number: int
    attempt: int = 1
    status: DCAExecutionStatus
    swap_id: Optional[str] = None
    input_amount: Optional[str] = None
    expected_output: Optional[str] = None
    price_impact_bps: Optional[int] = None
    reason: Optional[str] = None
