from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from core.domain.entities.base_entity import EmbeddedModel, MongoEntity
from core.domain.enums.swap_enums import StepType


class TokenRef(EmbeddedModel):
    chain: str
    address: str
    symbol: str = ""
    decimals: int = 18


class RouteStep(EmbeddedModel):
    """
    One executable leg of a route as returned by the quote provider.
    """

    type: StepType
    chain_id: str
    protocol: str = ""

    input_token: TokenRef
    output_token: TokenRef
    input_amount: str
    expected_output: str
    minimum_output: str = "0"

    estimated_gas: Optional[int] = None
    estimated_gas_usd: Optional[str] = None
    estimated_time: int = 0

    # execution payload from the provider
    tx_to: Optional[str] = None
    tx_data: Optional[str] = None
    tx_value: Optional[str] = None
    serialized_transaction: Optional[str] = None

    destination_chain_id: Optional[str] = None
    price_impact: Optional[float] = None
    slippage: Optional[float] = None


class RouteEntity(EmbeddedModel):
    id: str
    steps: List[RouteStep]

    input_token: TokenRef
    output_token: TokenRef
    input_amount: str
    expected_output: str
    minimum_output: str = "0"

    estimated_gas_usd: Optional[str] = None
    platform_fee: str = "0"
    estimated_time: int = 0
    price_impact: Optional[float] = None
    tags: List[str] = Field(default_factory=list)


class QuoteEntity(MongoEntity):
    """
    Collection: quotes (TTL on expires_at_dt)
    """

    input_token: TokenRef
    output_token: TokenRef
    input_amount: str
    slippage: float = 0.5
    user_address: Optional[str] = None

    routes: List[RouteEntity] = Field(default_factory=list)
    best_route_id: Optional[str] = None

    expires_at: int
    expires_at_dt: Optional[datetime] = None
    indicative: bool = False

    def find_route(self, route_id: str) -> Optional[RouteEntity]:
        for r in self.routes:
            if r.id == route_id:
                return r
        return None
