from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from adapters.entry.http.dtos.common_dtos import TokenIn, _base_units, _required
from core.domain.enums.trigger_enums import OrderSide


class CreateLimitOrderIn(BaseModel):
    user_address: str
    side: OrderSide
    input_token: TokenIn
    output_token: TokenIn
    input_amount: str = Field(..., description="Amount of input token in base units")
    target_price: float = Field(..., gt=0, description="Output tokens per input token")
    slippage_bps: int = Field(default=50, ge=1, le=5000)
    expires_in_ms: Optional[int] = Field(default=None, gt=0)

    @field_validator("user_address")
    @classmethod
    def _req(cls, v: str) -> str:
        return _required(v)

    @field_validator("side", mode="before")
    @classmethod
    def _upper(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator("input_amount")
    @classmethod
    def _amount(cls, v: str) -> str:
        return _base_units(v)
