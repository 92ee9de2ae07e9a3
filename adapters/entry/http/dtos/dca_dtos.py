from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from adapters.entry.http.dtos.common_dtos import TokenIn, _base_units, _required
from core.domain.enums.trigger_enums import DCAFrequency


class CreateDCAIn(BaseModel):
    user_address: str
    name: str = Field(default="", max_length=80)
    input_token: TokenIn
    output_token: TokenIn
    amount_per_execution: str = Field(..., description="Input amount per execution in base units")
    frequency: DCAFrequency
    custom_interval_ms: Optional[int] = Field(default=None, gt=0)
    total_executions: Optional[int] = Field(default=None, ge=2, le=365)
    slippage_bps: int = Field(default=100, ge=1, le=5000)
    max_price_impact_bps: Optional[int] = Field(default=300, ge=0, le=10_000)

    @field_validator("user_address")
    @classmethod
    def _req(cls, v: str) -> str:
        return _required(v)

    @field_validator("frequency", mode="before")
    @classmethod
    def _upper(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator("amount_per_execution")
    @classmethod
    def _amount(cls, v: str) -> str:
        return _base_units(v)
