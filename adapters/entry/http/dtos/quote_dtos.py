from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from adapters.entry.http.dtos.common_dtos import TokenIn, _base_units


class QuoteRequestIn(BaseModel):
    input_token: TokenIn
    output_token: TokenIn
    input_amount: str = Field(..., description="Amount of input token in base units")
    slippage: float = Field(default=0.5, gt=0, le=50, description="Max slippage in percent")
    user_address: Optional[str] = None

    @field_validator("input_amount")
    @classmethod
    def _amount(cls, v: str) -> str:
        return _base_units(v)
