from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from core.domain.entities.quote_entity import TokenRef


def _required(v: str) -> str:
    v = (v or "").strip()
    if not v:
        raise ValueError("Field is required.")
    return v


def _base_units(v: str) -> str:
    v = (v or "").strip()
    if not v.isdigit() or int(v) <= 0:
        raise ValueError("Amount must be a positive integer in base units.")
    return str(int(v))


class TokenIn(BaseModel):
    chain: str = Field(..., description='Chain key (e.g. "ethereum", "base", "solana", "sui")')
    address: str = Field(..., description="Token address / mint / coin type")
    symbol: str = Field(default="")
    decimals: int = Field(default=18, ge=0, le=36)

    @field_validator("chain")
    @classmethod
    def _chain(cls, v: str) -> str:
        return _required(v).lower()

    @field_validator("address")
    @classmethod
    def _address(cls, v: str) -> str:
        return _required(v)

    def to_ref(self) -> TokenRef:
        return TokenRef(chain=self.chain, address=self.address, symbol=self.symbol, decimals=self.decimals)
