from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from adapters.entry.http.dtos.common_dtos import _required


class CexCredentialsIn(BaseModel):
    exchange: str = Field(default="mexc")
    api_key: str
    api_secret: str

    @field_validator("exchange")
    @classmethod
    def _exchange(cls, v: str) -> str:
        return _required(v).lower()


class CreateSwapIn(BaseModel):
    quote_id: str
    route_id: str
    user_address: str
    cex_credentials: Optional[CexCredentialsIn] = Field(
        default=None,
        description="Required only for routes with CEX legs; stored with the swap and never returned",
    )

    @field_validator("quote_id", "route_id", "user_address")
    @classmethod
    def _req(cls, v: str) -> str:
        return _required(v)

    def credentials(self) -> Optional[Dict[str, Any]]:
        return self.cex_credentials.model_dump() if self.cex_credentials else None


class ExecuteStepIn(BaseModel):
    step_index: int = Field(..., ge=0)
    signed_transaction: str = Field(..., description="Hex (EVM), base64 (Solana) or JSON blob (Sui)")

    @field_validator("signed_transaction")
    @classmethod
    def _signed(cls, v: str) -> str:
        return _required(v)


class RefundIn(BaseModel):
    refund_tx_hash: str
    reason: str = Field(default="")

    @field_validator("refund_tx_hash")
    @classmethod
    def _tx(cls, v: str) -> str:
        return _required(v)
