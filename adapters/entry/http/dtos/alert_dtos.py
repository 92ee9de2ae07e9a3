from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from adapters.entry.http.dtos.common_dtos import _required
from core.domain.enums.trigger_enums import AlertType


class CreateAlertIn(BaseModel):
    user_address: str
    chain_id: str
    token_address: str
    token_symbol: str = Field(default="")
    token_decimals: int = Field(default=18, ge=0, le=36)

    alert_type: AlertType
    target_price: Optional[float] = Field(default=None, gt=0)
    target_percent_change: Optional[float] = None

    notify_push: bool = True
    notify_email: bool = False
    notify_telegram: bool = False
    telegram_chat_id: Optional[str] = None
    note: Optional[str] = Field(default=None, max_length=280)

    @field_validator("user_address", "token_address")
    @classmethod
    def _req(cls, v: str) -> str:
        return _required(v)

    @field_validator("chain_id")
    @classmethod
    def _chain(cls, v: str) -> str:
        return _required(v).lower()

    @field_validator("alert_type", mode="before")
    @classmethod
    def _upper(cls, v):
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def _targets(self) -> "CreateAlertIn":
        if self.alert_type == AlertType.PERCENT_CHANGE:
            if not self.target_percent_change:
                raise ValueError("target_percent_change is required for PERCENT_CHANGE alerts.")
        elif self.target_price is None:
            raise ValueError("target_price is required for ABOVE/BELOW alerts.")
        return self
