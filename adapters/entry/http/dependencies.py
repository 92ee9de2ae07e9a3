from __future__ import annotations

from functools import lru_cache
from typing import Optional

from fastapi import Header

from core.use_cases.dca_usecase import DCAUseCase
from core.use_cases.limit_orders_usecase import LimitOrdersUseCase
from core.use_cases.price_alerts_usecase import PriceAlertsUseCase
from core.use_cases.quotes_usecase import QuotesUseCase
from core.use_cases.swaps_usecase import SwapsUseCase


@lru_cache(maxsize=1)
def get_quotes_use_case() -> QuotesUseCase:
    return QuotesUseCase.from_settings()


@lru_cache(maxsize=1)
def get_swaps_use_case() -> SwapsUseCase:
    return SwapsUseCase.from_settings()


@lru_cache(maxsize=1)
def get_alerts_use_case() -> PriceAlertsUseCase:
    return PriceAlertsUseCase.from_settings()


@lru_cache(maxsize=1)
def get_limit_orders_use_case() -> LimitOrdersUseCase:
    return LimitOrdersUseCase.from_settings(swaps=get_swaps_use_case())


@lru_cache(maxsize=1)
def get_dca_use_case() -> DCAUseCase:
    return DCAUseCase.from_settings(swaps=get_swaps_use_case())


def get_tenant_id(x_tenant_id: Optional[str] = Header(default=None)) -> Optional[str]:
    v = (x_tenant_id or "").strip()
    return v or None
