from .dca_repository_interface import DCAExecutionRepository, DCAStrategyRepository
from .job_repository_interface import JobRepository
from .limit_order_repository_interface import LimitOrderRepository
from .monitored_tx_repository_interface import MonitoredTransactionRepository
from .price_alert_repository_interface import AlertHistoryRepository, PriceAlertRepository
from .quote_repository_interface import QuoteRepository
from .swap_repository_interface import SwapRepository

__all__ = [
    "AlertHistoryRepository",
    "DCAExecutionRepository",
    "DCAStrategyRepository",
    "JobRepository",
    "LimitOrderRepository",
    "MonitoredTransactionRepository",
    "PriceAlertRepository",
    "QuoteRepository",
    "SwapRepository",
]
