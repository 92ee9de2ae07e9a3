from __future__ import annotations

import logging
from typing import Optional

from pymongo.asynchronous.database import AsyncDatabase

from adapters.external.database.dca_repository_mongodb import (
    DCAExecutionRepositoryMongoDB,
    DCAStrategyRepositoryMongoDB,
)
from adapters.external.database.job_repository_mongodb import JobRepositoryMongoDB
from adapters.external.database.limit_order_repository_mongodb import LimitOrderRepositoryMongoDB
from adapters.external.database.monitored_tx_repository_mongodb import MonitoredTransactionRepositoryMongoDB
from adapters.external.database.price_alert_repository_mongodb import (
    AlertHistoryRepositoryMongoDB,
    PriceAlertRepositoryMongoDB,
)
from adapters.external.database.quote_repository_mongodb import QuoteRepositoryMongoDB
from adapters.external.database.swap_repository_mongodb import SwapRepositoryMongoDB

logger = logging.getLogger(__name__)

_REPOSITORIES = (
    QuoteRepositoryMongoDB,
    SwapRepositoryMongoDB,
    MonitoredTransactionRepositoryMongoDB,
    JobRepositoryMongoDB,
    PriceAlertRepositoryMongoDB,
    AlertHistoryRepositoryMongoDB,
    LimitOrderRepositoryMongoDB,
    DCAStrategyRepositoryMongoDB,
    DCAExecutionRepositoryMongoDB,
)


async def init_mongo_indexes(db: Optional[AsyncDatabase] = None) -> None:
    """
    Create the indexes every collection relies on (unique keys, TTLs and
    the lookups used by the schedulers). Safe to run on every start.
    """
    for repo_cls in _REPOSITORIES:
        await repo_cls(db).ensure_indexes()
    logger.info("mongo indexes ensured for %d collections", len(_REPOSITORIES))
