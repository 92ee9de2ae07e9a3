from __future__ import annotations

from typing import Optional

from core.domain.entities.base_entity import MongoEntity
from core.domain.enums.swap_enums import MonitorType


class MonitoredTransactionEntity(MongoEntity):
    """
    Collection: monitored_transactions (one watch per swap step)
    """

    swap_id: str
    step_index: int
    chain_id: str
    tx_hash: str
    type: MonitorType

    started_at: int
    last_checked_at: Optional[int] = None
    checks: int = 0
    drop_rechecks: int = 0
    seen_block_number: Optional[int] = None
