from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from core.domain.entities.monitored_tx_entity import MonitoredTransactionEntity


class MonitoredTransactionRepository(ABC):
    @abstractmethod
    async def upsert(self, entity: MonitoredTransactionEntity) -> MonitoredTransactionEntity:
        raise NotImplementedError

    @abstractmethod
    async def get(self, *, swap_id: str, step_index: int) -> Optional[MonitoredTransactionEntity]:
        raise NotImplementedError

    @abstractmethod
    async def record_check(
        self,
        *,
        swap_id: str,
        step_index: int,
        now_ms: int,
        drop_rechecks: Optional[int] = None,
        seen_block_number: Optional[int] = None,
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, *, swap_id: str, step_index: int) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_all(self) -> List[MonitoredTransactionEntity]:
        raise NotImplementedError
