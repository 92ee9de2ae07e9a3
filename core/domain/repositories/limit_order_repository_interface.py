from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from core.domain.entities.trigger_entities import LimitOrderEntity


class LimitOrderRepository(ABC):
    @abstractmethod
    async def insert(self, entity: LimitOrderEntity) -> LimitOrderEntity:
        raise NotImplementedError

    @abstractmethod
    async def get(self, order_id: str) -> Optional[LimitOrderEntity]:
        raise NotImplementedError

    @abstractmethod
    async def list_by_user(self, *, user_address: str, status: Optional[str] = None) -> List[LimitOrderEntity]:
        raise NotImplementedError

    @abstractmethod
    async def list_pending(self) -> List[LimitOrderEntity]:
        raise NotImplementedError

    @abstractmethod
    async def cancel(self, *, order_id: str, user_address: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def expire(self, order_id: str, *, now_ms: int) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def touch_checked(self, order_ids: Sequence[str], *, now_ms: int) -> None:
        raise NotImplementedError

    @abstractmethod
    async def claim(self, order_id: str, *, token: str, until_ms: int, now_ms: int) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def mark_triggered(
        self,
        order_id: str,
        *,
        token: str,
        swap_id: str,
        execution_price: float,
        now_ms: int,
    ) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def release(self, order_id: str, *, token: str, error: str, max_failures: int) -> Optional[LimitOrderEntity]:
        """
        Drop the lease after a failed execution and count the failure. The
        order becomes FAILED once `max_failures` consecutive failures pile up.
        """
        raise NotImplementedError
