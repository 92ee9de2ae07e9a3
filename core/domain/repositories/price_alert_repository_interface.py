from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from core.domain.entities.trigger_entities import AlertHistoryEntity, PriceAlertEntity


class PriceAlertRepository(ABC):
    @abstractmethod
    async def insert(self, entity: PriceAlertEntity) -> PriceAlertEntity:
        raise NotImplementedError

    @abstractmethod
    async def get(self, alert_id: str) -> Optional[PriceAlertEntity]:
        raise NotImplementedError

    @abstractmethod
    async def list_by_user(self, *, user_address: str, active_only: bool = False) -> List[PriceAlertEntity]:
        raise NotImplementedError

    @abstractmethod
    async def list_active(self) -> List[PriceAlertEntity]:
        raise NotImplementedError

    @abstractmethod
    async def deactivate(self, *, alert_id: str, user_address: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def touch_checked(self, alert_ids: Sequence[str], *, now_ms: int) -> None:
        raise NotImplementedError

    @abstractmethod
    async def claim(self, alert_id: str, *, token: str, until_ms: int, now_ms: int) -> bool:
        """
        Lease an active, unfired alert that nobody else currently holds.
        """
        raise NotImplementedError

    @abstractmethod
    async def mark_fired(self, alert_id: str, *, token: str, price: float, now_ms: int) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def release(self, alert_id: str, *, token: str, error: str) -> bool:
        raise NotImplementedError


class AlertHistoryRepository(ABC):
    @abstractmethod
    async def insert_once(self, entity: AlertHistoryEntity) -> bool:
        """
        Insert the history row for an alert. Returns False when a row for the
        same alert already exists.
        """
        raise NotImplementedError

    @abstractmethod
    async def set_notifications(self, alert_id: str, channels: Sequence[str]) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_by_user(self, *, user_address: str, limit: int = 50) -> List[AlertHistoryEntity]:
        raise NotImplementedError
