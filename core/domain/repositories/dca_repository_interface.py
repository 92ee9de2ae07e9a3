from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from core.domain.entities.trigger_entities import DCAExecutionEntity, DCAStrategyEntity


class DCAStrategyRepository(ABC):
    @abstractmethod
    async def insert(self, entity: DCAStrategyEntity) -> DCAStrategyEntity:
        raise NotImplementedError

    @abstractmethod
    async def get(self, strategy_id: str) -> Optional[DCAStrategyEntity]:
        raise NotImplementedError

    @abstractmethod
    async def list_by_user(self, *, user_address: str) -> List[DCAStrategyEntity]:
        raise NotImplementedError

    @abstractmethod
    async def list_due(self, *, now_ms: int) -> List[DCAStrategyEntity]:
        raise NotImplementedError

    @abstractmethod
    async def transition(
        self,
        *,
        strategy_id: str,
        user_address: str,
        from_statuses: Sequence[str],
        to_status: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def touch_checked(self, strategy_ids: Sequence[str], *, now_ms: int) -> None:
        raise NotImplementedError

    @abstractmethod
    async def claim(self, strategy_id: str, *, token: str, until_ms: int, now_ms: int) -> bool:
        """
        Lease an ACTIVE strategy whose next execution is due.
        """
        raise NotImplementedError

    @abstractmethod
    async def record_success(
        self,
        strategy_id: str,
        *,
        token: str,
        expected_execution_number: int,
        next_execution_at: int,
        total_input_spent: str,
        total_output_expected: str,
        completed: bool,
        now_ms: int,
    ) -> bool:
        """
        Advance `execution_number` by one, only if it still equals
        `expected_execution_number` and the lease is still held.
        """
        raise NotImplementedError

    @abstractmethod
    async def record_skip(self, strategy_id: str, *, token: str, next_execution_at: int, reason: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def record_failure(
        self,
        strategy_id: str,
        *,
        token: str,
        next_execution_at: int,
        error: str,
        max_failures: int,
    ) -> Optional[DCAStrategyEntity]:
        raise NotImplementedError


class DCAExecutionRepository(ABC):
    @abstractmethod
    async def insert(self, entity: DCAExecutionEntity) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def count_attempts(self, *, strategy_id: str, execution_number: int) -> int:
        raise NotImplementedError

    @abstractmethod
    async def find_completed(self, *, strategy_id: str, execution_number: int) -> Optional[DCAExecutionEntity]:
        raise NotImplementedError

    @abstractmethod
    async def list_by_strategy(self, *, strategy_id: str, limit: int = 50) -> List[DCAExecutionEntity]:
        raise NotImplementedError
