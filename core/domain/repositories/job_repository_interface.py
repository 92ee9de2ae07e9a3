from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

from core.domain.entities.job_entity import JobEntity


class JobRepository(ABC):
    @abstractmethod
    async def insert(self, job: JobEntity) -> JobEntity:
        """
        Insert a job. If another unfinished job holds the same dedupe key,
        that job is returned instead.
        """
        raise NotImplementedError

    @abstractmethod
    async def get(self, job_id: str) -> Optional[JobEntity]:
        raise NotImplementedError

    @abstractmethod
    async def claim_next(self, *, queue: str, worker_id: str, now_ms: int, lease_ms: int) -> Optional[JobEntity]:
        """
        Lease the next runnable job: WAITING and due, or ACTIVE with an
        expired lease. Increments `attempts_made`.
        """
        raise NotImplementedError

    @abstractmethod
    async def complete(
        self,
        *,
        job_id: str,
        worker_id: str,
        result: Optional[Dict[str, Any]],
        expire_at: datetime,
    ) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def fail(self, *, job_id: str, worker_id: str, error: str, expire_at: datetime) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def reschedule(
        self,
        *,
        job_id: str,
        worker_id: str,
        run_at: int,
        error: Optional[str] = None,
        count_attempt: bool = True,
    ) -> bool:
        raise NotImplementedError
