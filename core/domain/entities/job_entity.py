from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from core.domain.entities.base_entity import EmbeddedModel, MongoEntity
from core.domain.enums.job_enums import BackoffType, JobStatus, QueueName


class Backoff(EmbeddedModel):
    type: BackoffType = BackoffType.EXPONENTIAL
    delay_ms: int = 1000

    def delay_for(self, attempts_made: int) -> int:
        """
        Delay before the next attempt, given how many attempts already ran.
        """
        if BackoffType(self.type) == BackoffType.FIXED:
            return self.delay_ms
        return self.delay_ms * (2 ** max(attempts_made - 1, 0))


class JobEntity(MongoEntity):
    """
    Collection: jobs
    """

    queue: QueueName
    payload: Dict[str, Any]
    status: JobStatus = JobStatus.WAITING

    attempts_made: int = 0
    max_attempts: int = 3
    backoff: Backoff = Backoff()
    dedupe_key: Optional[str] = None

    run_at: int
    locked_until: Optional[int] = None
    worker_id: Optional[str] = None

    last_error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    finished_at: Optional[int] = None
    expire_at: Optional[datetime] = None
