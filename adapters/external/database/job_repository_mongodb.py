# job_repository_mongodb.py

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import DuplicateKeyError

from adapters.external.database.helper_repo import sanitize_for_mongo
from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.job_entity import JobEntity
from core.domain.enums.job_enums import JobStatus
from core.domain.repositories.job_repository_interface import JobRepository

logger = logging.getLogger(__name__)


class JobRepositoryMongoDB(JobRepository):
    """
    Collection: jobs

    - `dedupe_key` is unique among unfinished jobs (it is unset on finish).
    - Finished jobs are dropped by the TTL index on `expire_at`.
    """

    COLLECTION_NAME = "jobs"

    def __init__(self, db: Optional[AsyncDatabase] = None) -> None:
        self._db: AsyncDatabase = db if db is not None else get_mongo_db()
        self._collection: AsyncCollection = self._db[self.COLLECTION_NAME]

    async def ensure_indexes(self) -> None:
        await self._collection.create_index(
            [("queue", 1), ("status", 1), ("run_at", 1)],
            name="ix_jobs_queue_status_run_at",
        )
        await self._collection.create_index(
            [("dedupe_key", 1)],
            unique=True,
            sparse=True,
            name="ux_jobs_dedupe_key",
        )
        await self._collection.create_index([("expire_at", 1)], expireAfterSeconds=0, name="ttl_jobs_expire_at")

    async def insert(self, job: JobEntity) -> JobEntity:
        job = job.touch_for_insert()
        doc = sanitize_for_mongo(job.to_mongo())

        # the holder of a dedupe key may finish between our insert and lookup
        for _ in range(3):
            try:
                await self._collection.insert_one(doc)
                return job
            except DuplicateKeyError:
                if not job.dedupe_key:
                    raise
                existing = await self._collection.find_one({"dedupe_key": job.dedupe_key})
                if existing:
                    return JobEntity.from_mongo(existing)

        raise RuntimeError(f"could not enqueue job with dedupe_key={job.dedupe_key}")

    async def get(self, job_id: str) -> Optional[JobEntity]:
        doc = await self._collection.find_one({"_id": job_id})
        return JobEntity.from_mongo(doc)

    async def claim_next(self, *, queue: str, worker_id: str, now_ms: int, lease_ms: int) -> Optional[JobEntity]:
        now = int(now_ms)
        doc = await self._collection.find_one_and_update(
            {
                "queue": queue,
                "$or": [
                    {"status": JobStatus.WAITING.value, "run_at": {"$lte": now}},
                    {"status": JobStatus.ACTIVE.value, "locked_until": {"$lt": now}},
                ],
            },
            {
                "$set": {
                    "status": JobStatus.ACTIVE.value,
                    "locked_until": now + int(lease_ms),
                    "worker_id": worker_id,
                    "updated_at": now,
                },
                "$inc": {"attempts_made": 1},
            },
            sort=[("run_at", 1)],
            return_document=ReturnDocument.AFTER,
        )
        return JobEntity.from_mongo(doc)

    async def _finish(
        self,
        *,
        job_id: str,
        worker_id: str,
        status: JobStatus,
        expire_at: datetime,
        extra: Dict[str, Any],
    ) -> bool:
        now = JobEntity.now_ms()
        res = await self._collection.update_one(
            {"_id": job_id, "worker_id": worker_id, "status": JobStatus.ACTIVE.value},
            {
                "$set": {
                    "status": status.value,
                    "finished_at": now,
                    "updated_at": now,
                    "expire_at": expire_at,
                    **extra,
                },
                "$unset": {"dedupe_key": "", "locked_until": ""},
            },
        )
        return res.modified_count == 1

    async def complete(
        self,
        *,
        job_id: str,
        worker_id: str,
        result: Optional[Dict[str, Any]],
        expire_at: datetime,
    ) -> bool:
        return await self._finish(
            job_id=job_id,
            worker_id=worker_id,
            status=JobStatus.COMPLETED,
            expire_at=expire_at,
            extra={"result": sanitize_for_mongo(result or {})},
        )

    async def fail(self, *, job_id: str, worker_id: str, error: str, expire_at: datetime) -> bool:
        return await self._finish(
            job_id=job_id,
            worker_id=worker_id,
            status=JobStatus.FAILED,
            expire_at=expire_at,
            extra={"last_error": error},
        )

    async def reschedule(
        self,
        *,
        job_id: str,
        worker_id: str,
        run_at: int,
        error: Optional[str] = None,
        count_attempt: bool = True,
    ) -> bool:
        update: Dict[str, Any] = {
            "$set": {"status": JobStatus.WAITING.value, "run_at": int(run_at), "updated_at": JobEntity.now_ms()},
            "$unset": {"locked_until": "", "worker_id": ""},
        }
        if error is not None:
            update["$set"]["last_error"] = error
        if not count_attempt:
            update["$inc"] = {"attempts_made": -1}

        res = await self._collection.update_one(
            {"_id": job_id, "worker_id": worker_id, "status": JobStatus.ACTIVE.value},
            update,
        )
        return res.modified_count == 1
