# dca_repository_mongodb.py

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from pymongo import ReturnDocument
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import DuplicateKeyError

from adapters.external.database.helper_repo import claim_free_filter, sanitize_for_mongo
from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.trigger_entities import DCAExecutionEntity, DCAStrategyEntity
from core.domain.enums.trigger_enums import DCAExecutionStatus, DCAStatus
from core.domain.repositories.dca_repository_interface import DCAExecutionRepository, DCAStrategyRepository
from core.services.normalize import _norm_address

_ACTIVE = DCAStatus.ACTIVE.value


class DCAStrategyRepositoryMongoDB(DCAStrategyRepository):
    """
    Collection: dca_strategies
    """

    COLLECTION_NAME = "dca_strategies"

    def __init__(self, db: Optional[AsyncDatabase] = None) -> None:
        self._db: AsyncDatabase = db if db is not None else get_mongo_db()
        self._collection: AsyncCollection = self._db[self.COLLECTION_NAME]

    async def ensure_indexes(self) -> None:
        await self._collection.create_index([("user_address", 1), ("created_at", -1)], name="ix_dca_user")
        await self._collection.create_index([("status", 1), ("next_execution_at", 1)], name="ix_dca_status_next")

    async def insert(self, entity: DCAStrategyEntity) -> DCAStrategyEntity:
        entity = entity.touch_for_insert()
        doc = sanitize_for_mongo(entity.to_mongo())
        doc["user_address"] = _norm_address(doc.get("user_address"))
        await self._collection.insert_one(doc)
        return DCAStrategyEntity.from_mongo(doc)

    async def get(self, strategy_id: str) -> Optional[DCAStrategyEntity]:
        return DCAStrategyEntity.from_mongo(await self._collection.find_one({"_id": strategy_id}))

    async def list_by_user(self, *, user_address: str) -> List[DCAStrategyEntity]:
        cursor = self._collection.find({"user_address": _norm_address(user_address)}).sort("created_at", -1)
        docs = await cursor.to_list(length=None)
        return [DCAStrategyEntity.from_mongo(d) for d in docs if d]

    async def list_due(self, *, now_ms: int) -> List[DCAStrategyEntity]:
        cursor = self._collection.find({"status": _ACTIVE, "next_execution_at": {"$lte": int(now_ms)}})
        docs = await cursor.sort("next_execution_at", 1).to_list(length=None)
        return [DCAStrategyEntity.from_mongo(d) for d in docs if d]

    async def transition(
        self,
        *,
        strategy_id: str,
        user_address: str,
        from_statuses: Sequence[str],
        to_status: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> bool:
        sets: Dict[str, Any] = {
            "status": to_status,
            "is_active": to_status == _ACTIVE,
            "updated_at": DCAStrategyEntity.now_ms(),
        }
        sets.update(extra or {})
        res = await self._collection.update_one(
            {"_id": strategy_id, "user_address": _norm_address(user_address), "status": {"$in": list(from_statuses)}},
            {"$set": sets},
        )
        return res.modified_count == 1

    async def touch_checked(self, strategy_ids: Sequence[str], *, now_ms: int) -> None:
        if not strategy_ids:
            return
        await self._collection.update_many(
            {"_id": {"$in": list(strategy_ids)}},
            {"$set": {"last_checked_at": int(now_ms)}},
        )

    async def claim(self, strategy_id: str, *, token: str, until_ms: int, now_ms: int) -> bool:
        res = await self._collection.update_one(
            {
                "_id": strategy_id,
                "status": _ACTIVE,
                "next_execution_at": {"$lte": int(now_ms)},
                **claim_free_filter(now_ms),
            },
            {"$set": {"claim": {"token": token, "until": int(until_ms)}}},
        )
        return res.modified_count == 1

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
        sets: Dict[str, Any] = {
            "next_execution_at": int(next_execution_at),
            "total_input_spent": total_input_spent,
            "total_output_expected": total_output_expected,
            "consecutive_failures": 0,
            "updated_at": int(now_ms),
        }
        if completed:
            sets.update({"status": DCAStatus.COMPLETED.value, "is_active": False, "completed_at": int(now_ms)})

        res = await self._collection.update_one(
            {"_id": strategy_id, "claim.token": token, "execution_number": int(expected_execution_number)},
            {"$set": sets, "$inc": {"execution_number": 1}, "$unset": {"claim": "", "last_error": ""}},
        )
        return res.modified_count == 1

    async def record_skip(self, strategy_id: str, *, token: str, next_execution_at: int, reason: str) -> bool:
        res = await self._collection.update_one(
            {"_id": strategy_id, "claim.token": token},
            {"$set": {"next_execution_at": int(next_execution_at), "last_error": reason}, "$unset": {"claim": ""}},
        )
        return res.modified_count == 1

    async def record_failure(
        self,
        strategy_id: str,
        *,
        token: str,
        next_execution_at: int,
        error: str,
        max_failures: int,
    ) -> Optional[DCAStrategyEntity]:
        doc = await self._collection.find_one_and_update(
            {"_id": strategy_id, "claim.token": token},
            {
                "$set": {"next_execution_at": int(next_execution_at), "last_error": error},
                "$inc": {"consecutive_failures": 1},
                "$unset": {"claim": ""},
            },
            return_document=ReturnDocument.AFTER,
        )
        strategy = DCAStrategyEntity.from_mongo(doc)
        if strategy and strategy.consecutive_failures >= int(max_failures):
            res = await self._collection.update_one(
                {"_id": strategy_id, "status": _ACTIVE},
                {"$set": {"status": DCAStatus.FAILED.value, "is_active": False}},
            )
            if res.modified_count == 1:
                strategy.status = DCAStatus.FAILED
                strategy.is_active = False
        return strategy


class DCAExecutionRepositoryMongoDB(DCAExecutionRepository):
    """
    Collection: dca_executions
    """

    COLLECTION_NAME = "dca_executions"

    def __init__(self, db: Optional[AsyncDatabase] = None) -> None:
        self._db: AsyncDatabase = db if db is not None else get_mongo_db()
        self._collection: AsyncCollection = self._db[self.COLLECTION_NAME]

    async def ensure_indexes(self) -> None:
        await self._collection.create_index(
            [("strategy_id", 1), ("execution_number", 1), ("attempt", 1)],
            unique=True,
            name="ux_dca_executions_strategy_number_attempt",
        )

    async def insert(self, entity: DCAExecutionEntity) -> bool:
        entity = entity.touch_for_insert()
        try:
            await self._collection.insert_one(sanitize_for_mongo(entity.to_mongo()))
        except DuplicateKeyError:
            return False
        return True

    async def count_attempts(self, *, strategy_id: str, execution_number: int) -> int:
        return int(
            await self._collection.count_documents(
                {"strategy_id": strategy_id, "execution_number": int(execution_number)}
            )
        )

    async def find_completed(self, *, strategy_id: str, execution_number: int) -> Optional[DCAExecutionEntity]:
        doc = await self._collection.find_one(
            {
                "strategy_id": strategy_id,
                "execution_number": int(execution_number),
                "status": DCAExecutionStatus.COMPLETED.value,
            }
        )
        return DCAExecutionEntity.from_mongo(doc) if doc else None

    async def list_by_strategy(self, *, strategy_id: str, limit: int = 50) -> List[DCAExecutionEntity]:
        cursor = self._collection.find({"strategy_id": strategy_id}).sort("created_at", -1).limit(int(limit))
        docs = await cursor.to_list(length=None)
        return [DCAExecutionEntity.from_mongo(d) for d in docs if d]
