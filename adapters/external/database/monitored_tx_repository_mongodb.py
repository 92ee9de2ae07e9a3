# monitored_tx_repository_mongodb.py

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase

from adapters.external.database.helper_repo import sanitize_for_mongo
from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.monitored_tx_entity import MonitoredTransactionEntity
from core.domain.repositories.monitored_tx_repository_interface import MonitoredTransactionRepository


class MonitoredTransactionRepositoryMongoDB(MonitoredTransactionRepository):
    """
    Collection: monitored_transactions
    """

    COLLECTION_NAME = "monitored_transactions"

    def __init__(self, db: Optional[AsyncDatabase] = None) -> None:
        self._db: AsyncDatabase = db if db is not None else get_mongo_db()
        self._collection: AsyncCollection = self._db[self.COLLECTION_NAME]

    async def ensure_indexes(self) -> None:
        await self._collection.create_index(
            [("swap_id", 1), ("step_index", 1)],
            unique=True,
            name="ux_monitored_tx_swap_step",
        )

    async def upsert(self, entity: MonitoredTransactionEntity) -> MonitoredTransactionEntity:
        entity = entity.touch_for_insert()
        doc = sanitize_for_mongo(entity.to_mongo())
        _id = doc.pop("_id")

        # a resubmitted step replaces the watched hash and resets the counters
        saved = await self._collection.find_one_and_update(
            {"swap_id": entity.swap_id, "step_index": entity.step_index},
            {"$set": doc, "$setOnInsert": {"_id": _id}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return MonitoredTransactionEntity.from_mongo(saved)

    async def get(self, *, swap_id: str, step_index: int) -> Optional[MonitoredTransactionEntity]:
        doc = await self._collection.find_one({"swap_id": swap_id, "step_index": int(step_index)})
        return MonitoredTransactionEntity.from_mongo(doc)

    async def record_check(
        self,
        *,
        swap_id: str,
        step_index: int,
        now_ms: int,
        drop_rechecks: Optional[int] = None,
        seen_block_number: Optional[int] = None,
    ) -> None:
        sets: Dict[str, Any] = {"last_checked_at": int(now_ms)}
        if drop_rechecks is not None:
            sets["drop_rechecks"] = int(drop_rechecks)
        if seen_block_number is not None:
            sets["seen_block_number"] = int(seen_block_number)

        await self._collection.update_one(
            {"swap_id": swap_id, "step_index": int(step_index)},
            {"$set": sets, "$inc": {"checks": 1}},
        )

    async def delete(self, *, swap_id: str, step_index: int) -> None:
        await self._collection.delete_one({"swap_id": swap_id, "step_index": int(step_index)})

    async def list_all(self) -> List[MonitoredTransactionEntity]:
        docs = await self._collection.find({}).sort("started_at", 1).to_list(length=None)
        return [MonitoredTransactionEntity.from_mongo(d) for d in docs if d]
