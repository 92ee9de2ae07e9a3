# limit_order_repository_mongodb.py

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from pymongo import ReturnDocument
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase

from adapters.external.database.helper_repo import claim_free_filter, sanitize_for_mongo
from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.trigger_entities import LimitOrderEntity
from core.domain.enums.trigger_enums import LimitOrderStatus
from core.domain.repositories.limit_order_repository_interface import LimitOrderRepository
from core.services.normalize import _norm_address

_PENDING = LimitOrderStatus.PENDING.value


class LimitOrderRepositoryMongoDB(LimitOrderRepository):
    """
    Collection: limit_orders
    """

    COLLECTION_NAME = "limit_orders"

    def __init__(self, db: Optional[AsyncDatabase] = None) -> None:
        self._db: AsyncDatabase = db if db is not None else get_mongo_db()
        self._collection: AsyncCollection = self._db[self.COLLECTION_NAME]

    async def ensure_indexes(self) -> None:
        await self._collection.create_index([("user_address", 1), ("created_at", -1)], name="ix_limit_orders_user")
        await self._collection.create_index([("status", 1), ("expires_at", 1)], name="ix_limit_orders_status_expiry")

    async def insert(self, entity: LimitOrderEntity) -> LimitOrderEntity:
        entity = entity.touch_for_insert()
        doc = sanitize_for_mongo(entity.to_mongo())
        doc["user_address"] = _norm_address(doc.get("user_address"))
        await self._collection.insert_one(doc)
        return LimitOrderEntity.from_mongo(doc)

    async def get(self, order_id: str) -> Optional[LimitOrderEntity]:
        return LimitOrderEntity.from_mongo(await self._collection.find_one({"_id": order_id}))

    async def list_by_user(self, *, user_address: str, status: Optional[str] = None) -> List[LimitOrderEntity]:
        q: Dict[str, Any] = {"user_address": _norm_address(user_address)}
        if status:
            q["status"] = status
        docs = await self._collection.find(q).sort("created_at", -1).to_list(length=None)
        return [LimitOrderEntity.from_mongo(d) for d in docs if d]

    async def list_pending(self) -> List[LimitOrderEntity]:
        docs = await self._collection.find({"status": _PENDING, "is_active": True}).to_list(length=None)
        return [LimitOrderEntity.from_mongo(d) for d in docs if d]

    async def _set_from_pending(self, q: Dict[str, Any], status: LimitOrderStatus, now_ms: int) -> bool:
        res = await self._collection.update_one(
            {**q, "status": _PENDING},
            {"$set": {"status": status.value, "is_active": False, "updated_at": int(now_ms)}},
        )
        return res.modified_count == 1

    async def cancel(self, *, order_id: str, user_address: str) -> bool:
        return await self._set_from_pending(
            {"_id": order_id, "user_address": _norm_address(user_address)},
            LimitOrderStatus.CANCELLED,
            LimitOrderEntity.now_ms(),
        )

    async def expire(self, order_id: str, *, now_ms: int) -> bool:
        return await self._set_from_pending(
            {"_id": order_id, "expires_at": {"$lte": int(now_ms)}, **claim_free_filter(now_ms)},
            LimitOrderStatus.EXPIRED,
            now_ms,
        )

    async def touch_checked(self, order_ids: Sequence[str], *, now_ms: int) -> None:
        if not order_ids:
            return
        await self._collection.update_many({"_id": {"$in": list(order_ids)}}, {"$set": {"last_checked_at": int(now_ms)}})

    async def claim(self, order_id: str, *, token: str, until_ms: int, now_ms: int) -> bool:
        res = await self._collection.update_one(
            {"_id": order_id, "status": _PENDING, "is_active": True, **claim_free_filter(now_ms)},
            {"$set": {"claim": {"token": token, "until": int(until_ms)}}},
        )
        return res.modified_count == 1

    async def mark_triggered(
        self,
        order_id: str,
        *,
        token: str,
        swap_id: str,
        execution_price: float,
        now_ms: int,
    ) -> bool:
        res = await self._collection.update_one(
            {"_id": order_id, "status": _PENDING, "claim.token": token},
            {
                "$set": {
                    "status": LimitOrderStatus.TRIGGERED.value,
                    "is_active": False,
                    "swap_id": swap_id,
                    "execution_price": float(execution_price),
                    "triggered_at": int(now_ms),
                    "consecutive_failures": 0,
                    "updated_at": int(now_ms),
                },
                "$unset": {"claim": "", "last_error": ""},
            },
        )
        return res.modified_count == 1

    async def release(self, order_id: str, *, token: str, error: str, max_failures: int) -> Optional[LimitOrderEntity]:
        doc = await self._collection.find_one_and_update(
            {"_id": order_id, "claim.token": token},
            {"$set": {"last_error": error}, "$inc": {"consecutive_failures": 1}, "$unset": {"claim": ""}},
            return_document=ReturnDocument.AFTER,
        )
        order = LimitOrderEntity.from_mongo(doc)
        if order and order.consecutive_failures >= int(max_failures):
            if await self._set_from_pending({"_id": order_id}, LimitOrderStatus.FAILED, LimitOrderEntity.now_ms()):
                order.status = LimitOrderStatus.FAILED
                order.is_active = False
        return order
