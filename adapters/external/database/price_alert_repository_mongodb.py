# price_alert_repository_mongodb.py

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import DuplicateKeyError

from adapters.external.database.helper_repo import claim_free_filter, lower_fields, sanitize_for_mongo
from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.trigger_entities import AlertHistoryEntity, PriceAlertEntity
from core.domain.repositories.price_alert_repository_interface import AlertHistoryRepository, PriceAlertRepository
from core.services.normalize import _norm_address


class PriceAlertRepositoryMongoDB(PriceAlertRepository):
    """
    Collection: price_alerts
    """

    COLLECTION_NAME = "price_alerts"

    def __init__(self, db: Optional[AsyncDatabase] = None) -> None:
        self._db: AsyncDatabase = db if db is not None else get_mongo_db()
        self._collection: AsyncCollection = self._db[self.COLLECTION_NAME]

    async def ensure_indexes(self) -> None:
        await self._collection.create_index([("user_address", 1), ("created_at", -1)], name="ix_price_alerts_user")
        await self._collection.create_index([("is_active", 1), ("fired", 1)], name="ix_price_alerts_active")

    async def insert(self, entity: PriceAlertEntity) -> PriceAlertEntity:
        entity = entity.touch_for_insert()
        doc = sanitize_for_mongo(entity.to_mongo())
        doc["user_address"] = _norm_address(doc.get("user_address"))
        lower_fields(doc, "chain_id")
        await self._collection.insert_one(doc)
        return PriceAlertEntity.from_mongo(doc)

    async def get(self, alert_id: str) -> Optional[PriceAlertEntity]:
        return PriceAlertEntity.from_mongo(await self._collection.find_one({"_id": alert_id}))

    async def list_by_user(self, *, user_address: str, active_only: bool = False) -> List[PriceAlertEntity]:
        q: Dict[str, Any] = {"user_address": _norm_address(user_address)}
        if active_only:
            q["is_active"] = True
        docs = await self._collection.find(q).sort("created_at", -1).to_list(length=None)
        return [PriceAlertEntity.from_mongo(d) for d in docs if d]

    async def list_active(self) -> List[PriceAlertEntity]:
        docs = await self._collection.find({"is_active": True, "fired": False}).to_list(length=None)
        return [PriceAlertEntity.from_mongo(d) for d in docs if d]

    async def deactivate(self, *, alert_id: str, user_address: str) -> bool:
        res = await self._collection.update_one(
            {"_id": alert_id, "user_address": _norm_address(user_address), "is_active": True},
            {"$set": {"is_active": False, "updated_at": PriceAlertEntity.now_ms()}},
        )
        return res.modified_count == 1

    async def touch_checked(self, alert_ids: Sequence[str], *, now_ms: int) -> None:
        if not alert_ids:
            return
        await self._collection.update_many({"_id": {"$in": list(alert_ids)}}, {"$set": {"last_checked_at": int(now_ms)}})

    async def claim(self, alert_id: str, *, token: str, until_ms: int, now_ms: int) -> bool:
        res = await self._collection.update_one(
            {"_id": alert_id, "is_active": True, "fired": False, **claim_free_filter(now_ms)},
            {"$set": {"claim": {"token": token, "until": int(until_ms)}}},
        )
        return res.modified_count == 1

    async def mark_fired(self, alert_id: str, *, token: str, price: float, now_ms: int) -> bool:
        res = await self._collection.update_one(
            {"_id": alert_id, "claim.token": token},
            {
                "$set": {
                    "fired": True,
                    "is_active": False,
                    "fired_at": int(now_ms),
                    "triggered_price": float(price),
                    "consecutive_failures": 0,
                    "updated_at": int(now_ms),
                },
                "$unset": {"claim": "", "last_error": ""},
            },
        )
        return res.modified_count == 1

    async def release(self, alert_id: str, *, token: str, error: str) -> bool:
        res = await self._collection.update_one(
            {"_id": alert_id, "claim.token": token},
            {"$set": {"last_error": error}, "$inc": {"consecutive_failures": 1}, "$unset": {"claim": ""}},
        )
        return res.modified_count == 1


class AlertHistoryRepositoryMongoDB(AlertHistoryRepository):
    """
    Collection: alert_history (unique per alert_id)
    """

    COLLECTION_NAME = "alert_history"

    def __init__(self, db: Optional[AsyncDatabase] = None) -> None:
        self._db: AsyncDatabase = db if db is not None else get_mongo_db()
        self._collection: AsyncCollection = self._db[self.COLLECTION_NAME]

    async def ensure_indexes(self) -> None:
        await self._collection.create_index([("alert_id", 1)], unique=True, name="ux_alert_history_alert_id")
        await self._collection.create_index([("user_address", 1), ("created_at", -1)], name="ix_alert_history_user")

    async def insert_once(self, entity: AlertHistoryEntity) -> bool:
        entity = entity.touch_for_insert()
        doc = sanitize_for_mongo(entity.to_mongo())
        doc["user_address"] = _norm_address(doc.get("user_address"))
        try:
            await self._collection.insert_one(doc)
        except DuplicateKeyError:
            return False
        return True

    async def set_notifications(self, alert_id: str, channels: Sequence[str]) -> None:
        await self._collection.update_one({"alert_id": alert_id}, {"$set": {"notifications_sent": list(channels)}})

    async def list_by_user(self, *, user_address: str, limit: int = 50) -> List[AlertHistoryEntity]:
        cursor = self._collection.find({"user_address": _norm_address(user_address)}).sort("created_at", -1).limit(int(limit))
        docs = await cursor.to_list(length=None)
        return [AlertHistoryEntity.from_mongo(d) for d in docs if d]
