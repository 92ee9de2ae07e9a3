# quote_repository_mongodb.py

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase

from adapters.external.database.helper_repo import sanitize_for_mongo
from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.quote_entity import QuoteEntity
from core.domain.repositories.quote_repository_interface import QuoteRepository


class QuoteRepositoryMongoDB(QuoteRepository):
    """
    Collection: quotes

    Documents expire through a TTL index on `expires_at_dt`.
    """

    COLLECTION_NAME = "quotes"

    def __init__(self, db: Optional[AsyncDatabase] = None) -> None:
        self._db: AsyncDatabase = db if db is not None else get_mongo_db()
        self._collection: AsyncCollection = self._db[self.COLLECTION_NAME]

    @property
    def collection(self) -> AsyncCollection:
        return self._collection

    async def ensure_indexes(self) -> None:
        await self._collection.create_index(
            [("expires_at_dt", 1)],
            expireAfterSeconds=300,
            name="ttl_quotes_expires_at",
        )

    async def insert(self, entity: QuoteEntity) -> QuoteEntity:
        entity = entity.touch_for_insert()
        if entity.expires_at_dt is None:
            entity.expires_at_dt = datetime.fromtimestamp(entity.expires_at / 1000, tz=timezone.utc)
        await self._collection.insert_one(sanitize_for_mongo(entity.to_mongo()))
        return entity

    async def get(self, quote_id: str) -> Optional[QuoteEntity]:
        doc = await self._collection.find_one({"_id": quote_id})
        return QuoteEntity.from_mongo(doc)
