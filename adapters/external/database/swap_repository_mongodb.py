# swap_repository_mongodb.py

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import DuplicateKeyError

from adapters.external.database.helper_repo import sanitize_for_mongo
from adapters.external.database.mongo_client import get_mongo_db
from core.domain.entities.swap_entity import SwapEntity
from core.domain.repositories.swap_repository_interface import SwapRepository
from core.services.normalize import _norm_address

logger = logging.getLogger(__name__)


class SwapRepositoryMongoDB(SwapRepository):
    """
    Collection: swaps
    """

    COLLECTION_NAME = "swaps"

    def __init__(self, db: Optional[AsyncDatabase] = None) -> None:
        self._db: AsyncDatabase = db if db is not None else get_mongo_db()
        self._collection: AsyncCollection = self._db[self.COLLECTION_NAME]

    @property
    def collection(self) -> AsyncCollection:
        return self._collection

    async def ensure_indexes(self) -> None:
        await self._collection.create_index([("user_address", 1), ("created_at", -1)], name="ix_swaps_user_created_desc")
        await self._collection.create_index([("status", 1)], name="ix_swaps_status")
        await self._collection.create_index(
            [("client_ref", 1)],
            unique=True,
            sparse=True,
            name="ux_swaps_client_ref",
        )

    def _to_doc(self, entity: SwapEntity) -> Dict[str, Any]:
        doc = sanitize_for_mongo(entity.to_mongo())
        doc["user_address"] = _norm_address(doc.get("user_address"))
        return doc

    async def insert(self, entity: SwapEntity) -> SwapEntity:
        entity = entity.touch_for_insert()
        try:
            await self._collection.insert_one(self._to_doc(entity))
        except DuplicateKeyError:
            if not entity.client_ref:
                raise
            existing = await self.get_by_client_ref(entity.client_ref)
            if existing is None:
                raise
            logger.info("swap with client_ref=%s already exists (id=%s)", entity.client_ref, existing.id)
            return existing
        return entity

    async def get(self, swap_id: str) -> Optional[SwapEntity]:
        doc = await self._collection.find_one({"_id": swap_id})
        return SwapEntity.from_mongo(doc)

    async def get_by_client_ref(self, client_ref: str) -> Optional[SwapEntity]:
        doc = await self._collection.find_one({"client_ref": client_ref})
        return SwapEntity.from_mongo(doc)

    async def update_if(self, entity: SwapEntity, *, expected_version: int) -> bool:
        entity.touch_for_update()
        entity.version = int(expected_version) + 1
        doc = self._to_doc(entity)
        doc.pop("_id", None)

        res = await self._collection.replace_one({"_id": entity.id, "version": int(expected_version)}, doc)
        if res.matched_count != 1:
            entity.version = int(expected_version)
            return False
        return True

    async def list_by_user(
        self,
        *,
        user_address: str,
        limit: int = 20,
        offset: int = 0,
        status: Optional[str] = None,
    ) -> Tuple[List[SwapEntity], int]:
        q: Dict[str, Any] = {"user_address": _norm_address(user_address)}
        if status:
            q["status"] = status

        cursor = (
            self._collection.find(q)
            .sort("created_at", -1)
            .skip(int(offset or 0))
            .limit(int(limit or 20))
        )
        docs = await cursor.to_list(length=None)
        total = await self._collection.count_documents(q)
        return [SwapEntity.from_mongo(d) for d in docs if d], int(total)
