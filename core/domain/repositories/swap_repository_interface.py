from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from core.domain.entities.swap_entity import SwapEntity


class SwapRepository(ABC):
    @abstractmethod
    async def insert(self, entity: SwapEntity) -> SwapEntity:
        """
        Persist a new swap. When `client_ref` is already taken the stored
        swap carrying that ref is returned instead.
        """
        raise NotImplementedError

    @abstractmethod
    async def get(self, swap_id: str) -> Optional[SwapEntity]:
        raise NotImplementedError

    @abstractmethod
    async def get_by_client_ref(self, client_ref: str) -> Optional[SwapEntity]:
        raise NotImplementedError

    @abstractmethod
    async def update_if(self, entity: SwapEntity, *, expected_version: int) -> bool:
        """
        Replace the stored swap only if its version still equals
        `expected_version`. On success `entity.version` is bumped.
        """
        raise NotImplementedError

    @abstractmethod
    async def list_by_user(
        self,
        *,
        user_address: str,
        limit: int = 20,
        offset: int = 0,
        status: Optional[str] = None,
    ) -> Tuple[List[SwapEntity], int]:
        raise NotImplementedError
