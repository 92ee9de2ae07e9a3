from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from core.domain.entities.quote_entity import QuoteEntity


class QuoteRepository(ABC):
    @abstractmethod
    async def insert(self, entity: QuoteEntity) -> QuoteEntity:
        raise NotImplementedError

    @abstractmethod
    async def get(self, quote_id: str) -> Optional[QuoteEntity]:
        raise NotImplementedError
