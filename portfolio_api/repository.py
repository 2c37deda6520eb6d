"""
Storage capability interface for portfolio items.

Handlers depend only on ``PortfolioRepository``; the concrete backend (MongoDB or
in-process list) is chosen once at startup by ``create_repository``.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from bson import ObjectId

from portfolio_api.config import Settings
from portfolio_api.schemas import PortfolioItemPayload, PortfolioItemRecord, PortfolioSummary


def is_valid_item_id(item_id: str) -> bool:
    """True for the 24-character hex form of an ObjectId."""
    return isinstance(item_id, str) and len(item_id) == 24 and ObjectId.is_valid(item_id)


class PortfolioRepository(ABC):
    """Async storage operations shared by every backend.

    Ids passed in have already been checked with ``is_valid_item_id``.
    Backends raise ``StorageFault`` when the store itself fails.
    """

    @abstractmethod
    async def insert(self, payload: PortfolioItemPayload) -> PortfolioItemRecord:
        """Persist a new item with a fresh id and ``createdAt == updatedAt``."""

    @abstractmethod
    async def find_by_id(self, item_id: str) -> Optional[PortfolioItemRecord]:
        pass

    @abstractmethod
    async def find_all(self) -> List[PortfolioItemRecord]:
        """All items, most recently created first."""

    @abstractmethod
    async def update_by_id(self, item_id: str, payload: PortfolioItemPayload) -> Optional[PortfolioItemRecord]:
        """Replace the item's fields and refresh ``updatedAt``; None when absent."""

    @abstractmethod
    async def delete_by_id(self, item_id: str) -> Optional[PortfolioItemRecord]:
        """Hard-delete the item and return its last snapshot; None when absent."""

    @abstractmethod
    async def aggregate_summary(self) -> PortfolioSummary:
        pass

    async def connect(self) -> None:
        pass

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


def create_repository(settings: Settings) -> PortfolioRepository:
    """Build the backend named by ``settings.storage_backend``.

    The MongoDB backend still needs ``connect()`` to be awaited before use.
    """
    if settings.storage_backend == "mongodb":
        from portfolio_api.mongo_repository import MongoPortfolioRepository
        return MongoPortfolioRepository(settings)

    from portfolio_api.memory_repository import InMemoryPortfolioRepository, demo_items
    return InMemoryPortfolioRepository(demo_items() if settings.seed_demo_data else None)
