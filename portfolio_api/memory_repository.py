import asyncio
from datetime import datetime, UTC
from typing import Callable, Iterable, List, Optional

from bson import ObjectId

from portfolio_api.logging_config import get_logger
from portfolio_api.models import AssetType, utc_now
from portfolio_api.repository import PortfolioRepository
from portfolio_api.schemas import PortfolioItemPayload, PortfolioItemRecord, PortfolioSummary

logger = get_logger(__name__)


def demo_items() -> List[PortfolioItemPayload]:
    """Sample holdings used when the in-memory backend runs in demo mode."""
    def item(name, asset_type, quantity, price, purchased):
        return PortfolioItemPayload(
            name=name,
            type=asset_type,
            quantity=quantity,
            purchasePrice=price,
            purchaseDate=datetime.fromisoformat(purchased).replace(tzinfo=UTC),
        )

    return [
        item("Apple Inc (AAPL)", AssetType.STOCK, 100, 150.25, "2024-01-15"),
        item("Microsoft Corporation (MSFT)", AssetType.STOCK, 50, 375.80, "2024-02-10"),
        item("Tesla Inc (TSLA)", AssetType.STOCK, 25, 220.15, "2024-03-05"),
        item("Vanguard S&P 500 ETF", AssetType.ETF, 200, 425.50, "2024-01-20"),
        item("Bitcoin", AssetType.CRYPTO, 0.5, 45000.00, "2024-02-15"),
    ]


class InMemoryPortfolioRepository(PortfolioRepository):
    """
    Process-local repository backed by an insertion-ordered list.

    Every mutation runs under a single ``asyncio.Lock`` so concurrent
    create/update/delete requests are applied one at a time. Instances are
    independent, which lets tests build an isolated store per case.
    """

    def __init__(
        self,
        initial: Optional[Iterable[PortfolioItemPayload]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._items: List[PortfolioItemRecord] = []
        self._lock = asyncio.Lock()
        self._clock = clock
        for payload in initial or ():
            self._items.append(self._new_record(payload))
        if self._items:
            logger.info("In-memory repository seeded", item_count=len(self._items))

    def _new_record(self, payload: PortfolioItemPayload) -> PortfolioItemRecord:
        now = self._clock()
        return PortfolioItemRecord(id=str(ObjectId()), createdAt=now, updatedAt=now, **payload.to_fields())

    def _index_of(self, item_id: str) -> int:
        for i, item in enumerate(self._items):
            if item.id == item_id:
                return i
        return -1

    def _ordered(self) -> List[PortfolioItemRecord]:
        # newest insertions first so equal timestamps keep creation order
        return sorted(reversed(self._items), key=lambda item: item.createdAt, reverse=True)

    async def insert(self, payload: PortfolioItemPayload) -> PortfolioItemRecord:
        async with self._lock:
            record = self._new_record(payload)
            self._items.append(record)
        logger.debug("Inserted portfolio item", operation="insert", item_id=record.id)
        return record.model_copy()

    async def find_by_id(self, item_id: str) -> Optional[PortfolioItemRecord]:
        index = self._index_of(item_id)
        return self._items[index].model_copy() if index >= 0 else None

    async def find_all(self) -> List[PortfolioItemRecord]:
        return [item.model_copy() for item in self._ordered()]

    async def update_by_id(self, item_id: str, payload: PortfolioItemPayload) -> Optional[PortfolioItemRecord]:
        async with self._lock:
            index = self._index_of(item_id)
            if index < 0:
                return None
            current = self._items[index]
            updated = current.model_copy(
                update={**payload.to_fields(), "updatedAt": max(self._clock(), current.updatedAt)}
            )
            self._items[index] = updated
        logger.debug("Updated portfolio item", operation="update", item_id=item_id)
        return updated.model_copy()

    async def delete_by_id(self, item_id: str) -> Optional[PortfolioItemRecord]:
        async with self._lock:
            index = self._index_of(item_id)
            if index < 0:
                return None
            removed = self._items.pop(index)
        logger.debug("Deleted portfolio item", operation="delete", item_id=item_id)
        return removed

    async def aggregate_summary(self) -> PortfolioSummary:
        items = self._ordered()
        if not items:
            return PortfolioSummary()
        total = sum(item.quantity for item in items)
        return PortfolioSummary(
            totalHoldings=total,
            uniqueCount=len(items),
            averageHolding=total / len(items),
            list=[item.name for item in items],
        )
