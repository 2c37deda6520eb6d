from typing import Any, Awaitable, Callable, List, Optional

from beanie import init_beanie, SortDirection, UpdateResponse
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from portfolio_api.config import Settings
from portfolio_api.database import COLLECTION_NAME, create_client, prepare_database, test_connection_health
from portfolio_api.exceptions import StorageFault
from portfolio_api.logging_config import get_logger
from portfolio_api.models import PortfolioItem, utc_now
from portfolio_api.repository import PortfolioRepository
from portfolio_api.schemas import PortfolioItemPayload, PortfolioItemRecord, PortfolioSummary, as_utc
from portfolio_api.tracing import trace_database_call

logger = get_logger(__name__)


def document_to_record(document: PortfolioItem) -> PortfolioItemRecord:
    """Convert a Beanie document to the storage-agnostic record."""
    return PortfolioItemRecord(
        id=str(document.id),
        name=document.name,
        type=document.type,
        quantity=document.quantity,
        purchasePrice=document.purchasePrice,
        purchaseDate=as_utc(document.purchaseDate),
        createdAt=as_utc(document.createdAt),
        updatedAt=as_utc(document.updatedAt),
    )


class MongoPortfolioRepository(PortfolioRepository):
    """
    Portfolio repository backed by MongoDB through the Beanie ODM.

    Call ``connect()`` once before use. When an already initialized client is
    passed in (tests), ``connect()`` only initializes Beanie on it and ``close()``
    leaves it open.
    """

    def __init__(self, settings: Settings, client: Optional[AsyncIOMotorClient] = None,
                 prepare_collection: bool = True):
        self._settings = settings
        self._client = client
        self._owns_client = client is None
        self._prepare_collection = prepare_collection

    async def connect(self) -> None:
        try:
            logger.info("Initializing MongoDB repository", database=self._settings.mongodb_db_name)
            if self._client is None:
                self._client = create_client(self._settings.mongodb_uri)
            db = self._client[self._settings.mongodb_db_name]
            if self._prepare_collection:
                await prepare_database(db)
            await init_beanie(database=db, document_models=[PortfolioItem])
            logger.info("MongoDB repository ready", database=self._settings.mongodb_db_name,
                        collection=COLLECTION_NAME)
        except PyMongoError as e:
            logger.error("MongoDB repository initialization failed", error=str(e),
                         error_type=type(e).__name__)
            raise StorageFault("connect", e) from e

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
            logger.info("MongoDB client closed")

    async def ping(self) -> bool:
        if self._client is None:
            return False
        return await test_connection_health(self._client)

    async def _run(self, operation_name: str, operation: Callable[[], Awaitable[Any]], **span_attributes) -> Any:
        try:
            return await trace_database_call(operation_name, COLLECTION_NAME, operation,
                                             enabled=self._settings.enable_database_tracing, **span_attributes)
        except PyMongoError as e:
            logger.error("Database operation failed", operation=operation_name,
                         error=str(e), error_type=type(e).__name__)
            raise StorageFault(operation_name, e) from e

    async def insert(self, payload: PortfolioItemPayload) -> PortfolioItemRecord:
        now = utc_now()
        document = PortfolioItem(createdAt=now, updatedAt=now, **payload.to_fields())
        await self._run("insert", document.insert)
        logger.debug("Inserted portfolio item", operation="insert", item_id=str(document.id))
        return document_to_record(document)

    async def find_by_id(self, item_id: str) -> Optional[PortfolioItemRecord]:
        document = await self._run("find_by_id", lambda: PortfolioItem.get(ObjectId(item_id)),
                                   **{"db.document.id": item_id})
        return document_to_record(document) if document else None

    async def find_all(self) -> List[PortfolioItemRecord]:
        documents = await self._run(
            "find_all",
            lambda: PortfolioItem.find_all()
            .sort([("createdAt", SortDirection.DESCENDING), ("_id", SortDirection.DESCENDING)])
            .to_list(),
        )
        return [document_to_record(d) for d in documents]

    async def update_by_id(self, item_id: str, payload: PortfolioItemPayload) -> Optional[PortfolioItemRecord]:
        oid = ObjectId(item_id)
        fields = payload.to_fields()
        fields["type"] = payload.type.value
        # $max keeps updatedAt monotonic even if the server clock steps backwards
        document = await self._run(
            "update",
            lambda: PortfolioItem.find_one(PortfolioItem.id == oid).update(
                {"$set": fields, "$max": {"updatedAt": utc_now()}},
                response_type=UpdateResponse.NEW_DOCUMENT,
            ),
            **{"db.document.id": item_id},
        )
        if document is None:
            return None
        logger.debug("Updated portfolio item", operation="update", item_id=item_id)
        return document_to_record(document)

    async def delete_by_id(self, item_id: str) -> Optional[PortfolioItemRecord]:
        document = await self._run("find_by_id", lambda: PortfolioItem.get(ObjectId(item_id)),
                                   **{"db.document.id": item_id})
        if document is None:
            return None
        result = await self._run("delete", document.delete, **{"db.document.id": item_id})
        if result is not None and result.deleted_count == 0:
            # removed concurrently between the lookup and the delete
            return None
        logger.debug("Deleted portfolio item", operation="delete", item_id=item_id)
        return document_to_record(document)

    async def aggregate_summary(self) -> PortfolioSummary:
        pipeline = [
            {"$sort": {"createdAt": -1, "_id": -1}},
            {
                "$group": {
                    "_id": None,
                    "totalHoldings": {"$sum": "$quantity"},
                    "uniqueCount": {"$sum": 1},
                    "averageHolding": {"$avg": "$quantity"},
                    "list": {"$push": "$name"},
                }
            },
        ]
        results = await self._run("aggregate_summary", lambda: PortfolioItem.aggregate(pipeline).to_list())
        if not results:
            return PortfolioSummary()
        summary = results[0]
        return PortfolioSummary(
            totalHoldings=summary["totalHoldings"],
            uniqueCount=summary["uniqueCount"],
            averageHolding=summary["averageHolding"] or 0,
            list=summary["list"],
        )
