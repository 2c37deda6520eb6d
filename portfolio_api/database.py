from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from portfolio_api.config import settings
from portfolio_api.logging_config import get_logger
from portfolio_api.models import AssetType
from typing import Optional
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ServerSelectionTimeoutError, ConnectionFailure, OperationFailure
import asyncio

logger = get_logger(__name__)

COLLECTION_NAME = "portfolioItems"

# Collection-level $jsonSchema validator
PORTFOLIO_ITEM_VALIDATOR = {
    "$jsonSchema": {
        "bsonType": "object",
        "required": ["name", "type", "quantity", "purchasePrice", "purchaseDate", "createdAt", "updatedAt"],
        "properties": {
            "name": {
                "bsonType": "string",
                "minLength": 1,
                "maxLength": 100,
                "description": "Asset name - required string of 1 to 100 characters",
            },
            "type": {
                "enum": [t.value for t in AssetType],
                "description": "Asset type - required, one of the supported asset classes",
            },
            "quantity": {
                "bsonType": ["double", "int", "long", "decimal"],
                "minimum": 0,
                "description": "Units held - required non-negative number",
            },
            "purchasePrice": {
                "bsonType": ["double", "int", "long", "decimal"],
                "minimum": 0,
                "description": "Price per unit - required non-negative number",
            },
            "purchaseDate": {"bsonType": "date", "description": "Purchase date - required date"},
            "createdAt": {"bsonType": "date", "description": "Creation timestamp"},
            "updatedAt": {"bsonType": "date", "description": "Last update timestamp"},
        },
    }
}

PORTFOLIO_ITEM_INDEXES = [
    ([("name", ASCENDING)], "name_1"),
    ([("createdAt", DESCENDING)], "createdAt_-1"),
]


def create_client(mongodb_uri: Optional[str] = None) -> AsyncIOMotorClient:
    """
    Create the MongoDB client used by the service.

    Args:
        mongodb_uri: MongoDB connection URI (optional, uses settings default)

    Returns:
        Configured AsyncIOMotorClient
    """
    uri = mongodb_uri or settings.mongodb_uri

    client = AsyncIOMotorClient(
        uri,
        maxPoolSize=20,
        minPoolSize=0,
        maxIdleTimeMS=300000,                # 5 minutes max idle time
        connectTimeoutMS=30000,
        serverSelectionTimeoutMS=5000,
        socketTimeoutMS=60000,
        retryWrites=True,
        retryReads=True,
        tz_aware=True,
    )

    logger.info("MongoDB client created", uri=uri.split("@")[-1][:50])
    return client


async def test_connection_health(client: AsyncIOMotorClient, timeout: float = 5.0) -> bool:
    """
    Test MongoDB connection health with timeout.

    Args:
        client: MongoDB client to test
        timeout: Timeout in seconds for the health check

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        await asyncio.wait_for(client.admin.command("ping"), timeout=timeout)
        return True
    except (ServerSelectionTimeoutError, ConnectionFailure, OperationFailure, asyncio.TimeoutError) as e:
        logger.warning("MongoDB connection health check failed", error=str(e))
        return False


async def apply_schema_validation(db: AsyncIOMotorDatabase, strict: bool = False) -> None:
    """Attach the $jsonSchema validator, creating the collection when it does not exist yet."""
    options = {"validator": PORTFOLIO_ITEM_VALIDATOR}
    if strict:
        options.update({"validationLevel": "strict", "validationAction": "error"})

    existing = await db.list_collection_names(filter={"name": COLLECTION_NAME})
    if existing:
        await db.command({"collMod": COLLECTION_NAME, **options})
        logger.info("Schema validation applied", collection=COLLECTION_NAME, strict=strict)
    else:
        await db.create_collection(COLLECTION_NAME, **options)
        logger.info("Collection created with schema validation", collection=COLLECTION_NAME, strict=strict)


async def remove_schema_validation(db: AsyncIOMotorDatabase) -> None:
    existing = await db.list_collection_names(filter={"name": COLLECTION_NAME})
    if existing:
        await db.command({"collMod": COLLECTION_NAME, "validator": {}})
        logger.info("Existing schema validation removed", collection=COLLECTION_NAME)


async def create_indexes(db: AsyncIOMotorDatabase) -> None:
    """Create the name lookup index and the descending createdAt index used for listing."""
    collection = db[COLLECTION_NAME]
    for keys, name in PORTFOLIO_ITEM_INDEXES:
        await collection.create_index(keys, name=name)
        logger.info("Index ensured", collection=COLLECTION_NAME, index=name)


async def prepare_database(db: AsyncIOMotorDatabase) -> None:
    """Schema validation plus indexes; a rejected validator is logged and skipped."""
    try:
        await apply_schema_validation(db)
    except OperationFailure as e:
        logger.warning("Schema validation skipped", error=str(e), code=getattr(e, "code", None))
    await create_indexes(db)
