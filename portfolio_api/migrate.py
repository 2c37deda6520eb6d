"""
Schema migration for the MongoDB portfolio collection.

Drops any existing validator, applies the current ``$jsonSchema`` validator in
strict/error mode (creating the collection when missing), ensures the indexes
and smoke-tests the schema with a sample document that is removed afterwards.

Run with ``portfolio-migrate`` or ``python -m portfolio_api.migrate``.
"""

import asyncio
import sys
from typing import Optional

from pymongo.errors import ConnectionFailure, PyMongoError, WriteError

from portfolio_api.config import Settings, settings as default_settings
from portfolio_api.database import (
    COLLECTION_NAME,
    apply_schema_validation,
    create_client,
    create_indexes,
    remove_schema_validation,
    test_connection_health,
)
from portfolio_api.logging_config import get_logger, setup_logging
from portfolio_api.models import utc_now

logger = get_logger(__name__)


def sample_document() -> dict:
    now = utc_now()
    return {
        "name": "Test Asset",
        "type": "stock",
        "quantity": 1.0,
        "purchasePrice": 100.0,
        "purchaseDate": now,
        "createdAt": now,
        "updatedAt": now,
    }


async def migrate_schema(config: Optional[Settings] = None, client=None) -> bool:
    """
    Apply the collection validator and indexes.

    Returns:
        True when the sample document passed validation, False otherwise
    """
    config = config or default_settings
    owns_client = client is None
    client = client or create_client(config.mongodb_uri)
    try:
        logger.info("Starting schema migration", database=config.mongodb_db_name, collection=COLLECTION_NAME)
        if not await test_connection_health(client):
            raise ConnectionFailure("MongoDB connection health check failed")

        db = client[config.mongodb_db_name]
        await remove_schema_validation(db)
        await apply_schema_validation(db, strict=True)
        await create_indexes(db)
        logger.info("Schema migration applied", collection=COLLECTION_NAME)

        collection = db[COLLECTION_NAME]
        try:
            result = await collection.insert_one(sample_document())
        except WriteError as e:
            logger.error("Sample document failed validation", error=str(e))
            return False
        await collection.delete_one({"_id": result.inserted_id})
        logger.info("Sample document validated and cleaned up", inserted_id=str(result.inserted_id))
        return True
    finally:
        if owns_client:
            client.close()


def main() -> int:
    setup_logging(log_level=default_settings.log_level)
    try:
        ok = asyncio.run(migrate_schema())
    except PyMongoError as e:
        logger.error("Migration failed", error=str(e), error_type=type(e).__name__, exc_info=True)
        return 1
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
