from datetime import datetime, UTC
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError, WriteError

from portfolio_api import database
from portfolio_api.config import Settings
from portfolio_api.database import COLLECTION_NAME
from portfolio_api.exceptions import StorageFault
from portfolio_api.main import create_app
from portfolio_api.migrate import migrate_schema
from portfolio_api.models import PortfolioItem
from portfolio_api.mongo_repository import MongoPortfolioRepository
from portfolio_api.schemas import PortfolioItemPayload

DB_NAME = "portfolio_test"


def payload(name="Apple Inc", quantity=10, price=150):
    return PortfolioItemPayload(
        name=name,
        type="stock",
        quantity=quantity,
        purchasePrice=price,
        purchaseDate=datetime(2024, 1, 15, tzinfo=UTC),
    )


@pytest.fixture
def mongo_settings(mongodb_container):
    return Settings(
        _env_file=None,
        storage_backend="mongodb",
        mongodb_uri=mongodb_container.get_connection_url(),
        mongodb_db_name=DB_NAME,
        log_level="WARNING",
    )


@pytest_asyncio.fixture
async def mongo_client(mongo_settings):
    client = AsyncIOMotorClient(mongo_settings.mongodb_uri, tz_aware=True)
    yield client
    client.close()


@pytest_asyncio.fixture
async def mongo_repository(mongo_settings, mongo_client):
    repo = MongoPortfolioRepository(mongo_settings, client=mongo_client)
    await repo.connect()
    await PortfolioItem.delete_all()
    yield repo
    await PortfolioItem.delete_all()
    await repo.close()


@pytest.mark.asyncio
async def test_storage_errors_become_storage_faults():
    repo = MongoPortfolioRepository(Settings(_env_file=None, storage_backend="mongodb"))
    failing = AsyncMock(side_effect=ServerSelectionTimeoutError("no servers available"))

    with pytest.raises(StorageFault) as exc_info:
        await repo._run("find_all", failing)

    assert exc_info.value.operation == "find_all"
    assert isinstance(exc_info.value.cause, ServerSelectionTimeoutError)


@pytest.mark.asyncio
async def test_ping_without_connection():
    repo = MongoPortfolioRepository(Settings(_env_file=None, storage_backend="mongodb"))

    assert await repo.ping() is False


@pytest.mark.asyncio
async def test_ping_reports_rejected_commands_as_unhealthy():
    client = MagicMock()
    client.admin.command = AsyncMock(side_effect=OperationFailure("Authentication failed.", code=18))
    repo = MongoPortfolioRepository(Settings(_env_file=None, storage_backend="mongodb"), client=client)

    assert await repo.ping() is False
    assert await database.test_connection_health(client) is False


@pytest.mark.asyncio
async def test_document_id_is_attached_to_spans():
    item_id = "507f1f77bcf86cd799439011"
    repo = MongoPortfolioRepository(Settings(_env_file=None, storage_backend="mongodb", enable_database_tracing=True))

    with patch("portfolio_api.mongo_repository.trace_database_call", AsyncMock(return_value=None)) as traced:
        assert await repo.find_by_id(item_id) is None
        assert await repo.delete_by_id(item_id) is None

    assert traced.await_count == 2
    for call in traced.await_args_list:
        assert call.args[:2] == ("find_by_id", COLLECTION_NAME)
        assert call.kwargs == {"enabled": True, "db.document.id": item_id}


@pytest.mark.asyncio
async def test_insert_and_find(mongo_repository):
    created = await mongo_repository.insert(payload())

    found = await mongo_repository.find_by_id(created.id)

    assert found == created
    assert found.createdAt == found.updatedAt
    assert found.purchaseDate == datetime(2024, 1, 15, tzinfo=UTC)
    assert await mongo_repository.find_by_id("507f1f77bcf86cd799439011") is None


@pytest.mark.asyncio
async def test_find_all_newest_first(mongo_repository):
    for name in ("first", "second", "third"):
        await mongo_repository.insert(payload(name=name))

    items = await mongo_repository.find_all()

    assert [item.name for item in items] == ["third", "second", "first"]


@pytest.mark.asyncio
async def test_update(mongo_repository):
    created = await mongo_repository.insert(payload())

    updated = await mongo_repository.update_by_id(created.id, payload(quantity=15, price=155))

    assert updated.id == created.id
    assert updated.createdAt == created.createdAt
    assert updated.updatedAt >= created.updatedAt
    assert updated.quantity == 15
    assert updated.purchasePrice == 155
    assert await mongo_repository.update_by_id("507f1f77bcf86cd799439011", payload()) is None


@pytest.mark.asyncio
async def test_delete(mongo_repository):
    created = await mongo_repository.insert(payload())

    deleted = await mongo_repository.delete_by_id(created.id)

    assert deleted.id == created.id
    assert await mongo_repository.find_by_id(created.id) is None
    assert await mongo_repository.delete_by_id(created.id) is None


@pytest.mark.asyncio
async def test_summary(mongo_repository):
    empty = await mongo_repository.aggregate_summary()
    await mongo_repository.insert(payload(name="Apple Inc", quantity=10))
    await mongo_repository.insert(payload(name="Bitcoin", quantity=30))

    summary = await mongo_repository.aggregate_summary()

    assert empty.uniqueCount == 0
    assert empty.list == []
    assert summary.totalHoldings == 40
    assert summary.uniqueCount == 2
    assert summary.averageHolding == 20
    assert summary.list == ["Bitcoin", "Apple Inc"]


@pytest.mark.asyncio
async def test_collection_validator_rejects_invalid_documents(mongo_repository, mongo_client):
    collection = mongo_client[DB_NAME][COLLECTION_NAME]
    now = datetime.now(UTC)

    with pytest.raises(WriteError):
        await collection.insert_one({
            "name": "Broken",
            "type": "stock",
            "quantity": -1,
            "purchasePrice": 10,
            "purchaseDate": now,
            "createdAt": now,
            "updatedAt": now,
        })


@pytest.mark.asyncio
async def test_api_against_mongodb(mongo_settings, mongo_repository):
    app = create_app(mongo_settings, repository=mongo_repository)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/api/v1/portfolio", json={
            "name": "Apple Inc",
            "type": "stock",
            "quantity": 10,
            "purchasePrice": 150,
            "purchaseDate": "2024-01-15",
        })
        assert response.status_code == 201
        created = response.json()["data"]

        fetched = await client.get(f"/api/v1/portfolio/{created['id']}")
        deleted = await client.delete(f"/api/v1/portfolio/{created['id'].upper()}")
        missing = await client.get(f"/api/v1/portfolio/{created['id']}")
        ready = await client.get("/health/ready")

    assert fetched.json()["data"] == created
    assert deleted.status_code == 200
    assert missing.status_code == 404
    assert ready.json() == {"status": "ready", "storage": "mongodb"}


@pytest.mark.asyncio
async def test_migrate_schema(mongo_settings, mongo_client):
    assert await migrate_schema(mongo_settings, client=mongo_client) is True

    indexes = await mongo_client[DB_NAME][COLLECTION_NAME].index_information()
    assert {"name_1", "createdAt_-1"} <= set(indexes)
    assert await mongo_client[DB_NAME][COLLECTION_NAME].count_documents({}) == 0
