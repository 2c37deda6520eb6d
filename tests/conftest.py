import os
from datetime import datetime, timedelta, UTC

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from portfolio_api.config import Settings
from portfolio_api.main import create_app
from portfolio_api.memory_repository import InMemoryPortfolioRepository


@pytest.fixture(scope="session")
def mongodb_container():
    mongodb = pytest.importorskip("testcontainers.mongodb")
    try:
        container = mongodb.MongoDbContainer("mongo:8.0.9")
        container.start()
    except Exception as e:
        pytest.skip(f"MongoDB container unavailable: {e}")
    os.environ["MONGODB_URI"] = container.get_connection_url()
    try:
        yield container
    finally:
        container.stop()


class FakeClock:
    """Deterministic UTC clock for repositories."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=UTC)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings():
    return Settings(_env_file=None, storage_backend="memory", environment="development", log_level="WARNING")


@pytest.fixture
def repository():
    return InMemoryPortfolioRepository()


@pytest.fixture
def app(test_settings, repository):
    return create_app(test_settings, repository=repository)


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def apple_payload():
    return {
        "name": "Apple Inc",
        "type": "stock",
        "quantity": 10,
        "purchasePrice": 150,
        "purchaseDate": "2024-01-15",
    }
