from beanie import Document
from pydantic import Field
from datetime import datetime, UTC
from enum import Enum


class AssetType(str, Enum):
    STOCK = "stock"
    BOND = "bond"
    CRYPTO = "crypto"
    MUTUAL_FUND = "mutual_fund"
    ETF = "etf"
    REAL_ESTATE = "real_estate"
    COMMODITY = "commodity"


def utc_now() -> datetime:
    """Current UTC time truncated to milliseconds, the precision MongoDB stores."""
    now = datetime.now(UTC)
    return now.replace(microsecond=now.microsecond - now.microsecond % 1000)


class PortfolioItem(Document):
    name: str
    type: AssetType
    quantity: float
    purchasePrice: float
    purchaseDate: datetime
    createdAt: datetime = Field(default_factory=utc_now)
    updatedAt: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "portfolioItems"
