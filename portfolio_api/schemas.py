import re
from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator
from typing import Annotated, Any, Dict, List, Optional
from datetime import date, datetime, UTC
from dateutil import parser as dateutil_parser
from portfolio_api.models import AssetType

_EPOCH_MS = re.compile(r"-?\d+(\.\d+)?")


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (MongoDB returns naive UTC values)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_iso(value: datetime) -> str:
    return as_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class PortfolioItemPayload(BaseModel):
    """Validated, normalized body of a create or update request.

    Fields are declared in rule priority order; pydantic reports errors in
    declaration order so the first error is the highest-priority violation.
    """
    model_config = ConfigDict(extra="ignore")

    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
    type: AssetType
    quantity: float = Field(..., ge=0, allow_inf_nan=False)
    purchasePrice: float = Field(..., ge=0, allow_inf_nan=False)
    purchaseDate: datetime

    @field_validator("quantity", "purchasePrice", mode="before")
    @classmethod
    def reject_booleans(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("booleans are not numbers")
        return value

    @field_validator("purchaseDate", mode="before")
    @classmethod
    def parse_purchase_date(cls, value: Any) -> datetime:
        if isinstance(value, datetime):
            return as_utc(value)
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day, tzinfo=UTC)
        if isinstance(value, bool):
            raise ValueError("booleans are not dates")
        if isinstance(value, str) and _EPOCH_MS.fullmatch(value.strip()):
            value = float(value.strip())
        if isinstance(value, (int, float)):
            # Epoch milliseconds, as accepted by JavaScript clients
            try:
                return datetime.fromtimestamp(value / 1000, tz=UTC)
            except (OverflowError, OSError) as e:
                raise ValueError("timestamp out of range") from e
        if isinstance(value, str) and value.strip():
            text = value.strip()
            try:
                return as_utc(datetime.fromisoformat(text))
            except ValueError:
                pass
            # Free-form dates such as "2024/01/15" or "Jan 15 2024"
            try:
                return as_utc(dateutil_parser.parse(text))
            except (ValueError, OverflowError) as e:
                raise ValueError("not a date") from e
        raise ValueError("not a date")

    def to_fields(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "quantity": self.quantity,
            "purchasePrice": self.purchasePrice,
            "purchaseDate": self.purchaseDate,
        }


class PortfolioItemRecord(BaseModel):
    """Storage-agnostic snapshot of a persisted portfolio item."""
    id: str = Field(...)
    name: str = Field(...)
    type: AssetType = Field(...)
    quantity: float = Field(...)
    purchasePrice: float = Field(...)
    purchaseDate: datetime = Field(...)
    createdAt: datetime = Field(...)
    updatedAt: datetime = Field(...)

    def to_dto(self) -> Dict[str, Any]:
        return {
            "_id": self.id,
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "quantity": self.quantity,
            "purchasePrice": self.purchasePrice,
            "purchaseDate": to_iso(self.purchaseDate),
            "createdAt": to_iso(self.createdAt),
            "updatedAt": to_iso(self.updatedAt),
        }


class PortfolioSummary(BaseModel):
    totalHoldings: float = 0
    uniqueCount: int = 0
    averageHolding: float = 0
    list: List[str] = Field(default_factory=list)


class ApiEnvelope(BaseModel):
    success: bool = Field(...)
    data: Optional[Any] = None
    error: Optional[str] = None
    count: Optional[int] = None
    message: Optional[str] = None

    def to_content(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
