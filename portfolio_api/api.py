import json
from typing import Any

from bson import ObjectId
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from portfolio_api.exceptions import (
    ApiError,
    MalformedReferenceError,
    NotFoundError,
    PayloadTooLargeError,
    StorageFault,
    ValidationError,
)
from portfolio_api.logging_config import get_logger
from portfolio_api.repository import PortfolioRepository, is_valid_item_id
from portfolio_api.schemas import ApiEnvelope, PortfolioItemPayload
from portfolio_api.validation import ValidationFailure, validate_portfolio_item

logger = get_logger(__name__)

router = APIRouter()


def get_repository(request: Request) -> PortfolioRepository:
    """The repository attached to the application at startup."""
    return request.app.state.repository


async def read_json_body(request: Request) -> Any:
    body = await request.body()
    if len(body) > request.app.state.settings.max_body_bytes:
        raise PayloadTooLargeError()
    if not body:
        return None
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError("Invalid JSON payload") from e


def checked_item_id(item_id: str) -> str:
    if not is_valid_item_id(item_id):
        logger.warning("Rejected malformed portfolio item id", item_id=item_id)
        raise MalformedReferenceError()
    # ObjectId hex is case-insensitive; both backends store the lowercase form
    return str(ObjectId(item_id))


def validated_payload(raw: Any) -> PortfolioItemPayload:
    result = validate_portfolio_item(raw)
    if isinstance(result, ValidationFailure):
        logger.info("Portfolio item validation failed", field=result.field, error=result.message)
        raise ValidationError(result.message)
    return result


def envelope(status_code: int = status.HTTP_200_OK, **fields) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ApiEnvelope(success=True, **fields).to_content())


def storage_failure(message: str, error: StorageFault, **context) -> ApiError:
    logger.error(message, error=str(error), operation=error.operation, **context)
    return ApiError(message)


@router.get("/stats/summary")
async def get_portfolio_summary(repository: PortfolioRepository = Depends(get_repository)):
    """Aggregate quantity statistics over every holding"""
    try:
        summary = await repository.aggregate_summary()
    except StorageFault as e:
        raise storage_failure("Failed to fetch portfolio summary", e) from e
    logger.info("Returned portfolio summary", unique_count=summary.uniqueCount)
    return envelope(data=summary.model_dump())


@router.get("")
async def list_portfolio_items(repository: PortfolioRepository = Depends(get_repository)):
    """List all portfolio items, most recently created first"""
    try:
        items = await repository.find_all()
    except StorageFault as e:
        raise storage_failure("Failed to fetch portfolio items", e) from e
    logger.info("Returned portfolio items", count=len(items))
    return envelope(count=len(items), data=[item.to_dto() for item in items])


@router.get("/{item_id}")
async def get_portfolio_item(item_id: str, repository: PortfolioRepository = Depends(get_repository)):
    """Get a single portfolio item by id"""
    item_id = checked_item_id(item_id)
    try:
        item = await repository.find_by_id(item_id)
    except StorageFault as e:
        raise storage_failure("Failed to fetch portfolio item", e, item_id=item_id) from e
    if item is None:
        logger.warning("Portfolio item not found", item_id=item_id)
        raise NotFoundError()
    return envelope(data=item.to_dto())


@router.post("")
async def create_portfolio_item(
    raw: Any = Depends(read_json_body),
    repository: PortfolioRepository = Depends(get_repository),
):
    """Create a portfolio item; duplicate names are allowed (multiple lots)"""
    payload = validated_payload(raw)
    try:
        item = await repository.insert(payload)
    except StorageFault as e:
        raise storage_failure("Failed to create portfolio item", e, item_name=payload.name) from e
    logger.info("Created portfolio item", item_id=item.id, item_name=item.name, item_type=item.type.value)
    return envelope(status.HTTP_201_CREATED, data=item.to_dto())


@router.put("/{item_id}")
async def update_portfolio_item(
    item_id: str,
    raw: Any = Depends(read_json_body),
    repository: PortfolioRepository = Depends(get_repository),
):
    """Replace the fields of an existing portfolio item"""
    item_id = checked_item_id(item_id)
    payload = validated_payload(raw)
    try:
        item = await repository.update_by_id(item_id, payload)
    except StorageFault as e:
        raise storage_failure("Failed to update portfolio item", e, item_id=item_id) from e
    if item is None:
        logger.warning("Portfolio item not found for update", item_id=item_id)
        raise NotFoundError()
    logger.info("Updated portfolio item", item_id=item_id, item_name=item.name)
    return envelope(data=item.to_dto())


@router.delete("/{item_id}")
async def delete_portfolio_item(item_id: str, repository: PortfolioRepository = Depends(get_repository)):
    """Hard-delete a portfolio item and echo it back"""
    item_id = checked_item_id(item_id)
    try:
        item = await repository.delete_by_id(item_id)
    except StorageFault as e:
        raise storage_failure("Failed to delete portfolio item", e, item_id=item_id) from e
    if item is None:
        logger.warning("Portfolio item not found for deletion", item_id=item_id)
        raise NotFoundError()
    logger.info("Deleted portfolio item", item_id=item_id, item_name=item.name)
    return envelope(message="Portfolio item deleted successfully", data=item.to_dto())
