"""
Validation rules for portfolio item payloads.

``validate_portfolio_item`` is the single gate between the wire payload and the
handlers: it returns either a normalized ``PortfolioItemPayload`` or a
``ValidationFailure`` describing the first violated rule. Rules are checked in
this priority order: name, type, quantity, purchasePrice, purchaseDate.
"""

from dataclasses import dataclass
from typing import Any, Dict, Union

from pydantic import ValidationError as PydanticValidationError

from portfolio_api.models import AssetType
from portfolio_api.schemas import PortfolioItemPayload

ASSET_TYPES = [t.value for t in AssetType]

_NUMERIC_FIELDS = ("quantity", "purchasePrice")


@dataclass(frozen=True)
class ValidationFailure:
    field: str
    message: str


ValidationResult = Union[PortfolioItemPayload, ValidationFailure]


def _message_for(field: str, error_type: str) -> str:
    if error_type == "missing":
        return f'"{field}" is required'

    if field == "name":
        if error_type == "string_too_short":
            return '"name" is not allowed to be empty'
        if error_type == "string_too_long":
            return '"name" length must be less than or equal to 100 characters long'
        return '"name" must be a string'

    if field == "type":
        return f'"type" must be one of [{", ".join(ASSET_TYPES)}]'

    if field in _NUMERIC_FIELDS:
        if error_type == "greater_than_equal":
            return f'"{field}" must be greater than or equal to 0'
        return f'"{field}" must be a number'

    if field == "purchaseDate":
        return '"purchaseDate" must be a valid date'

    return f'"{field}" is invalid'


def _failure_from(exc: PydanticValidationError) -> ValidationFailure:
    error: Dict[str, Any] = exc.errors()[0]
    loc = error.get("loc") or ()
    if not loc:
        return ValidationFailure(field="value", message='"value" must be of type object')
    field = str(loc[0])
    return ValidationFailure(field=field, message=_message_for(field, error["type"]))


def validate_portfolio_item(raw: Any) -> ValidationResult:
    """Validate an arbitrary decoded JSON value against the portfolio item rules."""
    if not isinstance(raw, dict):
        return ValidationFailure(field="value", message='"value" must be of type object')
    try:
        return PortfolioItemPayload.model_validate(raw)
    except PydanticValidationError as e:
        return _failure_from(e)
