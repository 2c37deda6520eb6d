from typing import Optional


class ApiError(Exception):
    """Base error rendered to clients as a ``{success: false, error}`` envelope."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ApiError):
    """Raised when a request payload violates a validation rule."""

    status_code = 400
    default_message = "Invalid portfolio item"


class MalformedReferenceError(ApiError):
    """Raised when a path id is not a syntactically valid item id."""

    status_code = 400
    default_message = "Invalid portfolio item ID"


class NotFoundError(ApiError):
    """Raised when no item exists for a well-formed id."""

    status_code = 404
    default_message = "Portfolio item not found"


class PayloadTooLargeError(ApiError):
    status_code = 413
    default_message = "Request entity too large"


class StorageFault(Exception):
    """Raised by repositories when the backing store is unreachable or rejects an operation."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        detail = f"{type(cause).__name__}: {cause}" if cause else "unknown error"
        super().__init__(f"Storage operation '{operation}' failed ({detail})")
