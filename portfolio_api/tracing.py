from opentelemetry import trace
from typing import Any, Callable, Awaitable, Optional

from portfolio_api.config import settings

# Get tracer for database operations
tracer = trace.get_tracer(__name__)


async def trace_database_call(operation_name: str, collection_name: str, operation_func: Callable[[], Awaitable[Any]],
                              enabled: Optional[bool] = None, **extra_attributes):
    """
    Run a database call, wrapped in an OpenTelemetry span when database tracing is enabled.

    Args:
        operation_name: Name of the database operation (e.g. "find_all", "insert")
        collection_name: Name of the MongoDB collection
        operation_func: The async function to execute
        enabled: Override for ``settings.enable_database_tracing``
        extra_attributes: Additional attributes to add to the span
    """
    if enabled is None:
        enabled = settings.enable_database_tracing

    # Fast-path execution when tracing is disabled
    if not enabled:
        return await operation_func()

    attributes = {
        "db.system": "mongodb",
        "db.name": settings.mongodb_db_name,
        "db.collection.name": collection_name,
        "db.operation": operation_name,
        **extra_attributes
    }

    with tracer.start_as_current_span(
        f"db.{collection_name}.{operation_name}",
        attributes=attributes
    ) as span:
        try:
            result = await operation_func()
            span.set_status(trace.Status(trace.StatusCode.OK))

            if isinstance(result, list):
                span.set_attribute("db.result.count", len(result))

            return result
        except Exception as e:
            span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise
