import pytest
from unittest.mock import AsyncMock, patch, MagicMock
from opentelemetry import trace

from portfolio_api.tracing import trace_database_call


@pytest.fixture
def mock_tracer():
    """Mock the tracer to capture span creation"""
    with patch('portfolio_api.tracing.tracer') as mock_tracer, \
            patch('portfolio_api.tracing.settings.mongodb_db_name', 'portfolio_test'):
        mock_span = MagicMock()
        mock_tracer.start_as_current_span.return_value.__enter__.return_value = mock_span
        mock_tracer.start_as_current_span.return_value.__exit__.return_value = None
        yield mock_tracer, mock_span


@pytest.mark.asyncio
async def test_trace_database_call_success(mock_tracer):
    mock_tracer_obj, mock_span = mock_tracer
    mock_operation = AsyncMock(return_value=["item1", "item2"])

    result = await trace_database_call("find_all", "portfolioItems", mock_operation, enabled=True,
                                       **{"db.query.sort": "createdAt"})

    assert result == ["item1", "item2"]
    mock_operation.assert_called_once()
    mock_tracer_obj.start_as_current_span.assert_called_once_with(
        "db.portfolioItems.find_all",
        attributes={
            "db.system": "mongodb",
            "db.name": "portfolio_test",
            "db.collection.name": "portfolioItems",
            "db.operation": "find_all",
            "db.query.sort": "createdAt"
        }
    )
    status_call = mock_span.set_status.call_args[0][0]
    assert status_call.status_code == trace.StatusCode.OK
    mock_span.set_attribute.assert_called_once_with("db.result.count", 2)


@pytest.mark.asyncio
async def test_trace_database_call_error(mock_tracer):
    """Errors are recorded on the span and re-raised"""
    mock_tracer_obj, mock_span = mock_tracer
    test_error = Exception("Database connection failed")
    mock_operation = AsyncMock(side_effect=test_error)

    with pytest.raises(Exception, match="Database connection failed"):
        await trace_database_call("find_by_id", "portfolioItems", mock_operation, enabled=True)

    status_call = mock_span.set_status.call_args[0][0]
    assert status_call.status_code == trace.StatusCode.ERROR
    assert status_call.description == str(test_error)
    mock_span.record_exception.assert_called_once_with(test_error)


@pytest.mark.asyncio
async def test_single_document_results_have_no_count(mock_tracer):
    _, mock_span = mock_tracer

    result = await trace_database_call("insert", "portfolioItems", AsyncMock(return_value=None), enabled=True)

    assert result is None
    mock_span.set_attribute.assert_not_called()


@pytest.mark.asyncio
async def test_disabled_tracing_skips_spans(mock_tracer):
    mock_tracer_obj, _ = mock_tracer

    result = await trace_database_call("find_all", "portfolioItems", AsyncMock(return_value=[]), enabled=False)

    assert result == []
    mock_tracer_obj.start_as_current_span.assert_not_called()
