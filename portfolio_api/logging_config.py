import json
import logging
import sys
import time
import uuid
import socket
from datetime import datetime, timezone
from typing import Optional
from contextvars import ContextVar
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

APPLICATION_NAME = "portfolio-management-api"

# Context variables for request-scoped data
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging"""

    def __init__(self, application: str = APPLICATION_NAME):
        super().__init__()
        self.application = application
        self.server = socket.gethostname()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON"""
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "msg": record.getMessage(),
            "application": self.application,
            "server": self.server,
            "location": f"{record.name}:{record.funcName}:{record.lineno}",
        }

        # Add request-scoped context if available
        request_id = request_id_var.get()
        if request_id:
            log_entry["request_id"] = request_id

        correlation_id = correlation_id_var.get()
        if correlation_id:
            log_entry["correlation_id"] = correlation_id

        # Add extra fields from the log record
        if hasattr(record, 'extra_fields'):
            log_entry.update(record.extra_fields)

        # Add exception info if present
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class StructuredLogger:
    """Wrapper for structured logging with keyword context fields"""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log(self, level: int, msg: str, exc_info: bool = False, **extra_fields):
        """Internal log method with extra fields"""
        if self.logger.isEnabledFor(level):
            # frame 0 is _log, frame 1 the level method, frame 2 its caller
            caller = sys._getframe(2)
            record = self.logger.makeRecord(
                self.logger.name, level, caller.f_code.co_filename, caller.f_lineno, msg, (),
                sys.exc_info() if exc_info else None, func=caller.f_code.co_name
            )
            record.extra_fields = extra_fields
            self.logger.handle(record)

    def info(self, msg: str, **extra_fields):
        self._log(logging.INFO, msg, **extra_fields)

    def warning(self, msg: str, **extra_fields):
        self._log(logging.WARNING, msg, **extra_fields)

    def error(self, msg: str, **extra_fields):
        self._log(logging.ERROR, msg, **extra_fields)

    def debug(self, msg: str, **extra_fields):
        self._log(logging.DEBUG, msg, **extra_fields)

    def critical(self, msg: str, **extra_fields):
        self._log(logging.CRITICAL, msg, **extra_fields)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for request/response logging with request and correlation IDs.

    Generates a request ID (or reuses ``X-Request-ID``), propagates
    ``X-Correlation-ID`` through context variables so every log line of the
    request carries both, and echoes them on the response.
    """

    def __init__(self, app, logger: Optional[StructuredLogger] = None, slow_request_seconds: float = 1.0):
        super().__init__(app)
        self.logger = logger or StructuredLogger(__name__)
        self.slow_request_seconds = slow_request_seconds

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        correlation_id = request.headers.get("x-correlation-id", request_id)

        request_token = request_id_var.set(request_id)
        correlation_token = correlation_id_var.set(correlation_id)
        request.state.request_id = request_id

        start_time = time.time()
        method = request.method
        path = str(request.url.path)

        try:
            self.logger.debug(
                f"Request: {method} {path}",
                method=method,
                path=path,
                ip=self._get_client_ip(request)
            )

            response: Response = await call_next(request)
            duration = time.time() - start_time

            if duration > self.slow_request_seconds:
                self.logger.warning(
                    f"Slow request: {method} {path} - {response.status_code}",
                    method=method,
                    path=path,
                    status=response.status_code,
                    duration=round(duration * 1000, 2)
                )
            else:
                self.logger.info(
                    f"Response: {method} {path} - {response.status_code}",
                    method=method,
                    path=path,
                    status=response.status_code,
                    duration=round(duration * 1000, 2)
                )

            response.headers["x-request-id"] = request_id
            if correlation_id != request_id:
                response.headers["x-correlation-id"] = correlation_id
            return response
        finally:
            request_id_var.reset(request_token)
            correlation_id_var.reset(correlation_token)

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP address from request"""
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        if request.client:
            return request.client.host

        return "unknown"


def setup_logging(log_level: str = "INFO", application: str = APPLICATION_NAME) -> StructuredLogger:
    """Configure structured JSON logging on the root logger."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(application=application))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing.formatter, JSONFormatter):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Keep third-party noise down
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    return StructuredLogger("portfolio_api")


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance"""
    return StructuredLogger(name)
