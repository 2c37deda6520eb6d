"""
Security middleware for response headers, request body limits and the
top-level fault boundary.

These are always active regardless of environment configuration.
"""

from typing import Callable
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from portfolio_api.logging_config import get_logger

logger = get_logger(__name__)

# Same header set as helmet defaults
BASE_SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self';base-uri 'self';font-src 'self' https: data:;"
        "form-action 'self';frame-ancestors 'self';img-src 'self' data:;"
        "object-src 'none';script-src 'self';script-src-attr 'none';"
        "style-src 'self' https: 'unsafe-inline';upgrade-insecure-requests"
    ),
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware for adding essential security headers to all responses.

    In strict mode (production) API responses are additionally marked as
    non-cacheable.
    """

    def __init__(self, app, strict_mode: bool = False):
        """
        Initialize security headers middleware.

        Args:
            app: ASGI application
            strict_mode: Whether to use strict security headers (production)
        """
        super().__init__(app)
        self.strict_mode = strict_mode
        self.headers = dict(BASE_SECURITY_HEADERS)
        if strict_mode:
            self.headers.update({
                "Cache-Control": "no-store",
                "Pragma": "no-cache",
                "Expires": "0",
            })

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        for header_name, header_value in self.headers.items():
            response.headers[header_name] = header_value
        # Equivalent of helmet's hidePoweredBy
        if "x-powered-by" in response.headers:
            del response.headers["x-powered-by"]
        return response


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests whose declared body size exceeds ``max_body_bytes`` with 413."""

    def __init__(self, app, max_body_bytes: int):
        super().__init__(app)
        self.max_body_bytes = max_body_bytes

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        content_length = request.headers.get("content-length")
        if content_length is not None:
            try:
                declared = int(content_length)
            except ValueError:
                return JSONResponse(status_code=400, content={"success": False, "error": "Invalid Content-Length header"})
            if declared > self.max_body_bytes:
                logger.warning(
                    "Request body too large",
                    path=request.url.path,
                    method=request.method,
                    content_length=declared,
                    max_body_bytes=self.max_body_bytes
                )
                return JSONResponse(status_code=413, content={"success": False, "error": "Request entity too large"})
        return await call_next(request)


class BasicErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Fault boundary for anything a handler did not map to a response.

    Unhandled exceptions are logged with their traceback and answered with a
    500 ``{error, message}`` body; the exception text is only exposed when
    ``include_error_details`` is set (development).
    """

    def __init__(self, app, include_error_details: bool = False):
        """
        Initialize basic error handling middleware.

        Args:
            app: ASGI application
            include_error_details: Whether to include error details in responses
        """
        super().__init__(app)
        self.include_error_details = include_error_details

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            request_id = getattr(request.state, 'request_id', 'unknown')

            logger.error(
                "Unhandled error in request processing",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True
            )

            return JSONResponse(
                status_code=500,
                content={
                    "error": "Something went wrong!",
                    "message": str(e) if self.include_error_details else "Internal server error",
                }
            )
