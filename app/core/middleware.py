"""
FastAPI Middleware

Provides request/response middleware for:
- Correlation ID injection
- Request-scoped read memo
- Request logging (with PII masking)
- Global error handling
- Security headers (HSTS, CSP upgrade-insecure-requests)
"""
import re
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.cache import RequestMemo
from app.core.exceptions import (
    AppException,
    ErrorCode,
    GENERIC_ERROR_MESSAGE,
    ThrottledError,
)
from app.core.logging import (
    get_logger,
    set_actor_id,
    set_correlation_id,
    get_correlation_id
)

logger = get_logger(__name__)

# Egyptian mobile numbers in URL paths
_PHONE_IN_PATH_RE = re.compile(r"(\+?\d{3})\d{4,5}(\d{3})")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Middleware to add correlation ID to requests"""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        # Get correlation ID from header or generate new one
        correlation_id = request.headers.get("X-Correlation-ID")
        correlation_id = set_correlation_id(correlation_id)
        set_actor_id(None)

        # Add to request state for access in handlers
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class RequestMemoMiddleware(BaseHTTPMiddleware):
    """Opens a fresh within-request memo for repository reads"""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        with RequestMemo.scope():
            return await call_next(request)


def _mask_path_pii(path: str) -> str:
    """Mask phone numbers in the URL path"""
    return _PHONE_IN_PATH_RE.sub(r"\1****\2", path)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log requests and responses (with PII masking)"""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable
    ) -> Response:
        start_time = time.time()
        safe_path = _mask_path_pii(request.url.path)

        logger.info(
            f"Request started: {request.method} {safe_path}",
            extra_data={
                "method": request.method,
                "path": safe_path,
                "query_params": dict(request.query_params),
                "client_host": request.client.host if request.client else None,
            }
        )

        try:
            response = await call_next(request)
            duration = time.time() - start_time

            log_level = "info" if response.status_code < 400 else "warning"
            getattr(logger, log_level)(
                f"Request completed: {request.method} {safe_path}",
                extra_data={
                    "method": request.method,
                    "path": safe_path,
                    "status_code": response.status_code,
                    "duration_seconds": round(duration, 4),
                }
            )

            return response
        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Request failed: {request.method} {safe_path}",
                extra_data={
                    "method": request.method,
                    "path": safe_path,
                    "duration_seconds": round(duration, 4),
                    "error": str(e),
                },
                exc_info=True
            )
            raise


async def app_exception_handler(
    request: Request,
    exc: AppException
) -> JSONResponse:
    """Handle application exceptions"""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        f"Application exception: {exc.error_code.value}",
        extra_data={
            "error_code": exc.error_code.value,
            "exception_type": type(exc).__name__,
            "message": exc.message,
            "details": exc.details,
            "path": request.url.path,
        }
    )

    headers = {"X-Correlation-ID": get_correlation_id()}
    if isinstance(exc, ThrottledError):
        headers["Retry-After"] = str(exc.retry_after_seconds)

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers
    )


async def request_validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Query/path/header validation errors in the same envelope as AppException"""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("query", "path", "body", "header"))
    message = first.get("msg", "Invalid data")
    logger.warning(
        "Request validation failed",
        extra_data={"path": request.url.path, "field": field, "message": message},
    )
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": {
                "code": ErrorCode.VALIDATION_ERROR.value,
                "message": f"{field}: {message}" if field else message,
                "details": {"field": field} if field else {},
            },
        },
        headers={"X-Correlation-ID": get_correlation_id()}
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions"""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra_data={
            "exception_type": type(exc).__name__,
            "message": str(exc),
            "path": request.url.path,
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": ErrorCode.INTERNAL_ERROR.value,
                "message": GENERIC_ERROR_MESSAGE,
                "details": {}
            }
        },
        headers={"X-Correlation-ID": get_correlation_id()}
    )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds security headers to every response.

    X-Content-Type-Options is always set; HSTS and CSP upgrade-insecure-requests
    only outside DEBUG so local HTTP development keeps working.
    """

    def __init__(self, app: FastAPI, *, debug: bool = False) -> None:
        super().__init__(app)
        self._debug = debug

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"

        if not self._debug:
            response.headers["Content-Security-Policy"] = "upgrade-insecure-requests"
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response


def setup_middleware(app: FastAPI) -> None:
    """Setup all middleware for the application"""
    from app.core.config import settings

    # The last middleware added is the outermost.
    # Request order: SecurityHeaders -> CorrelationId -> RequestLogging -> RequestMemo -> app
    app.add_middleware(RequestMemoMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, debug=settings.DEBUG)


def setup_exception_handlers(app: FastAPI) -> None:
    """Setup exception handlers"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
