"""
Tests for Middleware - app/core/middleware.py

Covers:
- CorrelationIdMiddleware: correlation ID propagation
- RequestMemoMiddleware: one memo per request
- RequestLoggingMiddleware: request logging with PII masking
- Exception handlers: AppException, request validation and generic Exception
- _mask_path_pii: phone numbers in URL paths
"""
import json
from unittest.mock import AsyncMock

import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse, JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from app.core.cache import RequestMemo
from app.core.middleware import (
    CorrelationIdMiddleware,
    RequestLoggingMiddleware,
    RequestMemoMiddleware,
    SecurityHeadersMiddleware,
    _mask_path_pii,
    app_exception_handler,
    generic_exception_handler,
)
from app.core.exceptions import (
    AppException,
    ErrorCode,
    ListingNotFoundError,
    ThrottledError,
    ValidationException,
)


# ============================================================================
# Helpers
# ============================================================================


def _hello(request: Request) -> PlainTextResponse:
    return PlainTextResponse("ok")


def _error(request: Request) -> PlainTextResponse:
    raise ValueError("test failure")


_memo_calls = {"n": 0}


async def _memoized(request: Request) -> JSONResponse:
    async def compute():
        _memo_calls["n"] += 1
        return _memo_calls["n"]

    first = await RequestMemo.get_or_compute("k", compute)
    second = await RequestMemo.get_or_compute("k", compute)
    return JSONResponse({"first": first, "second": second})


def _build_app(*, middlewares: list[tuple] | None = None) -> Starlette:
    """Minimal Starlette app with the given middleware"""
    app = Starlette(routes=[
        Route("/test", _hello),
        Route("/error", _error),
        Route("/memo", _memoized),
    ])
    for mw_class, kwargs in middlewares or []:
        app.add_middleware(mw_class, **kwargs)
    return app


def _mock_request(path: str) -> AsyncMock:
    request = AsyncMock(spec=Request)
    request.url.path = path
    return request


# ============================================================================
# _mask_path_pii
# ============================================================================


class TestMaskPathPii:
    """Phone numbers are masked in logged URL paths"""

    @pytest.mark.unit
    def test_masks_international_phone(self) -> None:
        masked = _mask_path_pii("/api/sellers/+201012345678/listings")
        assert "+201012345678" not in masked
        assert "****" in masked

    @pytest.mark.unit
    def test_masks_local_phone(self) -> None:
        assert _mask_path_pii("/api/sellers/01012345678") == "/api/sellers/010****678"

    @pytest.mark.unit
    def test_no_phone_no_change(self) -> None:
        path = "/api/listings/toyota-corolla-2018-ab12cd34"
        assert _mask_path_pii(path) == path

    @pytest.mark.unit
    def test_short_number_not_masked(self) -> None:
        assert _mask_path_pii("/api/feed/home/12345") == "/api/feed/home/12345"


# ============================================================================
# CorrelationIdMiddleware
# ============================================================================


class TestCorrelationIdMiddleware:

    @pytest.mark.unit
    def test_generates_correlation_id_when_missing(self) -> None:
        app = _build_app(middlewares=[(CorrelationIdMiddleware, {})])
        with TestClient(app) as client:
            response = client.get("/test")
            assert response.status_code == 200
            assert len(response.headers["x-correlation-id"]) == 8

    @pytest.mark.unit
    def test_preserves_existing_correlation_id(self) -> None:
        app = _build_app(middlewares=[(CorrelationIdMiddleware, {})])
        with TestClient(app) as client:
            response = client.get("/test", headers={"X-Correlation-ID": "upstream-id"})
            assert response.headers["x-correlation-id"] == "upstream-id"

    @pytest.mark.unit
    def test_correlation_id_unique_per_request(self) -> None:
        app = _build_app(middlewares=[(CorrelationIdMiddleware, {})])
        with TestClient(app) as client:
            first = client.get("/test").headers["x-correlation-id"]
            second = client.get("/test").headers["x-correlation-id"]
            assert first != second


# ============================================================================
# RequestMemoMiddleware
# ============================================================================


class TestRequestMemoMiddleware:

    @pytest.mark.unit
    def test_memo_shared_within_request_only(self) -> None:
        _memo_calls["n"] = 0
        app = _build_app(middlewares=[(RequestMemoMiddleware, {})])
        with TestClient(app) as client:
            first = client.get("/memo").json()
            second = client.get("/memo").json()

        assert first == {"first": 1, "second": 1}
        assert second == {"first": 2, "second": 2}

    @pytest.mark.unit
    def test_without_middleware_nothing_is_shared(self) -> None:
        _memo_calls["n"] = 0
        app = _build_app()
        with TestClient(app) as client:
            assert client.get("/memo").json() == {"first": 1, "second": 2}


# ============================================================================
# RequestLoggingMiddleware
# ============================================================================


class TestRequestLoggingMiddleware:

    @pytest.mark.unit
    def test_successful_request_logged(self) -> None:
        app = _build_app(middlewares=[(RequestLoggingMiddleware, {})])
        with TestClient(app) as client:
            assert client.get("/test").status_code == 200

    @pytest.mark.unit
    def test_exception_in_handler_reraised(self) -> None:
        app = _build_app(middlewares=[(RequestLoggingMiddleware, {})])
        with TestClient(app, raise_server_exceptions=False) as client:
            assert client.get("/error").status_code == 500


# ============================================================================
# Exception handlers
# ============================================================================


class TestAppExceptionHandler:

    @pytest.mark.asyncio
    async def test_handles_app_exception(self) -> None:
        exc = AppException(
            message="Listing store unavailable",
            error_code=ErrorCode.DEPENDENCY_UNAVAILABLE,
            status_code=503,
            details={"service": "listing_store"},
        )

        response = await app_exception_handler(_mock_request("/api/listings"), exc)

        assert isinstance(response, JSONResponse)
        assert response.status_code == 503
        assert "x-correlation-id" in response.headers
        body = json.loads(response.body)
        assert body == {
            "success": False,
            "error": {
                "code": "ERR_5001",
                "message": "Listing store unavailable",
                "details": {"service": "listing_store"},
            },
        }

    @pytest.mark.asyncio
    async def test_handles_validation_exception(self) -> None:
        exc = ValidationException(message="Title is required", field="title")

        response = await app_exception_handler(_mock_request("/api/listings"), exc)

        assert response.status_code == 400
        assert json.loads(response.body)["error"]["details"]["field"] == "title"

    @pytest.mark.asyncio
    async def test_throttled_sets_retry_after(self) -> None:
        exc = ThrottledError("listing_create", retry_after_seconds=1200)

        response = await app_exception_handler(_mock_request("/api/listings"), exc)

        assert response.status_code == 429
        assert response.headers["retry-after"] == "1200"

    @pytest.mark.asyncio
    async def test_not_found_hides_identifier(self) -> None:
        exc = ListingNotFoundError("secret-listing-id")

        response = await app_exception_handler(_mock_request("/api/listings/x"), exc)

        assert response.status_code == 404
        assert "secret-listing-id" not in response.body.decode()


class TestRequestValidationHandler:

    @pytest.mark.asyncio
    async def test_query_validation_uses_envelope(self, test_client) -> None:
        response = await test_client.get("/api/listings", params={"limit": 0})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "ERR_1001"
        assert error["details"]["field"] == "limit"


class TestGenericExceptionHandler:

    @pytest.mark.asyncio
    async def test_handles_unexpected_exception(self) -> None:
        response = await generic_exception_handler(
            _mock_request("/api/something"), RuntimeError("unexpected")
        )

        assert isinstance(response, JSONResponse)
        assert response.status_code == 500
        assert "x-correlation-id" in response.headers

    @pytest.mark.asyncio
    async def test_does_not_leak_internal_details(self) -> None:
        exc = RuntimeError("database connection failed on host 10.0.0.1")

        response = await generic_exception_handler(_mock_request("/api/test"), exc)

        body = response.body.decode()
        assert "10.0.0.1" not in body
        assert "database connection" not in body
        assert "ERR_1000" in body


# ============================================================================
# Full stack
# ============================================================================


class TestSetupMiddleware:

    @pytest.mark.unit
    def test_security_headers_unit(self) -> None:
        app = _build_app(middlewares=[(SecurityHeadersMiddleware, {"debug": False})])
        with TestClient(app) as client:
            response = client.get("/test")
            assert response.headers["x-content-type-options"] == "nosniff"

    @pytest.mark.asyncio
    async def test_full_middleware_stack(self, test_client) -> None:
        response = await test_client.get("/health")

        assert response.status_code == 200
        assert "x-correlation-id" in response.headers
        assert response.headers.get("x-content-type-options") == "nosniff"
