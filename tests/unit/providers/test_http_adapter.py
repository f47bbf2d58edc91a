"""
Tests for HttpBackendAdapter and create_http_client

Uses httpx.MockTransport so no network is touched.

This module tests:
- Request body and correlation header
- Response parsing (payload, usage, cost)
- Error status classification into retryable / fatal BackendErrors
- Timeouts and transport errors
- Client ownership on aclose()
"""

import json
from decimal import Decimal

import httpx
import pytest

from genai_gateway.core.exceptions import BackendError, FatalBackendError, StatusKind
from genai_gateway.models.domain import GenerationOptions
from genai_gateway.observability.logging import correlation_id_context
from genai_gateway.providers.http import (
    CORRELATION_HEADER,
    HttpBackendAdapter,
    classify_status,
    create_http_client,
)

BACKEND_ID = "amazon.titan-text-express-v1"


def _adapter(handler) -> HttpBackendAdapter:
    client = create_http_client(
        base_url="http://titan-proxy",
        transport=httpx.MockTransport(handler),
    )
    return HttpBackendAdapter(BACKEND_ID, client=client)


def _ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "output": "Chlorophyll absorbs light.",
            "usage": {"input_tokens": 12, "output_tokens": 30},
            "cost": "0.0012",
        },
    )


# =============================================================================
# Client Factory
# =============================================================================


class TestCreateHttpClient:
    @pytest.mark.asyncio
    async def test_defaults(self) -> None:
        client = create_http_client(base_url="http://titan-proxy")
        try:
            assert client.timeout.read == 30.0
            assert client.headers["User-Agent"] == "genai-gateway/1.0"
            assert str(client.base_url) == "http://titan-proxy"
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_custom_headers_and_timeout(self) -> None:
        client = create_http_client(timeout_seconds=5, headers={"X-Api-Key": "secret"})
        try:
            assert client.timeout.connect == 5
            assert client.headers["X-Api-Key"] == "secret"
        finally:
            await client.aclose()


# =============================================================================
# Status Classification
# =============================================================================


class TestClassifyStatus:
    @pytest.mark.parametrize(
        "status_code, kind",
        [
            (408, StatusKind.TIMEOUT),
            (504, StatusKind.TIMEOUT),
            (429, StatusKind.RATE_LIMITED),
            (503, StatusKind.UNAVAILABLE),
            (500, StatusKind.SERVER_ERROR),
            (502, StatusKind.SERVER_ERROR),
            (401, StatusKind.AUTHENTICATION),
            (403, StatusKind.AUTHORIZATION),
            (400, StatusKind.VALIDATION),
            (413, StatusKind.VALIDATION),
            (422, StatusKind.VALIDATION),
            (418, StatusKind.UNKNOWN),
        ],
    )
    def test_mapping(self, status_code, kind) -> None:
        assert classify_status(status_code) == kind


# =============================================================================
# Invoke
# =============================================================================


class TestHttpBackendAdapterInvoke:
    @pytest.mark.asyncio
    async def test_posts_prompt_and_options(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _ok(request)

        adapter = _adapter(handler)
        with correlation_id_context("req-42"):
            await adapter.invoke("Explain", GenerationOptions(max_tokens=50, extra={"stop": ["\n"]}))

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/v1/generate"
        assert request.headers[CORRELATION_HEADER] == "req-42"
        assert json.loads(request.content) == {
            "model": BACKEND_ID,
            "prompt": "Explain",
            "options": {"max_tokens": 50, "stop": ["\n"]},
        }

    @pytest.mark.asyncio
    async def test_parses_payload_usage_and_cost(self) -> None:
        response = await _adapter(_ok).invoke("Explain", GenerationOptions())

        assert response.payload == "Chlorophyll absorbs light."
        assert response.tokens_in == 12
        assert response.tokens_out == 30
        assert response.cost == Decimal("0.0012")

    @pytest.mark.asyncio
    async def test_missing_cost_left_for_router_to_price(self) -> None:
        adapter = _adapter(lambda request: httpx.Response(200, json={"output": [0.1, 0.2]}))

        response = await adapter.invoke("embed me", GenerationOptions())

        assert response.payload == [0.1, 0.2]
        assert response.tokens_in == 0
        assert response.cost is None

    @pytest.mark.asyncio
    async def test_reported_zero_cost_is_kept(self) -> None:
        adapter = _adapter(
            lambda request: httpx.Response(200, json={"output": "free", "cost": "0"})
        )

        response = await adapter.invoke("Explain", GenerationOptions())

        assert response.cost == Decimal("0")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code, kind, retryable",
        [
            (429, StatusKind.RATE_LIMITED, True),
            (503, StatusKind.UNAVAILABLE, True),
            (500, StatusKind.SERVER_ERROR, True),
            (400, StatusKind.VALIDATION, False),
            (413, StatusKind.VALIDATION, False),
            (401, StatusKind.AUTHENTICATION, False),
        ],
    )
    async def test_error_status_raises_classified_error(
        self, status_code, kind, retryable
    ) -> None:
        adapter = _adapter(lambda request: httpx.Response(status_code, json={"error": "x"}))

        with pytest.raises(BackendError) as exc_info:
            await adapter.invoke("Explain", GenerationOptions())

        error = exc_info.value
        assert error.backend == BACKEND_ID
        assert error.status_kind == kind
        assert error.retryable is retryable
        assert error.status_code == status_code

    @pytest.mark.asyncio
    async def test_timeout_is_retryable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        with pytest.raises(BackendError) as exc_info:
            await _adapter(handler).invoke("Explain", GenerationOptions())

        assert exc_info.value.status_kind == StatusKind.TIMEOUT
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_connection_error_is_retryable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(BackendError) as exc_info:
            await _adapter(handler).invoke("Explain", GenerationOptions())

        assert exc_info.value.status_kind == StatusKind.UNAVAILABLE
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_non_json_body_is_fatal(self) -> None:
        adapter = _adapter(lambda request: httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(FatalBackendError):
            await adapter.invoke("Explain", GenerationOptions())

    @pytest.mark.asyncio
    async def test_missing_output_is_fatal(self) -> None:
        adapter = _adapter(lambda request: httpx.Response(200, json={"usage": {}}))

        with pytest.raises(FatalBackendError, match="missing 'output'"):
            await adapter.invoke("Explain", GenerationOptions())

    @pytest.mark.asyncio
    async def test_invalid_cost_is_fatal(self) -> None:
        adapter = _adapter(
            lambda request: httpx.Response(200, json={"output": "x", "cost": "lots"})
        )

        with pytest.raises(FatalBackendError, match="invalid cost"):
            await adapter.invoke("Explain", GenerationOptions())


# =============================================================================
# Lifecycle
# =============================================================================


class TestHttpBackendAdapterLifecycle:
    @pytest.mark.asyncio
    async def test_injected_client_left_open(self) -> None:
        client = create_http_client(transport=httpx.MockTransport(_ok))
        adapter = HttpBackendAdapter(BACKEND_ID, client=client)

        await adapter.aclose()

        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_closed(self) -> None:
        adapter = HttpBackendAdapter(BACKEND_ID, base_url="http://titan-proxy")

        await adapter.aclose()

        assert adapter._client.is_closed
