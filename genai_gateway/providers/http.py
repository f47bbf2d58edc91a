"""
HTTP Backend Adapter

A generic adapter for model backends reachable over HTTP with a JSON body.
It posts the prompt and options, reads the payload and usage back, and
turns every failure into a classified BackendError so the retry policy can
tell transient trouble from a bad request.

Status classification:
    408, 504            -> timeout (retryable)
    429                 -> rate_limited (retryable)
    500, 502, 503, 5xx  -> server_error / unavailable (retryable)
    400, 404, 413, 422  -> validation (fatal)
    401                 -> authentication (fatal)
    403                 -> authorization (fatal)
    httpx timeouts      -> timeout (retryable)
    httpx transport     -> unavailable (retryable)

Reference Documents:
- GUIDELINES pp. 2309: Connection pooling per downstream service (Newman)
- GUIDELINES pp. 2319: Timeout configuration and logging

Pattern: Factory pattern for creating configured HTTP clients
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from genai_gateway.core.exceptions import (
    BackendError,
    FatalBackendError,
    RetryableBackendError,
    StatusKind,
)
from genai_gateway.models.domain import BackendResponse, GenerationOptions
from genai_gateway.observability.logging import get_correlation_id, get_logger
from genai_gateway.providers.base import BackendAdapter

logger = get_logger(__name__)


# =============================================================================
# Default Configuration Constants
# Pattern: Connection pooling per downstream service (GUIDELINES pp. 2309)
# =============================================================================


DEFAULT_TIMEOUT_SECONDS: float = 30.0
DEFAULT_MAX_CONNECTIONS: int = 100
DEFAULT_MAX_KEEPALIVE: int = 20
DEFAULT_GENERATE_PATH = "/v1/generate"
CORRELATION_HEADER = "X-Correlation-ID"


def create_http_client(
    base_url: Optional[str] = None,
    timeout_seconds: Optional[float] = None,
    max_connections: Optional[int] = None,
    max_keepalive: Optional[int] = None,
    headers: Optional[dict[str, str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create a configured HTTP client with connection pooling and timeouts.

    Connection-level retries are left to the gateway's retry policy, so the
    default transport does not retry on its own.

    Args:
        base_url: Base URL for all requests
        timeout_seconds: Request timeout in seconds (default: 30.0)
        max_connections: Maximum connections in pool (default: 100)
        max_keepalive: Maximum keepalive connections (default: 20)
        headers: Additional headers to include in all requests
        transport: Custom transport (httpx.MockTransport in tests)

    Returns:
        httpx.AsyncClient: Configured async HTTP client
    """
    timeout = timeout_seconds if timeout_seconds is not None else DEFAULT_TIMEOUT_SECONDS
    max_conn = max_connections if max_connections is not None else DEFAULT_MAX_CONNECTIONS
    max_keep = max_keepalive if max_keepalive is not None else DEFAULT_MAX_KEEPALIVE

    # Pattern: Bulkhead - separate pools prevent resource exhaustion
    limits = httpx.Limits(
        max_connections=max_conn,
        max_keepalive_connections=max_keep,
    )

    default_headers = {
        "User-Agent": "genai-gateway/1.0",
        "Accept": "application/json",
    }
    if headers:
        default_headers.update(headers)

    if transport is None:
        transport = httpx.AsyncHTTPTransport(limits=limits)

    return httpx.AsyncClient(
        base_url=base_url or "",
        timeout=httpx.Timeout(timeout),
        headers=default_headers,
        transport=transport,
    )


def classify_status(status_code: int) -> StatusKind:
    """Map an HTTP error status to a failure kind."""
    if status_code in (408, 504):
        return StatusKind.TIMEOUT
    if status_code == 429:
        return StatusKind.RATE_LIMITED
    if status_code == 503:
        return StatusKind.UNAVAILABLE
    if status_code >= 500:
        return StatusKind.SERVER_ERROR
    if status_code == 401:
        return StatusKind.AUTHENTICATION
    if status_code == 403:
        return StatusKind.AUTHORIZATION
    if status_code in (400, 404, 413, 422):
        return StatusKind.VALIDATION
    return StatusKind.UNKNOWN


# =============================================================================
# HttpBackendAdapter
# =============================================================================


class HttpBackendAdapter(BackendAdapter):
    """
    Adapter for a JSON-over-HTTP model endpoint.

    Request body:
        {"model": backend_id, "prompt": ..., "options": {...}}

    Expected response body:
        {"output": ..., "usage": {"input_tokens": n, "output_tokens": m},
         "cost": "0.0012"}   # cost optional

    Example:
        >>> adapter = HttpBackendAdapter(
        ...     "amazon.titan-text-express-v1",
        ...     base_url="http://titan-proxy:8080",
        ... )
        >>> response = await adapter.invoke("Summarize...", GenerationOptions())
    """

    def __init__(
        self,
        backend_id: str,
        base_url: Optional[str] = None,
        path: str = DEFAULT_GENERATE_PATH,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        headers: Optional[dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.backend_id = backend_id
        self._path = path
        self._owns_client = client is None
        self._client = client or create_http_client(
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            headers=headers,
        )

    def _build_body(self, prompt: str, options: GenerationOptions) -> dict[str, Any]:
        return {
            "model": self.backend_id,
            "prompt": prompt,
            "options": options.to_dict(),
        }

    def _parse_response(self, data: Any) -> BackendResponse:
        if not isinstance(data, dict) or "output" not in data:
            raise FatalBackendError(
                "Backend response is missing 'output'",
                self.backend_id,
                status_kind=StatusKind.UNKNOWN,
            )

        usage = data.get("usage") or {}
        raw_cost = data.get("cost")
        try:
            cost = Decimal(str(raw_cost)) if raw_cost is not None else None
        except InvalidOperation as e:
            raise FatalBackendError(
                f"Backend reported an invalid cost: {data.get('cost')!r}",
                self.backend_id,
                status_kind=StatusKind.UNKNOWN,
            ) from e

        return BackendResponse(
            payload=data["output"],
            tokens_in=int(usage.get("input_tokens", 0)),
            tokens_out=int(usage.get("output_tokens", 0)),
            cost=cost,
        )

    async def invoke(
        self, prompt: str, options: GenerationOptions
    ) -> BackendResponse:
        headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            headers[CORRELATION_HEADER] = correlation_id

        try:
            response = await self._client.post(
                self._path,
                json=self._build_body(prompt, options),
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise RetryableBackendError(
                f"Request timed out: {e}",
                self.backend_id,
                status_kind=StatusKind.TIMEOUT,
            ) from e
        except httpx.TransportError as e:
            raise RetryableBackendError(
                f"Transport error: {e}",
                self.backend_id,
                status_kind=StatusKind.UNAVAILABLE,
            ) from e

        if response.is_error:
            status_kind = classify_status(response.status_code)
            logger.debug(
                "backend returned error status",
                backend=self.backend_id,
                status_code=response.status_code,
                status_kind=status_kind.value,
            )
            raise BackendError(
                f"HTTP {response.status_code} from {self.backend_id}",
                self.backend_id,
                status_kind=status_kind,
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise FatalBackendError(
                "Backend returned a non-JSON body",
                self.backend_id,
                status_kind=StatusKind.UNKNOWN,
                status_code=response.status_code,
            ) from e

        return self._parse_response(data)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
