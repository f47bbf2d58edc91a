"""
Providers Package - Model Backend Adapters

This package contains the abstract adapter interface and the adapters that
ship with the gateway. Vendor-specific adapters implement BackendAdapter
outside this package.

Reference Documents:
- GUIDELINES pp. 793-795: Repository pattern and ABC patterns
- GUIDELINES p. 953: @abstractmethod decorator usage
"""

from genai_gateway.providers.base import BackendAdapter
from genai_gateway.providers.fake import FakeBackend
from genai_gateway.providers.http import (
    HttpBackendAdapter,
    classify_status,
    create_http_client,
)

__all__ = [
    "BackendAdapter",
    "FakeBackend",
    "HttpBackendAdapter",
    "classify_status",
    "create_http_client",
]
