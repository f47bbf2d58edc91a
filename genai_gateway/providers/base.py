"""
Backend Adapter Interface

This module defines the abstract base class for model backend adapters.
The gateway treats an adapter as a black box: it takes a prompt and options
and either returns a BackendResponse or raises a BackendError classified as
retryable or fatal. How the adapter talks to its model is its own business.

Design Pattern:
- Ports and Adapters (Hexagonal Architecture)
- BackendAdapter serves as the "port" (interface)
- HttpBackendAdapter and FakeBackend serve as "adapters"

Reference: GUIDELINES pp. 793-795:
"The repository pattern's ports-and-adapters architecture maps naturally to
Python's protocol-oriented design, where AbstractRepository serves as the port
and SqlAlchemyRepository or FakeRepository serve as adapters."
"""

from abc import ABC, abstractmethod

from genai_gateway.models.domain import BackendResponse, GenerationOptions


class BackendAdapter(ABC):
    """
    Abstract base class for model backend adapters.

    Pattern: ABC for interface contracts (GUIDELINES pp. 793-795)

    Attributes:
        backend_id: Identifier the fallback chains refer to
            (e.g., "anthropic.claude-3-sonnet-20240229-v1:0")

    Example:
        >>> class TitanAdapter(BackendAdapter):
        ...     backend_id = "amazon.titan-text-express-v1"
        ...
        ...     async def invoke(self, prompt, options):
        ...         ...
        ...         return BackendResponse(payload=text, tokens_in=12, tokens_out=80)
    """

    backend_id: str

    @abstractmethod
    async def invoke(
        self, prompt: str, options: GenerationOptions
    ) -> BackendResponse:
        """
        Run one generation against the backend.

        Args:
            prompt: Prompt text
            options: Generation options

        Returns:
            BackendResponse with payload, token counts and cost
            (cost 0 asks the gateway to price the usage itself)

        Raises:
            BackendError: Classified failure. RetryableBackendError for
                timeouts, throttling and server errors; FatalBackendError
                for malformed requests and credential problems.
        """
        ...

    async def aclose(self) -> None:
        """Release any resources held by the adapter."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(backend_id={self.backend_id!r})"
