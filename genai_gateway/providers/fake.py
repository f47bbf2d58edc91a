"""
Fake Backend - Test Double Implementation

This module provides a FakeBackend that implements the real BackendAdapter
interface without making network calls. This follows the FakeRepository
pattern from GUIDELINES p. 157.

Pattern: Test Doubles using duck typing (GUIDELINES pp. 157)
"Python's duck typing enables test doubles without complex mocking frameworks"

This is NOT mocking - it's a proper implementation of the interface for testing.
The FakeBackend can also be used for:
- Local development without backend credentials
- Demo/sandbox environments

Scripting:
    A FakeBackend can be given a script: a list of outcomes consumed one per
    call. An outcome is either an exception (raised) or a BackendResponse
    (returned). When the script runs out, the default behavior applies:
    raise `error` if set, otherwise answer with `response_text`.
"""

import asyncio
from decimal import Decimal
from typing import Optional, Sequence, Union

from genai_gateway.models.domain import BackendResponse, GenerationOptions
from genai_gateway.providers.base import BackendAdapter

Outcome = Union[BackendResponse, BaseException]


class FakeBackend(BackendAdapter):
    """
    Fake model backend for testing and local development.

    Attributes:
        backend_id: Backend identifier
        response_text: Text returned when nothing else is scripted
        cost: Cost reported with default responses (None leaves pricing to
            the router)
        error: Exception raised on every unscripted call
        delay: Seconds to sleep before answering
        calls: (prompt, options) of every invocation, for assertions

    Example:
        >>> backend = FakeBackend("claude", response_text="hello")
        >>> (await backend.invoke("hi", GenerationOptions())).payload
        'hello'

        # Fail twice with a retryable error, then succeed:
        >>> backend = FakeBackend(
        ...     "titan",
        ...     script=[RetryableBackendError("busy", "titan")] * 2,
        ... )
    """

    def __init__(
        self,
        backend_id: str = "fake",
        response_text: str = "Fake response for testing",
        cost: Optional[Decimal] = None,
        error: Optional[BaseException] = None,
        script: Optional[Sequence[Outcome]] = None,
        delay: float = 0.0,
    ) -> None:
        self.backend_id = backend_id
        self.response_text = response_text
        self.cost = Decimal(cost) if cost is not None else None
        self.error = error
        self.delay = delay
        self._script: list[Outcome] = list(script or [])

        # Track calls for test assertions
        self.calls: list[tuple[str, GenerationOptions]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def queue(self, *outcomes: Outcome) -> None:
        """Append outcomes to the script."""
        self._script.extend(outcomes)

    async def invoke(
        self, prompt: str, options: GenerationOptions
    ) -> BackendResponse:
        self.calls.append((prompt, options))

        if self.delay:
            await asyncio.sleep(self.delay)

        if self._script:
            outcome = self._script.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome

        if self.error is not None:
            raise self.error

        return BackendResponse(
            payload=self.response_text,
            tokens_in=len(prompt.split()) * 2,
            tokens_out=len(self.response_text.split()) * 2,
            cost=self.cost,
        )
