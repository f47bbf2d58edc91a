"""
Generation Gateway Service - Facade over the resilience and governance layer.

Callers ask for generation by logical intent or with an explicit backend
selection. The gateway hands every request to the fallback router and adds
the caller-facing conveniences: timeouts, batches and operational
accessors.

Reference Documents:
- ARCHITECTURE.md: Service layer patterns
- GUIDELINES: Async patterns, dependency injection

Pattern: Facade + Factory (from_settings wires the shared components)
"""

import asyncio
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from genai_gateway.core.config import DEFAULT_INTENT_OPERATIONS, Settings, get_settings
from genai_gateway.core.exceptions import GatewayTimeoutError, GatewayValidationError
from genai_gateway.models.domain import (
    BackendSelector,
    BatchItem,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
)
from genai_gateway.observability.events import EventSink, LoggingEventSink
from genai_gateway.observability.logging import configure_logging, get_logger
from genai_gateway.observability.tracing import setup_tracing
from genai_gateway.providers.base import BackendAdapter
from genai_gateway.resilience.circuit_breaker_state_machine import CircuitBreakerRegistry
from genai_gateway.resilience.fallback_router import FallbackRouter
from genai_gateway.resilience.retry import RetryPolicy
from genai_gateway.services.cache import CacheStats, ResponseCache
from genai_gateway.services.cost_ledger import (
    CostLedger,
    LedgerStore,
    RemainingBudget,
    UsageSummary,
)
from genai_gateway.services.moderation import ModerationGate, Moderator

logger = get_logger(__name__)

DEFAULT_BATCH_CONCURRENCY = 10


def _configure_observability(settings: Settings) -> None:
    configure_logging(level=settings.log_level, force=True)
    if settings.tracing_enabled or settings.otlp_endpoint:
        setup_tracing(
            service_name=settings.service_name,
            otlp_endpoint=settings.otlp_endpoint,
            environment=settings.environment,
        )
    logger.info(
        "gateway observability configured",
        service=settings.service_name,
        environment=settings.environment,
        log_level=settings.log_level,
    )


class GenerationGateway:
    """
    Entry point for generation requests.

    Example:
        >>> gateway = GenerationGateway.from_settings(
        ...     get_settings(),
        ...     adapters=[claude_adapter, haiku_adapter, titan_adapter],
        ... )
        >>> async with gateway:
        ...     result = await gateway.generate_for("conversation", "Explain gravity")
        ...     print(result.payload, result.cost)
    """

    def __init__(
        self,
        router: FallbackRouter,
        monitor_interval_seconds: float = 0.0,
        batch_max_concurrency: int = DEFAULT_BATCH_CONCURRENCY,
        intent_operations: Optional[Mapping[str, str]] = None,
    ) -> None:
        if batch_max_concurrency < 1:
            raise GatewayValidationError(
                "batch_max_concurrency must be >= 1",
                field="batch_max_concurrency",
                value=batch_max_concurrency,
            )
        self._router = router
        self._monitor_interval_seconds = monitor_interval_seconds
        self._batch_max_concurrency = batch_max_concurrency
        self._intent_operations = dict(
            intent_operations if intent_operations is not None else DEFAULT_INTENT_OPERATIONS
        )
        self._background: set[asyncio.Task[GenerationResult]] = set()

    # =========================================================================
    # Factory
    # =========================================================================

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        adapters: Union[Iterable[BackendAdapter], Mapping[str, BackendAdapter]] = (),
        moderator: Optional[Moderator] = None,
        event_sink: Optional[EventSink] = None,
        ledger_store: Optional[LedgerStore] = None,
        configure_observability: bool = True,
    ) -> "GenerationGateway":
        """
        Wire every component from settings.

        Args:
            settings: Gateway settings (defaults to get_settings())
            adapters: Backend adapters, as a list or keyed by backend id
            moderator: Moderation strategy (defaults to RuleBasedModerator)
            event_sink: Observability sink (defaults to LoggingEventSink)
            ledger_store: Ledger persistence (defaults to Redis if redis_url
                is set, otherwise in memory)
            configure_observability: Apply log_level to structlog and, when
                tracing_enabled or otlp_endpoint is set, install the
                TracerProvider. Pass False when the host application owns
                logging and tracing.
        """
        settings = settings or get_settings()
        if configure_observability:
            _configure_observability(settings)
        sink = event_sink or LoggingEventSink()

        if isinstance(adapters, Mapping):
            adapter_map = dict(adapters)
        else:
            adapter_map = {adapter.backend_id: adapter for adapter in adapters}

        router = FallbackRouter(
            adapters=adapter_map,
            breakers=CircuitBreakerRegistry.from_settings(settings, event_sink=sink),
            retry_policy=RetryPolicy.from_settings(settings, event_sink=sink),
            ledger=CostLedger.from_settings(settings, store=ledger_store, event_sink=sink),
            cache=ResponseCache.from_settings(settings, event_sink=sink),
            moderation_gate=(
                ModerationGate.from_settings(settings, moderator=moderator, event_sink=sink)
                if settings.moderation_enabled
                else None
            ),
            fallback_chains=settings.fallback_chains,
            event_sink=sink,
        )
        return cls(
            router,
            monitor_interval_seconds=settings.circuit_breaker_monitor_interval_seconds,
            batch_max_concurrency=settings.batch_max_concurrency,
            intent_operations=settings.intent_operations,
        )

    @property
    def router(self) -> FallbackRouter:
        return self._router

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start the circuit recovery monitor if an interval is configured."""
        if self._monitor_interval_seconds > 0:
            self._router.breakers.start_monitoring(self._monitor_interval_seconds)

    async def aclose(self) -> None:
        """Stop monitoring, let abandoned generations finish, close adapters."""
        await self._router.breakers.stop_monitoring()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self._router.drain()
        for adapter in self._router.adapters.values():
            await adapter.aclose()

    async def __aenter__(self) -> "GenerationGateway":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # =========================================================================
    # Generation
    # =========================================================================

    async def generate(
        self,
        request: GenerationRequest,
        timeout: Optional[float] = None,
    ) -> GenerationResult:
        """
        Generate for one request.

        With a timeout the caller stops waiting when it elapses, but the
        generation itself runs to completion in the background so the
        ledger and circuit breakers still see its outcome.
        The same holds when the caller is cancelled while waiting.

        Raises:
            CostLimitExceededError: Spend limit would be crossed
            ContentPolicyViolationError: Output rejected by moderation
            AggregateModelFailureError: Every backend in the chain failed
            ModerationUnavailableError: The moderator failed, output withheld
            LedgerUnavailableError: The ledger store could not be reached
            GatewayTimeoutError: The timeout elapsed first
        """
        if timeout is None:
            return await self._router.generate(request)

        if timeout <= 0:
            raise GatewayValidationError(
                "timeout must be > 0", field="timeout", value=timeout
            )

        task = asyncio.ensure_future(self._router.generate(request))
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except asyncio.TimeoutError as e:
            self._track(task)
            logger.warning(
                "generation timed out for caller, continuing in background",
                timeout_seconds=timeout,
            )
            raise GatewayTimeoutError(timeout) from e
        except asyncio.CancelledError:
            self._track(task)
            raise

    def _track(self, task: "asyncio.Task[GenerationResult]") -> None:
        self._background.add(task)
        task.add_done_callback(self._on_abandoned_done)

    def _on_abandoned_done(self, task: "asyncio.Task[GenerationResult]") -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.info(
                "abandoned generation failed",
                error_type=type(error).__name__,
                error=str(error),
            )

    async def generate_for(
        self,
        intent: str,
        prompt: str,
        options: Optional[Union[GenerationOptions, Mapping[str, Any]]] = None,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> GenerationResult:
        """
        Generate using the configured fallback chain for a logical intent.

        Args:
            intent: "conversation", "text", "summarization", "image" or "embedding"
            prompt: Prompt text
            options: GenerationOptions or a dict of option values
            timeout: Optional caller timeout in seconds
            **kwargs: Other GenerationRequest fields (user_id, moderate,
                use_cache, request_id, operation)

        Raises:
            GatewayValidationError: Unknown intent or malformed request
        """
        request = self.build_request(intent, prompt, options, **kwargs)
        return await self.generate(request, timeout=timeout)

    def build_request(
        self,
        intent: str,
        prompt: str,
        options: Optional[Union[GenerationOptions, Mapping[str, Any]]] = None,
        **kwargs: Any,
    ) -> GenerationRequest:
        """Build a GenerationRequest for an intent's configured chain."""
        chain = self._router.resolve_chain(intent)
        kwargs.setdefault(
            "operation", self._intent_operations.get(intent, "text_generation")
        )

        try:
            if options is not None and not isinstance(options, GenerationOptions):
                options = GenerationOptions(**options)
            return GenerationRequest(
                prompt=prompt,
                backend=BackendSelector(primary=chain[0], fallbacks=chain[1:]),
                options=options or GenerationOptions(),
                **kwargs,
            )
        except ValidationError as e:
            raise GatewayValidationError(
                f"Invalid generation request: {e.errors()[0]['msg']}",
                field=str(e.errors()[0]["loc"][0]) if e.errors()[0]["loc"] else None,
            ) from e

    async def batch_generate(
        self, requests: Sequence[GenerationRequest]
    ) -> list[GenerationResult]:
        """
        Run requests concurrently and return the successes in input order.

        Failed requests are logged and left out; nothing is raised.
        """
        items = await self.batch_generate_detailed(requests)
        return [item.result for item in items if item.result is not None]

    async def batch_generate_detailed(
        self, requests: Sequence[GenerationRequest]
    ) -> list[BatchItem]:
        """
        Run requests concurrently and report each slot's result or error.

        At most batch_max_concurrency requests are in flight at once.
        """
        semaphore = asyncio.Semaphore(self._batch_max_concurrency)

        async def run(request: GenerationRequest) -> GenerationResult:
            async with semaphore:
                return await self._router.generate(request)

        outcomes = await asyncio.gather(
            *(run(request) for request in requests),
            return_exceptions=True,
        )

        items: list[BatchItem] = []
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, Exception):
                logger.warning(
                    "batch item failed",
                    index=index,
                    error_type=type(outcome).__name__,
                    error=str(outcome),
                )
                items.append(BatchItem(index=index, error=outcome))
            else:
                items.append(BatchItem(index=index, result=outcome))

        succeeded = sum(1 for item in items if item.ok)
        logger.info(
            "batch generation complete",
            total=len(items),
            succeeded=succeeded,
            failed=len(items) - succeeded,
        )
        return items

    # =========================================================================
    # Operational Accessors
    # =========================================================================

    async def remaining_budget(self) -> RemainingBudget:
        return await self._router.ledger.remaining_budget()

    async def usage_summary(self) -> UsageSummary:
        return await self._router.ledger.usage_summary()

    def cache_stats(self) -> Optional[CacheStats]:
        cache = self._router.cache
        return cache.stats() if cache is not None else None

    async def clear_cache(self) -> int:
        cache = self._router.cache
        return await cache.clear() if cache is not None else 0

    def circuit_states(self) -> dict[str, str]:
        return self._router.breakers.states()
