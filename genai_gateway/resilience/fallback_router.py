"""
Fallback Router

This module runs one generation request across an ordered chain of model
backends, each protected by its own circuit breaker and retry policy, with
the shared cost ledger, response cache and moderation gate around it.

Reference Documents:
- Building Reactive Microservices in Java (Escoffier) Ch.6: Fallback pattern
- Release It! (Nygard): Stability patterns

Pattern: Fallback chain with per-backend circuit breakers

Request flow:
    1. Cache lookup (hit returns immediately, nothing is charged)
    2. Cost estimate and reservation (rejection contacts no backend)
    3. For each backend in order:
         not registered  -> not_configured, next
         circuit open    -> circuit_open, next (no retry budget spent)
         fatal error     -> fatal, next (no delay)
         retries used up -> retries_exhausted, next
         success         -> commit actual cost (shielded from cancellation), stop
    4. Moderation of the generated text (rejection is not refunded,
       a failing moderator withholds the output)
    5. Cache write and result

The chain loop works on explicit outcome values (RetryOutcome,
AttemptRecord); exceptions only leave the router as the caller-facing
policy errors.
"""

import asyncio
import uuid
from decimal import Decimal
from functools import partial
from typing import Mapping, Optional

from genai_gateway.core.exceptions import (
    AggregateModelFailureError,
    CircuitOpenError,
    GatewayValidationError,
)
from genai_gateway.models.domain import (
    AttemptOutcome,
    AttemptRecord,
    BackendResponse,
    GenerationRequest,
    GenerationResult,
    ModerationResult,
)
from genai_gateway.observability.events import EventSink, GatewayEvent, LoggingEventSink
from genai_gateway.observability.logging import correlation_id_context, get_logger
from genai_gateway.observability.metrics import record_aggregate_failure
from genai_gateway.observability.tracing import create_span, mark_span_error, mark_span_ok
from genai_gateway.providers.base import BackendAdapter
from genai_gateway.resilience.circuit_breaker_state_machine import CircuitBreakerRegistry
from genai_gateway.resilience.metrics import record_fallback_attempt, record_fallback_success
from genai_gateway.resilience.retry import RetryPolicy
from genai_gateway.services.cache import ResponseCache
from genai_gateway.services.cost_ledger import CostLedger, Reservation
from genai_gateway.services.moderation import ModerationGate
from genai_gateway.services.pricing import PricingTable

logger = get_logger(__name__)


class FallbackRouter:
    """
    Routes a request through its backend chain.

    All collaborators are injected and shared by reference across requests:
    one breaker registry, one ledger and one cache per process.

    Example:
        >>> router = FallbackRouter(
        ...     adapters={a.backend_id: a for a in adapters},
        ...     breakers=CircuitBreakerRegistry(),
        ...     retry_policy=RetryPolicy(),
        ...     ledger=CostLedger(Decimal("100"), Decimal("2000")),
        ...     cache=ResponseCache(),
        ... )
        >>> result = await router.generate(request)
    """

    def __init__(
        self,
        adapters: Mapping[str, BackendAdapter],
        breakers: CircuitBreakerRegistry,
        retry_policy: RetryPolicy,
        ledger: CostLedger,
        cache: Optional[ResponseCache] = None,
        moderation_gate: Optional[ModerationGate] = None,
        pricing: Optional[PricingTable] = None,
        fallback_chains: Optional[Mapping[str, list[str]]] = None,
        event_sink: Optional[EventSink] = None,
    ) -> None:
        self._adapters: dict[str, BackendAdapter] = dict(adapters)
        self._breakers = breakers
        self._retry_policy = retry_policy
        self._ledger = ledger
        self._cache = cache
        self._moderation_gate = moderation_gate
        self._pricing = pricing or PricingTable()
        self._fallback_chains = {k: list(v) for k, v in (fallback_chains or {}).items()}
        self._event_sink = event_sink or LoggingEventSink()
        self._commits: set[asyncio.Future[Decimal]] = set()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def adapters(self) -> dict[str, BackendAdapter]:
        return dict(self._adapters)

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    @property
    def ledger(self) -> CostLedger:
        return self._ledger

    @property
    def cache(self) -> Optional[ResponseCache]:
        return self._cache

    @property
    def pricing(self) -> PricingTable:
        return self._pricing

    async def drain(self) -> None:
        """Wait for cost commits still running after their request was cancelled."""
        if self._commits:
            await asyncio.gather(*self._commits, return_exceptions=True)

    def register_adapter(self, adapter: BackendAdapter) -> None:
        """Add or replace the adapter for adapter.backend_id."""
        self._adapters[adapter.backend_id] = adapter

    def resolve_chain(self, intent: str) -> list[str]:
        """
        Ordered backend ids configured for a logical intent.

        Raises:
            GatewayValidationError: If no chain is configured for the intent
        """
        chain = self._fallback_chains.get(intent)
        if not chain:
            raise GatewayValidationError(
                f"No fallback chain configured for intent '{intent}'",
                field="intent",
                value=intent,
            )
        return list(chain)

    # =========================================================================
    # Generation
    # =========================================================================

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """
        Run a request through cache, ledger, backend chain and moderation.

        Raises:
            CostLimitExceededError: Spend limit would be crossed
            ContentPolicyViolationError: Output rejected by moderation
            ModerationUnavailableError: Moderator failed, output withheld
            AggregateModelFailureError: Every backend in the chain failed
            LedgerUnavailableError: Ledger store could not be read or written
        """
        correlation_id = request.request_id or uuid.uuid4().hex

        with correlation_id_context(correlation_id), create_span(
            "gateway.generate",
            {
                "gateway.correlation_id": correlation_id,
                "gateway.operation": request.operation,
                "gateway.primary_backend": request.backend.primary,
                "gateway.user_id": request.user_id,
            },
        ):
            return await self._generate(request, correlation_id)

    async def _generate(
        self, request: GenerationRequest, correlation_id: str
    ) -> GenerationResult:
        fingerprint = request.fingerprint

        if request.use_cache and self._cache is not None:
            cached = await self._cache.get(fingerprint)
            if cached is not None:
                logger.info("served from cache", backend=cached.backend_used)
                return cached.model_copy(
                    update={"cached": True, "correlation_id": correlation_id}
                )

        estimate = self._pricing.estimate_cost(
            request.backend.primary,
            request.prompt,
            request.options,
            request.operation,
        )
        reservation = await self._ledger.check_and_reserve(estimate)

        attempts: list[AttemptRecord] = []
        try:
            succeeded = await self._run_chain(request, attempts)
        except BaseException:
            await self._ledger.release(reservation)
            raise

        if succeeded is None:
            await self._ledger.release(reservation)
            raise self._aggregate_failure(request, attempts)

        backend_id, response = succeeded
        # The backend has been paid: the commit finishes even if this task
        # is cancelled while waiting on the ledger.
        commit = asyncio.ensure_future(
            self._commit(request, backend_id, response, reservation)
        )
        self._commits.add(commit)
        commit.add_done_callback(self._on_commit_done)
        cost = await asyncio.shield(commit)

        moderation: Optional[ModerationResult] = None
        if (
            request.moderate
            and self._moderation_gate is not None
            and isinstance(response.payload, str)
        ):
            moderation = await self._moderation_gate.check(
                response.payload, backend=backend_id, cost=cost
            )

        result = GenerationResult(
            payload=response.payload,
            backend_used=backend_id,
            correlation_id=correlation_id,
            tokens_in=response.tokens_in,
            tokens_out=response.tokens_out,
            cost=cost,
            cached=False,
            moderation=moderation,
            attempts=attempts,
        )

        if request.use_cache and self._cache is not None:
            await self._cache.put(fingerprint, result)

        return result

    async def _run_chain(
        self,
        request: GenerationRequest,
        attempts: list[AttemptRecord],
    ) -> Optional[tuple[str, BackendResponse]]:
        """Try each backend in order. Appends one record per backend tried."""
        for backend_id in request.backend.chain:
            adapter = self._adapters.get(backend_id)
            if adapter is None:
                attempts.append(
                    AttemptRecord(
                        backend=backend_id,
                        outcome=AttemptOutcome.NOT_CONFIGURED,
                        error=f"No adapter registered for '{backend_id}'",
                    )
                )
                continue

            breaker = self._breakers.get(backend_id)
            try:
                await breaker.acquire()
            except CircuitOpenError as e:
                logger.info("skipping backend, circuit open", backend=backend_id)
                attempts.append(
                    AttemptRecord(
                        backend=backend_id,
                        outcome=AttemptOutcome.CIRCUIT_OPEN,
                        error=e.message,
                    )
                )
                continue

            record_fallback_attempt(backend_id, request.operation)
            with create_span(
                "gateway.backend_attempt",
                {"gateway.backend": backend_id, "gateway.operation": request.operation},
            ) as span:
                outcome = await self._retry_policy.execute(
                    partial(adapter.invoke, request.prompt, request.options),
                    backend=backend_id,
                )

                if outcome.succeeded:
                    await breaker.record_success()
                    record_fallback_success(backend_id)
                    mark_span_ok(span)
                    self._event_sink.emit(
                        GatewayEvent.BACKEND_ATTEMPT_SUCCESS,
                        backend=backend_id,
                        attempts=outcome.attempts,
                    )
                    attempts.append(
                        AttemptRecord(
                            backend=backend_id,
                            outcome=AttemptOutcome.SUCCESS,
                            attempts=outcome.attempts,
                        )
                    )
                    return backend_id, outcome.result

                await breaker.record_failure()
                mark_span_error(span, str(outcome.error))
                record = AttemptRecord(
                    backend=backend_id,
                    outcome=(
                        AttemptOutcome.RETRIES_EXHAUSTED
                        if outcome.retryable
                        else AttemptOutcome.FATAL
                    ),
                    attempts=outcome.attempts,
                    error=str(outcome.error),
                    status_kind=outcome.status_kind.value if outcome.status_kind else None,
                )
                logger.warning(
                    "backend failed, falling back",
                    backend=backend_id,
                    outcome=record.outcome.value,
                    attempts=record.attempts,
                    error=record.error,
                )
                attempts.append(record)

        return None

    async def _commit(
        self,
        request: GenerationRequest,
        backend_id: str,
        response: BackendResponse,
        reservation: Reservation,
    ) -> Decimal:
        cost = response.cost
        if cost is None:
            cost = self._pricing.calculate_cost(
                backend_id,
                tokens_in=response.tokens_in,
                tokens_out=response.tokens_out,
                image_count=request.options.image_count or 1,
                operation=request.operation,
            )
        await self._ledger.commit(
            cost,
            reservation,
            backend=backend_id,
            operation=request.operation,
            tokens_in=response.tokens_in,
            tokens_out=response.tokens_out,
            user_id=request.user_id,
        )
        return cost

    def _on_commit_done(self, commit: "asyncio.Future[Decimal]") -> None:
        self._commits.discard(commit)
        if commit.cancelled():
            return
        error = commit.exception()
        if error is not None:
            logger.error(
                "cost commit failed",
                error_type=type(error).__name__,
                error=str(error),
            )

    def _aggregate_failure(
        self, request: GenerationRequest, attempts: list[AttemptRecord]
    ) -> AggregateModelFailureError:
        record_aggregate_failure()
        self._event_sink.emit(
            GatewayEvent.AGGREGATE_FAILURE,
            chain=request.backend.chain,
            attempts=[a.model_dump(mode="json") for a in attempts],
        )
        return AggregateModelFailureError(attempts)
