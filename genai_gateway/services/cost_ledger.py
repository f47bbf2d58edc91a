"""
Cost Ledger Service - Shared spend accounting with daily and monthly limits.

Every generation that reaches a backend passes through the ledger twice:

1. check_and_reserve(estimate) before any backend is contacted. The request
   is rejected with CostLimitExceededError if committed spend, plus the
   estimates of requests still in flight, plus this estimate would cross
   a limit. Otherwise the estimate is held as a pending reservation.
2. commit(actual_cost, reservation) once a backend succeeds, or
   release(reservation) when the whole chain failed.

Periods roll over lazily at UTC midnight and on the first of the month,
checked before every read or write.

Store failures surface as LedgerUnavailableError. Before a backend is
contacted that rejects the request.

Pattern: Repository pattern (LedgerStore) with Redis storage
Reference: ARCHITECTURE.md service layer patterns
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field
from redis.asyncio import Redis

from genai_gateway.core.config import Settings
from genai_gateway.core.exceptions import (
    CostLimitExceededError,
    GatewayValidationError,
    LedgerUnavailableError,
)
from genai_gateway.observability.events import EventSink, GatewayEvent
from genai_gateway.observability.logging import get_logger
from genai_gateway.observability.metrics import (
    record_cost_limit_rejection,
    record_cost_warning,
    record_request_cost,
    record_token_usage,
    set_ledger_spend,
)

logger = get_logger(__name__)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")

DAILY = "daily"
MONTHLY = "monthly"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def next_day_boundary(now: datetime) -> datetime:
    """UTC midnight following `now`."""
    midnight = now.astimezone(timezone.utc).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    return midnight + timedelta(days=1)


def next_month_boundary(now: datetime) -> datetime:
    """First instant of the UTC month following `now`."""
    now = now.astimezone(timezone.utc)
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)


# =============================================================================
# Models
# =============================================================================


class CostLedgerEntry(BaseModel):
    """
    Persistent state of the ledger.

    Attributes:
        daily_spend: Committed spend in the current UTC day
        monthly_spend: Committed spend in the current UTC month
        daily_reset_at: When the daily counter next resets
        monthly_reset_at: When the monthly counter next resets
        daily_warning_sent: Whether the daily warning fired this day
        monthly_warning_sent: Whether the monthly warning fired this month
    """

    daily_spend: Decimal = Field(default=_ZERO, ge=0)
    monthly_spend: Decimal = Field(default=_ZERO, ge=0)
    daily_reset_at: datetime
    monthly_reset_at: datetime
    daily_warning_sent: bool = False
    monthly_warning_sent: bool = False

    @classmethod
    def starting_at(cls, now: datetime) -> "CostLedgerEntry":
        """Empty entry whose periods begin at `now`."""
        return cls(
            daily_reset_at=next_day_boundary(now),
            monthly_reset_at=next_month_boundary(now),
        )


class RemainingBudget(BaseModel):
    """Budget left in each period, never negative."""

    daily: Decimal
    monthly: Decimal

    model_config = {"frozen": True}


class UsageBucket(BaseModel):
    """
    Accumulated usage for one backend or operation.

    Attributes:
        request_count: Committed generations
        tokens_in: Total input tokens
        tokens_out: Total output tokens
        total_cost: Total committed cost in USD
    """

    request_count: int = 0
    tokens_in: int = 0
    tokens_out: int = 0
    total_cost: Decimal = _ZERO


class UsageSummary(BaseModel):
    """Spend breakdown for this process, plus the current period totals."""

    daily_spend: Decimal
    monthly_spend: Decimal
    pending: Decimal
    by_backend: dict[str, UsageBucket] = Field(default_factory=dict)
    by_operation: dict[str, UsageBucket] = Field(default_factory=dict)


@dataclass(frozen=True)
class Reservation:
    """A pending hold on budget for one in-flight request."""

    amount: Decimal
    reservation_id: str = field(default_factory=lambda: uuid.uuid4().hex)


# =============================================================================
# Stores
# =============================================================================


class LedgerStore(ABC):
    """Where the ledger entry lives between operations."""

    @abstractmethod
    async def load(self) -> Optional[CostLedgerEntry]:
        """Return the stored entry, or None if nothing is stored yet."""

    @abstractmethod
    async def save(self, entry: CostLedgerEntry) -> None:
        """Persist the entry."""


class InMemoryLedgerStore(LedgerStore):
    """Keeps the entry in process memory. Spend is lost on restart."""

    def __init__(self) -> None:
        self._entry: Optional[CostLedgerEntry] = None

    async def load(self) -> Optional[CostLedgerEntry]:
        return self._entry.model_copy() if self._entry is not None else None

    async def save(self, entry: CostLedgerEntry) -> None:
        self._entry = entry.model_copy()


class RedisLedgerStore(LedgerStore):
    """
    Persists the entry to a Redis hash so restarts keep spend.

    Values are stored as strings: Decimals as their exact text,
    datetimes as ISO-8601, flags as "1"/"0".

    The ledger re-reads the hash on every operation, so several processes
    sharing a key see each other's spend. Saves replace the whole hash:
    two processes committing at the same instant are last-writer-wins, so
    a key should have one writing gateway and any number of readers.
    """

    DEFAULT_KEY = "genai_gateway:cost_ledger"

    def __init__(self, redis_client: Redis, key: str = DEFAULT_KEY) -> None:
        self._redis = redis_client
        self._key = key

    @classmethod
    def from_url(cls, url: str, key: str = DEFAULT_KEY) -> "RedisLedgerStore":
        return cls(Redis.from_url(url, decode_responses=True), key=key)

    @property
    def key(self) -> str:
        return self._key

    async def load(self) -> Optional[CostLedgerEntry]:
        raw: dict[Any, Any] = await self._redis.hgetall(self._key)
        if not raw:
            return None

        data = {_decode(k): _decode(v) for k, v in raw.items()}
        return CostLedgerEntry(
            daily_spend=Decimal(data["daily_spend"]),
            monthly_spend=Decimal(data["monthly_spend"]),
            daily_reset_at=datetime.fromisoformat(data["daily_reset_at"]),
            monthly_reset_at=datetime.fromisoformat(data["monthly_reset_at"]),
            daily_warning_sent=data.get("daily_warning_sent") == "1",
            monthly_warning_sent=data.get("monthly_warning_sent") == "1",
        )

    async def save(self, entry: CostLedgerEntry) -> None:
        await self._redis.hset(
            self._key,
            mapping={
                "daily_spend": str(entry.daily_spend),
                "monthly_spend": str(entry.monthly_spend),
                "daily_reset_at": entry.daily_reset_at.isoformat(),
                "monthly_reset_at": entry.monthly_reset_at.isoformat(),
                "daily_warning_sent": "1" if entry.daily_warning_sent else "0",
                "monthly_warning_sent": "1" if entry.monthly_warning_sent else "0",
            },
        )


def _decode(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


# =============================================================================
# CostLedger Service
# =============================================================================


class CostLedger:
    """
    Shared spend accounting enforcing daily and monthly limits.

    One instance is shared by every request in the process. All
    read-modify-write sequences run under an asyncio.Lock.

    Example:
        >>> ledger = CostLedger(daily_limit=Decimal("10"), monthly_limit=Decimal("200"))
        >>> reservation = await ledger.check_and_reserve(Decimal("0.02"))
        >>> await ledger.commit(Decimal("0.015"), reservation, backend="claude")
    """

    def __init__(
        self,
        daily_limit: Decimal,
        monthly_limit: Decimal,
        warning_threshold_percent: Decimal = Decimal("80"),
        store: Optional[LedgerStore] = None,
        clock: Callable[[], datetime] = utc_now,
        event_sink: Optional[EventSink] = None,
    ) -> None:
        daily_limit = Decimal(daily_limit)
        monthly_limit = Decimal(monthly_limit)
        warning_threshold_percent = Decimal(str(warning_threshold_percent))

        if daily_limit <= 0:
            raise GatewayValidationError(
                "daily_limit must be > 0", field="daily_limit", value=daily_limit
            )
        if monthly_limit <= 0:
            raise GatewayValidationError(
                "monthly_limit must be > 0", field="monthly_limit", value=monthly_limit
            )
        if not _ZERO <= warning_threshold_percent <= _HUNDRED:
            raise GatewayValidationError(
                "warning_threshold_percent must be between 0 and 100",
                field="warning_threshold_percent",
                value=warning_threshold_percent,
            )

        self._daily_limit = daily_limit
        self._monthly_limit = monthly_limit
        self._warning_threshold_percent = warning_threshold_percent
        self._store = store or InMemoryLedgerStore()
        self._clock = clock
        self._event_sink = event_sink

        self._lock = asyncio.Lock()
        self._entry: Optional[CostLedgerEntry] = None
        self._pending: dict[str, Decimal] = {}
        self._by_backend: dict[str, UsageBucket] = {}
        self._by_operation: dict[str, UsageBucket] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: Optional[LedgerStore] = None,
        event_sink: Optional[EventSink] = None,
    ) -> "CostLedger":
        """Build a ledger from settings, using Redis when redis_url is set."""
        if store is None and settings.redis_url:
            store = RedisLedgerStore.from_url(settings.redis_url)
        return cls(
            daily_limit=settings.daily_limit,
            monthly_limit=settings.monthly_limit,
            warning_threshold_percent=settings.warning_threshold_percent,
            store=store,
            event_sink=event_sink,
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def daily_limit(self) -> Decimal:
        return self._daily_limit

    @property
    def monthly_limit(self) -> Decimal:
        return self._monthly_limit

    @property
    def pending(self) -> Decimal:
        """Sum of estimates held by in-flight reservations."""
        return sum(self._pending.values(), _ZERO)

    # =========================================================================
    # Internals (caller must hold self._lock)
    # =========================================================================

    async def _read_store(self) -> Optional[CostLedgerEntry]:
        try:
            return await self._store.load()
        except Exception as e:
            logger.error(
                "cost ledger store load failed",
                error_type=type(e).__name__,
                error=str(e),
            )
            raise LedgerUnavailableError("load", str(e)) from e

    async def _write_store(self, entry: CostLedgerEntry) -> None:
        try:
            await self._store.save(entry)
        except Exception as e:
            logger.error(
                "cost ledger store save failed",
                error_type=type(e).__name__,
                error=str(e),
            )
            raise LedgerUnavailableError("save", str(e)) from e

    async def _load(self) -> CostLedgerEntry:
        """
        Re-read the entry from the store and apply any period rollover.

        Reading on every operation lets ledgers in other processes that
        share the store see each other's committed spend.
        """
        now = self._clock()
        stored = await self._read_store()
        if stored is not None:
            self._entry = stored
        elif self._entry is None:
            self._entry = CostLedgerEntry.starting_at(now)

        entry = self._entry
        rolled = False
        if now >= entry.daily_reset_at:
            entry.daily_spend = _ZERO
            entry.daily_reset_at = next_day_boundary(now)
            entry.daily_warning_sent = False
            rolled = True
        if now >= entry.monthly_reset_at:
            entry.monthly_spend = _ZERO
            entry.monthly_reset_at = next_month_boundary(now)
            entry.monthly_warning_sent = False
            rolled = True

        if rolled:
            logger.info(
                "cost ledger period rolled over",
                daily_reset_at=entry.daily_reset_at.isoformat(),
                monthly_reset_at=entry.monthly_reset_at.isoformat(),
            )
            await self._write_store(entry)
        return entry

    def _check_warnings(
        self,
        entry: CostLedgerEntry,
        projected_daily: Decimal,
        projected_monthly: Decimal,
    ) -> bool:
        """Emit each period's warning once. Returns True if a flag changed."""
        changed = False
        checks = (
            (DAILY, projected_daily, self._daily_limit, "daily_warning_sent"),
            (MONTHLY, projected_monthly, self._monthly_limit, "monthly_warning_sent"),
        )
        for period, projected, limit, flag in checks:
            threshold = limit * self._warning_threshold_percent / _HUNDRED
            if projected >= threshold and not getattr(entry, flag):
                setattr(entry, flag, True)
                changed = True
                record_cost_warning(period)
                if self._event_sink is not None:
                    self._event_sink.emit(
                        GatewayEvent.COST_WARNING_CROSSED,
                        period=period,
                        projected=str(projected),
                        limit=str(limit),
                        threshold_percent=str(self._warning_threshold_percent),
                    )
        return changed

    def _reject(
        self, period: str, limit: Decimal, current: Decimal, estimated: Decimal
    ) -> CostLimitExceededError:
        record_cost_limit_rejection(period)
        if self._event_sink is not None:
            self._event_sink.emit(
                GatewayEvent.COST_LIMIT_REJECTED,
                period=period,
                limit=str(limit),
                current=str(current),
                estimated=str(estimated),
            )
        return CostLimitExceededError(period, limit, current, estimated)

    # =========================================================================
    # Operations
    # =========================================================================

    async def check_and_reserve(self, estimated_cost: Decimal) -> Reservation:
        """
        Reject or hold budget for a request about to run.

        Args:
            estimated_cost: Estimated cost of the request

        Returns:
            Reservation to pass to commit() or release()

        Raises:
            CostLimitExceededError: If the estimate would cross a limit
            GatewayValidationError: If the estimate is negative
            LedgerUnavailableError: If the store cannot be read or written
        """
        estimated_cost = Decimal(estimated_cost)
        if estimated_cost < 0:
            raise GatewayValidationError(
                "estimated_cost must be >= 0",
                field="estimated_cost",
                value=estimated_cost,
            )

        async with self._lock:
            entry = await self._load()
            pending = self.pending

            current_daily = entry.daily_spend + pending
            if current_daily + estimated_cost > self._daily_limit:
                raise self._reject(DAILY, self._daily_limit, current_daily, estimated_cost)

            current_monthly = entry.monthly_spend + pending
            if current_monthly + estimated_cost > self._monthly_limit:
                raise self._reject(
                    MONTHLY, self._monthly_limit, current_monthly, estimated_cost
                )

            if self._check_warnings(
                entry,
                current_daily + estimated_cost,
                current_monthly + estimated_cost,
            ):
                await self._write_store(entry)

            reservation = Reservation(amount=estimated_cost)
            self._pending[reservation.reservation_id] = estimated_cost
            return reservation

    async def commit(
        self,
        actual_cost: Decimal,
        reservation: Optional[Reservation] = None,
        *,
        backend: Optional[str] = None,
        operation: Optional[str] = None,
        tokens_in: int = 0,
        tokens_out: int = 0,
        user_id: Optional[str] = None,
    ) -> CostLedgerEntry:
        """
        Record the actual cost of a successful generation.

        Drops the reservation's hold (if any) and adds the actual cost to
        both period counters. Actual cost may exceed the estimate; the
        spend already happened.

        Returns:
            Snapshot of the ledger after the commit

        Raises:
            GatewayValidationError: If actual_cost is negative
            LedgerUnavailableError: If the store cannot be read or written
        """
        actual_cost = Decimal(actual_cost)
        if actual_cost < 0:
            raise GatewayValidationError(
                "actual_cost must be >= 0", field="actual_cost", value=actual_cost
            )

        async with self._lock:
            # The hold goes even if the store then fails.
            if reservation is not None:
                self._pending.pop(reservation.reservation_id, None)
            entry = await self._load()

            entry.daily_spend += actual_cost
            entry.monthly_spend += actual_cost
            self._check_warnings(entry, entry.daily_spend, entry.monthly_spend)

            for key, buckets in ((backend, self._by_backend), (operation, self._by_operation)):
                if key is None:
                    continue
                bucket = buckets.setdefault(key, UsageBucket())
                bucket.request_count += 1
                bucket.tokens_in += tokens_in
                bucket.tokens_out += tokens_out
                bucket.total_cost += actual_cost

            await self._write_store(entry)
            snapshot = entry.model_copy()

        set_ledger_spend(float(snapshot.daily_spend), float(snapshot.monthly_spend))
        if backend is not None:
            record_request_cost(backend, operation or "unknown", float(actual_cost))
            record_token_usage(backend, "input", tokens_in)
            record_token_usage(backend, "output", tokens_out)

        logger.info(
            "cost committed",
            backend=backend,
            operation=operation,
            user_id=user_id,
            cost=str(actual_cost),
            daily_spend=str(snapshot.daily_spend),
            monthly_spend=str(snapshot.monthly_spend),
        )
        return snapshot

    async def release(self, reservation: Reservation) -> None:
        """Drop a reservation's hold without charging anything."""
        async with self._lock:
            self._pending.pop(reservation.reservation_id, None)

    async def remaining_budget(self) -> RemainingBudget:
        async with self._lock:
            entry = await self._load()
            return RemainingBudget(
                daily=max(_ZERO, self._daily_limit - entry.daily_spend),
                monthly=max(_ZERO, self._monthly_limit - entry.monthly_spend),
            )

    async def snapshot(self) -> CostLedgerEntry:
        """Copy of the current entry after rollover."""
        async with self._lock:
            entry = await self._load()
            return entry.model_copy()

    async def usage_summary(self) -> UsageSummary:
        async with self._lock:
            entry = await self._load()
            return UsageSummary(
                daily_spend=entry.daily_spend,
                monthly_spend=entry.monthly_spend,
                pending=self.pending,
                by_backend={k: v.model_copy() for k, v in self._by_backend.items()},
                by_operation={k: v.model_copy() for k, v in self._by_operation.items()},
            )
