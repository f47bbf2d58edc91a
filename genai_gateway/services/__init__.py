"""
Services Package - Governance services shared by every request.

This package provides the cost ledger, pricing table, response cache and
moderation gate. The GenerationGateway facade lives in
genai_gateway.services.gateway and is imported from there (it depends on
the resilience package, which in turn depends on these services).

Reference Documents:
- ARCHITECTURE.md: services/ directory structure
- GUIDELINES pp. 211: Service layers for orchestrating foundation models
"""

from genai_gateway.services.cache import CacheStats, ResponseCache
from genai_gateway.services.cost_ledger import (
    CostLedger,
    CostLedgerEntry,
    InMemoryLedgerStore,
    LedgerStore,
    RedisLedgerStore,
    RemainingBudget,
    Reservation,
    UsageBucket,
    UsageSummary,
)
from genai_gateway.services.moderation import (
    ModerationGate,
    ModerationRule,
    Moderator,
    RuleBasedModerator,
    Severity,
)
from genai_gateway.services.pricing import ModelRate, PricingTable

__all__ = [
    # Cache
    "ResponseCache",
    "CacheStats",
    # Cost Ledger
    "CostLedger",
    "CostLedgerEntry",
    "LedgerStore",
    "InMemoryLedgerStore",
    "RedisLedgerStore",
    "RemainingBudget",
    "Reservation",
    "UsageBucket",
    "UsageSummary",
    # Pricing
    "PricingTable",
    "ModelRate",
    # Moderation
    "Moderator",
    "ModerationGate",
    "ModerationRule",
    "RuleBasedModerator",
    "Severity",
]
