"""
Moderation Service - Post-generation content checks.

The fallback router runs generated text through a ModerationGate. The gate
asks a Moderator for a verdict and applies the blocking policy: content that
is flagged with confidence above the threshold is rejected with
ContentPolicyViolationError; anything else passes with the verdict attached
to the result.

RuleBasedModerator is the default Moderator: regex rules grouped by
category, each with a severity that scales its confidence.

Pattern: Strategy (Moderator) + Policy object (ModerationGate)
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

from genai_gateway.core.config import Settings
from genai_gateway.core.exceptions import (
    ContentPolicyViolationError,
    GatewayValidationError,
    ModerationUnavailableError,
)
from genai_gateway.models.domain import ModerationResult
from genai_gateway.observability.events import EventSink, GatewayEvent
from genai_gateway.observability.logging import get_logger
from genai_gateway.observability.metrics import record_content_policy_violation

logger = get_logger(__name__)

DEFAULT_MODERATION_THRESHOLD = 0.8
CONFIDENCE_PER_MATCH = 0.2
REDACTION = "[CONTENT REMOVED]"


# =============================================================================
# Moderator Protocol
# =============================================================================


@runtime_checkable
class Moderator(Protocol):
    """Anything that can judge a piece of text."""

    async def moderate_text(self, text: str) -> ModerationResult:
        ...


# =============================================================================
# Rules
# =============================================================================


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


_SEVERITY_WEIGHT = {
    Severity.LOW: 0.8,
    Severity.MEDIUM: 1.2,
    Severity.HIGH: 1.5,
}


@dataclass
class ModerationRule:
    """
    One moderation category.

    Attributes:
        category: Category name reported when the rule matches
        patterns: Compiled patterns; every occurrence counts as a match
        severity: Scales the confidence of a match
        description: Human-readable purpose
    """

    category: str
    patterns: list[re.Pattern[str]]
    severity: Severity = Severity.MEDIUM
    description: str = ""

    @classmethod
    def from_strings(
        cls,
        category: str,
        patterns: Sequence[str],
        severity: Severity = Severity.MEDIUM,
        description: str = "",
        flags: int = re.IGNORECASE,
    ) -> "ModerationRule":
        return cls(
            category=category,
            patterns=[re.compile(p, flags) for p in patterns],
            severity=Severity(severity),
            description=description,
        )

    def find_matches(self, text: str) -> list[str]:
        matches: list[str] = []
        for pattern in self.patterns:
            matches.extend(m.group(0) for m in pattern.finditer(text))
        return matches


def default_rules() -> list[ModerationRule]:
    """Rules suited to an educational product."""
    return [
        ModerationRule.from_strings(
            "inappropriate_language",
            [
                r"\b(damn|hell|crap|stupid|idiot|dumb)\b",
                r"\b(hate|kill|die|death)\b",
            ],
            Severity.MEDIUM,
            "Inappropriate language for educational content",
        ),
        ModerationRule.from_strings(
            "violence",
            [
                r"\b(violence|violent|attack|fight|war|weapon|gun|knife|bomb)\b",
                r"\b(hurt|harm|injure|wound|blood|murder)\b",
            ],
            Severity.HIGH,
            "Violent content inappropriate for a learning environment",
        ),
        ModerationRule.from_strings(
            "adult_content",
            [
                r"\b(sex|sexual|porn|nude|naked)\b",
                r"\b(drug|alcohol|beer|wine|cigarette|smoke)\b",
            ],
            Severity.HIGH,
            "Adult content inappropriate for an educational setting",
        ),
        ModerationRule.from_strings(
            "discrimination",
            [
                r"\b(racist|racism|sexist|sexism|homophobic|transphobic)\b",
                r"\b(stereotype|prejudice|discrimination|bias)\b",
            ],
            Severity.HIGH,
            "Discriminatory content",
        ),
        ModerationRule.from_strings(
            "misinformation",
            [
                r"\b(fake news|conspiracy|hoax|lie|false information)\b",
                r"\b(earth is flat|vaccines cause autism|climate change is fake)\b",
            ],
            Severity.HIGH,
            "Potential misinformation",
        ),
        ModerationRule.from_strings(
            "personal_information",
            [
                r"\b\d{3}-\d{2}-\d{4}\b",
                r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b",
                r"\b\d{3}-\d{3}-\d{4}\b",
            ],
            Severity.MEDIUM,
            "Personal information that should be protected",
            flags=0,
        ),
        ModerationRule.from_strings(
            "off_topic",
            [
                r"\b(shopping|buy now|sale|discount|price|money|cost)\b",
                r"\b(politics|political|election|vote|government|president)\b",
            ],
            Severity.LOW,
            "Content that may be off-topic for educational purposes",
        ),
    ]


# =============================================================================
# RuleBasedModerator
# =============================================================================


class RuleBasedModerator:
    """
    Regex moderation with severity-weighted confidence.

    For each rule, confidence = min(0.2 * occurrences, 1.0) scaled by
    severity (high x1.5, medium x1.2, low x0.8) and capped at 1.0. The
    overall confidence is the highest category confidence.

    Example:
        >>> moderator = RuleBasedModerator()
        >>> result = await moderator.moderate_text("A gun, a knife and a bomb")
        >>> result.categories, result.confidence
        (['violence'], 0.9)
    """

    def __init__(self, rules: Optional[list[ModerationRule]] = None) -> None:
        self._rules = list(rules) if rules is not None else default_rules()

    @property
    def rules(self) -> list[ModerationRule]:
        return list(self._rules)

    def add_rule(self, rule: ModerationRule) -> None:
        self._rules.append(rule)
        logger.info(
            "moderation rule added",
            category=rule.category,
            severity=rule.severity.value,
        )

    def remove_rule(self, category: str) -> bool:
        before = len(self._rules)
        self._rules = [r for r in self._rules if r.category != category]
        removed = len(self._rules) < before
        if removed:
            logger.info("moderation rule removed", category=category)
        return removed

    def update_rule_severity(self, category: str, severity: Severity) -> bool:
        for rule in self._rules:
            if rule.category == category:
                rule.severity = Severity(severity)
                return True
        return False

    async def moderate_text(self, text: str) -> ModerationResult:
        if not text or not text.strip():
            return ModerationResult()

        categories: list[str] = []
        details: dict[str, dict[str, Any]] = {}
        max_confidence = 0.0

        for rule in self._rules:
            matches = rule.find_matches(text)
            if not matches:
                details[rule.category] = {"flagged": False, "confidence": 0.0}
                continue

            confidence = min(len(matches) * CONFIDENCE_PER_MATCH, 1.0)
            confidence = round(min(confidence * _SEVERITY_WEIGHT[rule.severity], 1.0), 4)

            categories.append(rule.category)
            details[rule.category] = {
                "flagged": True,
                "confidence": confidence,
                "matches": len(matches),
                "severity": rule.severity.value,
            }
            max_confidence = max(max_confidence, confidence)

        if categories:
            logger.debug(
                "content flagged",
                categories=categories,
                confidence=max_confidence,
            )

        return ModerationResult(
            flagged=bool(categories),
            categories=categories,
            confidence=max_confidence,
            details=details,
        )

    async def sanitize_text(self, text: str) -> tuple[str, list[str]]:
        """
        Replace every rule match with a redaction marker.

        Returns:
            (sanitized text, description of each change)
        """
        changes: list[str] = []
        sanitized = text
        for rule in self._rules:
            for pattern in rule.patterns:
                for match in pattern.finditer(sanitized):
                    changes.append(f'Removed "{match.group(0)}" ({rule.category})')
                sanitized = pattern.sub(REDACTION, sanitized)
        return sanitized, changes

    def stats(self) -> dict[str, Any]:
        by_severity: dict[str, int] = {}
        for rule in self._rules:
            by_severity[rule.severity.value] = by_severity.get(rule.severity.value, 0) + 1
        return {
            "total_rules": len(self._rules),
            "rules_by_severity": by_severity,
            "categories": [r.category for r in self._rules],
        }


# =============================================================================
# ModerationGate
# =============================================================================


@dataclass
class ModerationGate:
    """
    Blocking policy on top of a Moderator.

    Content is rejected only when it is flagged AND its confidence is
    strictly above the threshold. Lower-confidence flags pass with the
    verdict attached so callers can decide for themselves.
    """

    moderator: Moderator = field(default_factory=RuleBasedModerator)
    threshold: float = DEFAULT_MODERATION_THRESHOLD
    event_sink: Optional[EventSink] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.threshold <= 1.0:
            raise GatewayValidationError(
                "threshold must be between 0 and 1",
                field="threshold",
                value=self.threshold,
            )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        moderator: Optional[Moderator] = None,
        event_sink: Optional[EventSink] = None,
    ) -> "ModerationGate":
        return cls(
            moderator=moderator or RuleBasedModerator(),
            threshold=settings.moderation_threshold,
            event_sink=event_sink,
        )

    async def check(
        self,
        text: str,
        backend: Optional[str] = None,
        cost: Decimal = Decimal("0"),
    ) -> ModerationResult:
        """
        Moderate generated text.

        Args:
            text: Generated text
            backend: Backend that produced it (for the error and events)
            cost: Cost already committed for it (for the error)

        Returns:
            The moderation verdict when the content is allowed

        Raises:
            ContentPolicyViolationError: If flagged above the threshold
            ModerationUnavailableError: If the moderator itself failed
        """
        try:
            result = await self.moderator.moderate_text(text)
        except Exception as e:
            logger.error(
                "moderator failed, withholding output",
                backend=backend,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise ModerationUnavailableError(str(e), backend=backend, cost=cost) from e

        if result.flagged and result.confidence > self.threshold:
            record_content_policy_violation()
            if self.event_sink is not None:
                self.event_sink.emit(
                    GatewayEvent.CONTENT_POLICY_VIOLATION,
                    backend=backend,
                    categories=result.categories,
                    confidence=result.confidence,
                )
            raise ContentPolicyViolationError(
                result.categories,
                result.confidence,
                backend=backend,
                cost=cost,
            )

        if result.flagged:
            logger.info(
                "content flagged below threshold",
                backend=backend,
                categories=result.categories,
                confidence=result.confidence,
            )
        return result
