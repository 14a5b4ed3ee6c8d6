"""
Base interfaces and types for the safety validation pipeline.

Defines the verdict and context types shared by every evaluator, the
fixed rule categories with their evaluation order, the most-restrictive
combination policy, and the pipeline's error taxonomy.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SafetyAction(str, Enum):
    """Actions the safety pipeline can decide on."""

    ALLOW = "allow"  # Safe, deliver as-is
    WARN = "warn"  # Deliver with a gentle redirect
    BLOCK = "block"  # Refuse the message
    ESCALATE = "escalate"  # Refuse and alert a parent


class SafetySeverity(IntEnum):
    """Ordinal risk levels. Only SERIOUS triggers parent escalation."""

    NONE = 0
    MINOR = 1  # Monitor
    MODERATE = 2  # Redirect and log
    SERIOUS = 3  # Escalate


# Marker tags with special meaning for response selection
EMOTIONAL_SUPPORT_TAG = "emotional_support_needed"
SWEARING_TAG = "swearing"
INAPPROPRIATE_CONTENT_TAGS = frozenset({"development", "substances", "identity"})


@dataclass
class SafetyVerdict:
    """Outcome of validating one message."""

    is_safe: bool
    severity: int
    reason: str
    action: SafetyAction
    flagged_terms: list[str] = field(default_factory=list)
    processing_time_ms: float | None = None
    cache_hit: bool = False
    fallback_used: bool = False

    @property
    def needs_logging(self) -> bool:
        return self.severity >= SafetySeverity.MODERATE

    @property
    def needs_escalation(self) -> bool:
        return self.severity >= SafetySeverity.SERIOUS

    def annotate(self, **changes: Any) -> "SafetyVerdict":
        """Copy of this verdict with observability fields changed."""
        return replace(self, flagged_terms=list(self.flagged_terms), **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_safe": self.is_safe,
            "severity": int(self.severity),
            "reason": self.reason,
            "action": self.action.value,
            "flagged_terms": list(self.flagged_terms),
            "processing_time_ms": self.processing_time_ms,
            "cache_hit": self.cache_hit,
            "fallback_used": self.fallback_used,
        }

    @classmethod
    def allow(cls, reason: str = "No safety concerns detected", **kwargs: Any):
        return cls(
            is_safe=True,
            severity=SafetySeverity.NONE,
            reason=reason,
            action=SafetyAction.ALLOW,
            **kwargs,
        )

    @classmethod
    def fail_safe(
        cls,
        reason: str,
        severity: int = SafetySeverity.MODERATE,
        action: SafetyAction = SafetyAction.WARN,
        flagged_terms: list[str] | None = None,
        fallback_used: bool = False,
    ) -> "SafetyVerdict":
        """Conservative verdict used whenever safety cannot be determined."""
        return cls(
            is_safe=False,
            severity=severity,
            reason=reason,
            action=action,
            flagged_terms=flagged_terms or [],
            fallback_used=fallback_used,
        )


class SafetyContext(BaseModel):
    """
    The situation a message is validated in.

    ``recent_messages`` is ordered most-recent-first and only carries
    short-range conversational context.
    """

    model_config = ConfigDict(frozen=True)

    child_id: str = Field(..., description="Child account identifier")
    child_age: int = Field(..., ge=1, le=18, description="Child's age in years")
    conversation_id: str | None = Field(default=None)
    recent_messages: tuple[str, ...] = Field(default_factory=tuple)

    def latest(self, count: int) -> list[str]:
        """The ``count`` most recent prior messages, most recent first."""
        return list(self.recent_messages[:count])

    def context_string(self, count: int = 3) -> str:
        """Recent messages in chronological order, joined for the classifier."""
        return " | ".join(reversed(self.latest(count)))


class RuleCategory(str, Enum):
    """The fixed rule categories a rule set is made of."""

    CRITICAL = "critical"
    EMOTIONAL_SUPPORT = "emotional_support"
    HIGH_CONCERN = "high_concern"
    CONTEXTUAL_GUIDANCE = "contextual_guidance"
    YOUTH_CULTURE = "youth_culture"
    GAMING = "gaming"
    SCHOOL = "school"


# First match wins. Critical must never be shadowed by a softer category,
# and emotional support is checked before generic concern categories.
EVALUATION_ORDER: tuple[RuleCategory, ...] = (
    RuleCategory.CRITICAL,
    RuleCategory.EMOTIONAL_SUPPORT,
    RuleCategory.HIGH_CONCERN,
    RuleCategory.CONTEXTUAL_GUIDANCE,
    RuleCategory.YOUTH_CULTURE,
    RuleCategory.GAMING,
    RuleCategory.SCHOOL,
)


@dataclass(frozen=True)
class CategoryPolicy:
    """Fixed outcome attached to a rule category."""

    severity: int
    action: SafetyAction
    is_safe: bool


CATEGORY_POLICIES: dict[RuleCategory, CategoryPolicy] = {
    RuleCategory.CRITICAL: CategoryPolicy(3, SafetyAction.ESCALATE, False),
    RuleCategory.EMOTIONAL_SUPPORT: CategoryPolicy(1, SafetyAction.ALLOW, True),
    RuleCategory.HIGH_CONCERN: CategoryPolicy(2, SafetyAction.WARN, False),
    RuleCategory.CONTEXTUAL_GUIDANCE: CategoryPolicy(2, SafetyAction.WARN, False),
    RuleCategory.YOUTH_CULTURE: CategoryPolicy(1, SafetyAction.ALLOW, True),
    RuleCategory.GAMING: CategoryPolicy(1, SafetyAction.ALLOW, True),
    RuleCategory.SCHOOL: CategoryPolicy(1, SafetyAction.ALLOW, True),
}


@dataclass(frozen=True)
class CompiledPattern:
    """One compiled rule: a matcher plus the metadata reported on a match."""

    category: RuleCategory
    tag: str
    matcher: re.Pattern[str]
    reason: str
    support_response: str | None = None

    def matches(self, text: str) -> bool:
        return self.matcher.search(text) is not None


def combine(classifier: SafetyVerdict, rules: SafetyVerdict) -> SafetyVerdict:
    """
    Combine two independent verdicts, most restrictive wins.

    Severity is the maximum, safety is the conjunction, and flagged terms
    are concatenated (classifier first). Reason and action come from the
    side with the higher severity; on an exact tie the classifier side is
    used.
    """
    primary = classifier if classifier.severity >= rules.severity else rules
    return SafetyVerdict(
        is_safe=classifier.is_safe and rules.is_safe,
        severity=max(classifier.severity, rules.severity),
        reason=primary.reason,
        action=primary.action,
        flagged_terms=[*classifier.flagged_terms, *rules.flagged_terms],
        fallback_used=classifier.fallback_used or rules.fallback_used,
    )


class SafetyPipelineError(Exception):
    """Base class for failures inside the safety pipeline."""


class DependencyFailure(SafetyPipelineError):
    """The remote classifier was unreachable, timed out or replied badly."""


class ConfigurationFailure(SafetyPipelineError):
    """A rule set or response template file could not be loaded."""


class PersistenceFailure(SafetyPipelineError):
    """A safety event or parent notification could not be written or sent."""


class UnexpectedFailure(SafetyPipelineError):
    """Anything else; converted to the most conservative verdict."""
