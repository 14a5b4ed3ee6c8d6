"""
Rule-based classifier over the configured pattern categories.

Categories are checked in a fixed priority order and the first category
with a matching pattern decides the verdict. Evaluation is pure: the same
message always yields the same verdict and nothing is mutated.

A rule set that cannot be loaded never produces an all-clear; it yields
a moderate warning instead.
"""

from __future__ import annotations

from collections.abc import Callable
from functools import partial
from pathlib import Path

from buddysafe.logging import get_logger
from buddysafe.safety.base import (
    CATEGORY_POLICIES,
    EVALUATION_ORDER,
    SafetyVerdict,
)
from buddysafe.safety.rules import CompiledRuleSet, get_compiled_safety_patterns

logger = get_logger(__name__)


class PatternRuleSet:
    """
    Evaluates messages against the seven pattern categories.

    Args:
        provider: Callable returning the compiled rule set. Called on every
            evaluation so a reloaded configuration is picked up; it is
            expected to cache.
    """

    def __init__(self, provider: Callable[[], CompiledRuleSet]):
        self._provider = provider

    @classmethod
    def from_path(cls, path: Path) -> "PatternRuleSet":
        return cls(partial(get_compiled_safety_patterns, Path(path)))

    @classmethod
    def from_rules(cls, rules: CompiledRuleSet) -> "PatternRuleSet":
        return cls(lambda: rules)

    @property
    def name(self) -> str:
        return "pattern_rules"

    def evaluate(self, message: str) -> SafetyVerdict:
        try:
            rules = self._provider()
        except Exception as e:
            logger.error("pattern_rules_config_error", error=str(e))
            return SafetyVerdict.fail_safe(
                reason="Safety configuration error - using safe defaults",
                flagged_terms=["config_error"],
            )

        for category in EVALUATION_ORDER:
            for pattern in rules.get(category, ()):
                if pattern.matches(message):
                    policy = CATEGORY_POLICIES[category]
                    return SafetyVerdict(
                        is_safe=policy.is_safe,
                        severity=policy.severity,
                        reason=pattern.reason,
                        action=policy.action,
                        flagged_terms=[pattern.tag],
                    )

        return SafetyVerdict.allow()
