"""
Counters describing how the safety pipeline has been behaving.

Read by dashboards through ``ValidationOrchestrator.get_metrics()``.
"""

from __future__ import annotations

import threading
from collections import Counter
from typing import Any

from buddysafe.safety.base import SafetyVerdict


class SafetyMetrics:
    """Thread-safe running totals for validations, escalations and errors."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._evaluations = 0
            self._by_severity: Counter[int] = Counter()
            self._by_action: Counter[str] = Counter()
            self._cache_hits = 0
            self._fallback_uses = 0
            self._total_time_ms = 0.0
            self._escalations_attempted = 0
            self._escalations_delivered = 0
            self._escalations_failed = 0
            self._errors: Counter[str] = Counter()

    def record_evaluation(self, verdict: SafetyVerdict) -> None:
        with self._lock:
            self._evaluations += 1
            self._by_severity[int(verdict.severity)] += 1
            self._by_action[verdict.action.value] += 1
            if verdict.cache_hit:
                self._cache_hits += 1
            if verdict.fallback_used:
                self._fallback_uses += 1
            if verdict.processing_time_ms is not None:
                self._total_time_ms += verdict.processing_time_ms

    def record_escalation(self, delivered: bool | None) -> None:
        """``delivered`` is None when no notification could be created."""
        with self._lock:
            self._escalations_attempted += 1
            if delivered:
                self._escalations_delivered += 1
            else:
                self._escalations_failed += 1

    def record_error(self, kind: str) -> None:
        with self._lock:
            self._errors[kind] += 1

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            evaluations = self._evaluations
            return {
                "evaluations": evaluations,
                "by_severity": {str(k): v for k, v in sorted(self._by_severity.items())},
                "by_action": dict(self._by_action),
                "cache_hits": self._cache_hits,
                "fallback_uses": self._fallback_uses,
                "average_processing_ms": (
                    self._total_time_ms / evaluations if evaluations else 0.0
                ),
                "escalations": {
                    "attempted": self._escalations_attempted,
                    "delivered": self._escalations_delivered,
                    "failed": self._escalations_failed,
                },
                "errors": dict(self._errors),
            }
