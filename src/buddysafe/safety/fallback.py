"""
Dependency-free fallback validation.

Used whenever the remote classifier is down or its state has not been
confirmed recently. Four layers run in order and the first one that
fires decides:

1. Critical patterns (hard-coded, immediate escalation)
2. Categorized keyword phrases
3. Behavioral signals (emotion density, repeated concerning topics)
4. Length and vocabulary complexity

Nothing sits beneath this evaluator, so any internal error becomes a
moderate warning instead of propagating.
"""

from __future__ import annotations

import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from buddysafe.config import (
    COMPLEX_VOCAB_MAX_AGE,
    COMPLEX_VOCAB_MIN_CHARS,
    LONG_MESSAGE_CHARS,
    NEGATIVE_EMOTION_THRESHOLD,
    RECENT_CONTEXT_MIN_MESSAGES,
    REPEATED_TOPIC_MIN_OCCURRENCES,
    REPEATED_TOPIC_THRESHOLD,
)
from buddysafe.logging import get_logger
from buddysafe.safety.base import (
    SafetyAction,
    SafetyContext,
    SafetySeverity,
    SafetyVerdict,
)

logger = get_logger(__name__)


class ClassifierHealth:
    """
    Last confirmed state of the remote classifier.

    Shared by every in-flight validation; reads and updates are guarded by
    an internal lock.
    """

    def __init__(
        self,
        check_interval_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.check_interval_seconds = check_interval_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._is_down = False
        self._last_check: float | None = None

    def mark_down(self) -> None:
        with self._lock:
            was_down = self._is_down
            self._is_down = True
            self._last_check = self._clock()
        if not was_down:
            logger.warning("classifier_marked_down")

    def mark_up(self) -> None:
        with self._lock:
            was_down = self._is_down
            self._is_down = False
            self._last_check = self._clock()
        if was_down:
            logger.info("classifier_marked_up")

    def is_stale(self) -> bool:
        """True when no state has been confirmed within the freshness window."""
        with self._lock:
            if self._last_check is None:
                return True
            return self._clock() - self._last_check > self.check_interval_seconds

    @property
    def is_down(self) -> bool:
        with self._lock:
            return self._is_down

    def should_use_fallback(self) -> bool:
        return self.is_down or self.is_stale()

    def status(self) -> dict[str, Any]:
        with self._lock:
            is_down = self._is_down
            last_check = self._last_check
            now = self._clock()
        since = None if last_check is None else now - last_check
        return {
            "is_classifier_down": is_down,
            "last_check": last_check,
            "seconds_since_check": since,
            "should_use_fallback": is_down
            or since is None
            or since > self.check_interval_seconds,
        }


@dataclass(frozen=True)
class KeywordGroup:
    terms: tuple[str, ...]
    severity: int
    reason: str

    @property
    def action(self) -> SafetyAction:
        if self.severity >= SafetySeverity.SERIOUS:
            return SafetyAction.ESCALATE
        return SafetyAction.WARN


# (category, pattern, reason) checked by layer 1
FALLBACK_CRITICAL_PATTERNS: tuple[tuple[str, str, str], ...] = (
    (
        "self_harm",
        r"\b(kill|hurt|harm|cut)\s+myself\b|\bwant\s+to\s+die\b|\bsuicid(e|al)\b",
        "self-harm language",
    ),
    (
        "personal_info",
        r"\bwhere\s+do\s+you\s+live\b|\bwhat('?s|\s+is)\s+your\s+(home\s+)?address\b"
        r"|\bwhat\s+school\s+do\s+you\s+(go\s+to|attend)\b|\byour\s+(phone|mobile)\s+number\b"
        r"|\bsend\s+(me\s+)?(a\s+)?(photo|pic|picture)s?\s+of\s+you",
        "personal information solicitation",
    ),
    (
        "meeting_request",
        r"\b(meet|see)\s+(me|you|up)\s+(in\s+person|irl|alone|after\s+school|somewhere)\b"
        r"|\blet'?s\s+meet\s+up\b",
        "request to meet in person",
    ),
    (
        "secrecy",
        r"\b(don'?t|do\s+not|never)\s+tell\s+(your|ur|anyone)\b|\bour\s+(little\s+)?secret\b"
        r"|\bkeep\s+(this|it)\s+(a\s+)?secret\b",
        "secrecy request",
    ),
)

FALLBACK_KEYWORD_GROUPS: tuple[KeywordGroup, ...] = (
    KeywordGroup(
        ("hurt myself", "want to die", "kill myself", "end it all"),
        3,
        "Self-harm language detected",
    ),
    KeywordGroup(
        ("someone hurt me", "touched me", "inappropriate touch", "secret touching"),
        3,
        "Potential abuse indicators",
    ),
    KeywordGroup(
        ("everyone hates me", "nobody likes me", "they all laugh", "pick on me"),
        2,
        "Potential bullying indicators",
    ),
    KeywordGroup(
        ("smoking", "drinking", "drugs", "vaping", "beer", "wine"),
        2,
        "Substance mention detected",
    ),
    KeywordGroup(
        ("sex", "sexual", "porn", "naked", "private parts"),
        2,
        "Age-inappropriate content",
    ),
)

NEGATIVE_EMOTION_WORDS = (
    "hate",
    "angry",
    "mad",
    "sad",
    "upset",
    "frustrated",
    "terrible",
    "awful",
    "horrible",
)

CONCERNING_TOPICS = ("hurt", "pain", "alone", "scared", "worried")

COMPLEX_VOCABULARY = (
    "inappropriate",
    "sophisticated",
    "phenomenon",
    "extraordinary",
    "magnificent",
)


def _phrase_pattern(phrase: str) -> re.Pattern[str]:
    return re.compile(r"\b" + r"\s+".join(map(re.escape, phrase.split())))


class FallbackValidator:
    """Rule-only validator used when the remote classifier can't be trusted."""

    def __init__(
        self,
        health: ClassifierHealth | None = None,
        negative_emotion_threshold: int = NEGATIVE_EMOTION_THRESHOLD,
        repeated_topic_min_occurrences: int = REPEATED_TOPIC_MIN_OCCURRENCES,
        repeated_topic_threshold: int = REPEATED_TOPIC_THRESHOLD,
        long_message_chars: int = LONG_MESSAGE_CHARS,
    ):
        self.health = health or ClassifierHealth()
        self.negative_emotion_threshold = negative_emotion_threshold
        self.repeated_topic_min_occurrences = repeated_topic_min_occurrences
        self.repeated_topic_threshold = repeated_topic_threshold
        self.long_message_chars = long_message_chars

        self._critical = [
            (category, re.compile(pattern, re.IGNORECASE), reason)
            for category, pattern, reason in FALLBACK_CRITICAL_PATTERNS
        ]
        self._keywords = [
            (group, [(term, _phrase_pattern(term)) for term in group.terms])
            for group in FALLBACK_KEYWORD_GROUPS
        ]
        self._negative = [(w, _phrase_pattern(w)) for w in NEGATIVE_EMOTION_WORDS]
        self._topics = [
            (t, re.compile(r"\b" + re.escape(t))) for t in CONCERNING_TOPICS
        ]

    def should_use_fallback(self) -> bool:
        return self.health.should_use_fallback()

    def get_status(self) -> dict[str, Any]:
        return self.health.status()

    def evaluate(self, message: str, context: SafetyContext) -> SafetyVerdict:
        """Run the four layers in order; the first non-empty result wins."""
        try:
            for layer in (
                self._check_critical_patterns,
                self._check_keywords,
                self._check_behavior,
                self._check_complexity,
            ):
                verdict = layer(message, context)
                if verdict is not None:
                    return verdict

            return SafetyVerdict.allow(
                reason="Fallback validation passed - no concerns detected",
                flagged_terms=["fallback_validated"],
                fallback_used=True,
            )
        except Exception as e:
            logger.error("fallback_validation_error", error=str(e))
            return SafetyVerdict.fail_safe(
                reason="Fallback system error - using maximum safety",
                flagged_terms=["system_error"],
                fallback_used=True,
            )

    def _check_critical_patterns(
        self, message: str, context: SafetyContext
    ) -> SafetyVerdict | None:
        for category, pattern, reason in self._critical:
            if pattern.search(message):
                return SafetyVerdict(
                    is_safe=False,
                    severity=SafetySeverity.SERIOUS,
                    reason=f"Critical pattern detected: {reason}",
                    action=SafetyAction.ESCALATE,
                    flagged_terms=[category, "fallback_critical"],
                    fallback_used=True,
                )
        return None

    def _check_keywords(
        self, message: str, context: SafetyContext
    ) -> SafetyVerdict | None:
        lower = message.lower()
        for group, terms in self._keywords:
            for term, pattern in terms:
                if pattern.search(lower):
                    return SafetyVerdict(
                        is_safe=False,
                        severity=group.severity,
                        reason=group.reason,
                        action=group.action,
                        flagged_terms=[term, "fallback_keyword"],
                        fallback_used=True,
                    )
        return None

    def _check_behavior(
        self, message: str, context: SafetyContext
    ) -> SafetyVerdict | None:
        lower = message.lower()
        negative_hits = sum(1 for _, p in self._negative if p.search(lower))
        if negative_hits >= self.negative_emotion_threshold:
            # Supportive, not punitive
            return SafetyVerdict(
                is_safe=True,
                severity=SafetySeverity.MINOR,
                reason="High negative emotion detected - monitoring for support needs",
                action=SafetyAction.ALLOW,
                flagged_terms=["high_negative_emotion", "fallback_behavioral"],
                fallback_used=True,
            )

        if len(context.recent_messages) >= RECENT_CONTEXT_MIN_MESSAGES:
            recent_text = " ".join(context.recent_messages).lower()
            repeating = [
                topic
                for topic, pattern in self._topics
                if len(pattern.findall(recent_text))
                >= self.repeated_topic_min_occurrences
            ]
            if len(repeating) >= self.repeated_topic_threshold:
                return SafetyVerdict(
                    is_safe=True,
                    severity=SafetySeverity.MODERATE,
                    reason="Repetitive concerning topics detected - needs attention",
                    action=SafetyAction.WARN,
                    flagged_terms=["repetitive_concern", "fallback_behavioral"],
                    fallback_used=True,
                )
        return None

    def _check_complexity(
        self, message: str, context: SafetyContext
    ) -> SafetyVerdict | None:
        if len(message) > self.long_message_chars:
            # Possible copy-paste; worth a look but not blocked
            return SafetyVerdict(
                is_safe=False,
                severity=SafetySeverity.MINOR,
                reason="Extremely long message flagged for review",
                action=SafetyAction.ALLOW,
                flagged_terms=["long_message", "fallback_complexity"],
                fallback_used=True,
            )

        if context.child_age <= COMPLEX_VOCAB_MAX_AGE:
            lower = message.lower()
            has_complex = any(word in lower for word in COMPLEX_VOCABULARY)
            if has_complex and len(message) > COMPLEX_VOCAB_MIN_CHARS:
                return SafetyVerdict(
                    is_safe=True,
                    severity=SafetySeverity.MINOR,
                    reason="Complex vocabulary for age - monitoring for copy-paste content",
                    action=SafetyAction.ALLOW,
                    flagged_terms=["complex_vocabulary", "fallback_complexity"],
                    fallback_used=True,
                )
        return None
