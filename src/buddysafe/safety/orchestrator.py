"""
Safety validation pipeline.

Entry point for validating a message before it reaches a child:

1. Cache lookup (fingerprint of message, age and recent context)
2. Evaluation, either:
   - fallback only, when the remote classifier is down or unconfirmed
   - remote classifier and pattern rules concurrently, each isolated
     from the other's failure
3. Most-restrictive combination of the two verdicts
4. Caching (never for serious verdicts)
5. Safety event logging for moderate and serious verdicts
6. Parent escalation for serious verdicts

The caller always gets a verdict. When safety cannot be determined the
pipeline errs towards blocking.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from typing import Any

from buddysafe.config import Settings, get_settings
from buddysafe.logging import ValidationTrace, get_logger
from buddysafe.safety.base import (
    SafetyAction,
    SafetyContext,
    SafetySeverity,
    SafetyVerdict,
    combine,
)
from buddysafe.safety.cache import ResultCache
from buddysafe.safety.classifiers import PatternRuleSet, RemoteClassifier
from buddysafe.safety.escalation import (
    EscalationGateway,
    InMemorySafetyStore,
    LoggingNotifier,
    Notifier,
    ResendEmailNotifier,
    SafetyEvent,
    SafetyStore,
)
from buddysafe.safety.fallback import ClassifierHealth, FallbackValidator
from buddysafe.safety.metrics import SafetyMetrics
from buddysafe.safety.responses import SafetyResponder
from buddysafe.safety.rules import load_safety_responses

logger = get_logger(__name__)


class ValidationOrchestrator:
    """
    Validates messages through cache, classifiers, fallback and escalation.

    One instance is meant to be shared by the whole process: the cache,
    the classifier health and the metrics it holds are process-wide.
    """

    def __init__(
        self,
        rule_set: PatternRuleSet,
        fallback: FallbackValidator,
        cache: ResultCache,
        responder: SafetyResponder,
        classifier: RemoteClassifier | None = None,
        gateway: EscalationGateway | None = None,
        metrics: SafetyMetrics | None = None,
        batch_size: int = 5,
        cleanup_interval_seconds: float = 900.0,
    ):
        self.rule_set = rule_set
        self.fallback = fallback
        self.cache = cache
        self.responder = responder
        self.classifier = classifier
        self.gateway = gateway
        self.metrics = metrics or SafetyMetrics()
        self.batch_size = batch_size
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self._probe_task: asyncio.Task | None = None

        logger.info(
            "validation_orchestrator_init",
            classifier=classifier.name if classifier else None,
            escalation=gateway is not None,
            cache_max_size=cache.max_size,
        )

    @property
    def health(self) -> ClassifierHealth:
        return self.fallback.health

    def should_use_fallback(self) -> bool:
        if self.classifier is None or not self.classifier.is_available:
            return True
        return self.fallback.should_use_fallback()

    async def validate(self, message: str, context: SafetyContext) -> SafetyVerdict:
        """Validate one message. Never raises."""
        with ValidationTrace(
            child_id=context.child_id, conversation_id=context.conversation_id
        ) as trace:
            try:
                verdict = await self._validate(message, context, trace)
            except Exception as e:
                logger.error(
                    "safety_validation_error",
                    child_id=context.child_id,
                    error=str(e),
                    exc_info=True,
                )
                self.metrics.record_error("unexpected")
                verdict = SafetyVerdict.fail_safe(
                    reason="Safety validation system error",
                    severity=SafetySeverity.SERIOUS,
                    action=SafetyAction.BLOCK,
                    flagged_terms=["system_error"],
                    fallback_used=True,
                ).annotate(processing_time_ms=trace.elapsed_ms)

            self.metrics.record_evaluation(verdict)
            return verdict

    async def _validate(
        self, message: str, context: SafetyContext, trace: ValidationTrace
    ) -> SafetyVerdict:
        start = time.perf_counter()
        age = context.child_age
        recent = context.latest(2)

        cached = self.cache.get(message, age, recent)
        if cached is not None:
            trace.step("cache_hit", severity=int(cached.severity))
            return cached.annotate(
                cache_hit=True,
                processing_time_ms=(time.perf_counter() - start) * 1000,
            )

        if self.should_use_fallback():
            trace.step("fallback_path")
            verdict = self.fallback.evaluate(message, context)
            classifier_verdict, rule_verdict = verdict, verdict
            fallback_used = True
            self._schedule_health_probe()
        else:
            trace.step("parallel_path")
            classifier_verdict, rule_verdict, fallback_used = await self._run_parallel(
                message, context
            )

        combined = combine(classifier_verdict, rule_verdict).annotate(
            processing_time_ms=(time.perf_counter() - start) * 1000,
            fallback_used=fallback_used,
        )
        trace.step(
            "combined",
            severity=int(combined.severity),
            action=combined.action.value,
            fallback_used=fallback_used,
        )

        self.cache.set(message, age, combined, recent)

        event: SafetyEvent | None = None
        if combined.needs_logging and self.gateway is not None:
            event = await self.gateway.log_event(message, combined, context)

        if combined.needs_escalation:
            await self._escalate(message, combined, context, event)
            trace.step("escalated")

        return combined

    async def _run_parallel(
        self, message: str, context: SafetyContext
    ) -> tuple[SafetyVerdict, SafetyVerdict, bool]:
        """Run classifier and rules together; neither failure affects the other."""
        assert self.classifier is not None
        classifier_result, rule_result = await asyncio.gather(
            self.classifier.classify(
                message, context.child_age, context.context_string()
            ),
            self._evaluate_rules(message),
            return_exceptions=True,
        )

        fallback_used = False
        if isinstance(classifier_result, BaseException):
            if isinstance(classifier_result, asyncio.CancelledError):
                raise classifier_result
            logger.warning(
                "classifier_failed_using_fallback",
                error=str(classifier_result),
                error_type=type(classifier_result).__name__,
            )
            self.health.mark_down()
            self.metrics.record_error("dependency")
            classifier_verdict = self.fallback.evaluate(message, context)
            fallback_used = True
        else:
            self.health.mark_up()
            classifier_verdict = classifier_result

        if isinstance(rule_result, BaseException):
            if isinstance(rule_result, asyncio.CancelledError):
                raise rule_result
            logger.error("pattern_rules_failed", error=str(rule_result))
            self.metrics.record_error("rules")
            rule_verdict = SafetyVerdict.fail_safe(
                reason="Rule engine error - using safe defaults",
                flagged_terms=["rule_engine_error"],
            )
        else:
            rule_verdict = rule_result

        return classifier_verdict, rule_verdict, fallback_used

    async def _evaluate_rules(self, message: str) -> SafetyVerdict:
        return self.rule_set.evaluate(message)

    async def _escalate(
        self,
        message: str,
        verdict: SafetyVerdict,
        context: SafetyContext,
        event: SafetyEvent | None,
    ) -> None:
        if self.gateway is None:
            logger.warning("escalation_skipped_no_gateway", child_id=context.child_id)
            return
        try:
            outcome = await self.gateway.escalate(message, verdict, context, event)
        except Exception as e:
            logger.error("escalation_error", child_id=context.child_id, error=str(e))
            self.metrics.record_error("persistence")
            self.metrics.record_escalation(None)
            return
        self.metrics.record_escalation(outcome.delivered if outcome else None)

    def _schedule_health_probe(self) -> None:
        """Re-check an unconfirmed classifier in the background."""
        if self.classifier is None or not self.classifier.is_available:
            return
        if not self.health.is_stale():
            return
        if self._probe_task is not None and not self._probe_task.done():
            return
        self._probe_task = asyncio.create_task(self.check_classifier_health())

    async def check_classifier_health(self) -> bool:
        """Probe the classifier and record the result."""
        if self.classifier is None:
            return False
        try:
            await self.classifier.health_check()
        except Exception as e:
            logger.warning("classifier_health_check_failed", error=str(e))
            self.health.mark_down()
            return False
        self.health.mark_up()
        return True

    async def validate_batch(
        self,
        items: Sequence[tuple[str, SafetyContext]],
        parallel: bool = True,
        batch_size: int | None = None,
    ) -> list[SafetyVerdict]:
        """
        Validate many messages, preserving input order in the result.

        In parallel mode items run concurrently in fixed-size batches. A
        failing item gets a fail-safe verdict and does not affect the rest.
        """
        if not parallel:
            return [await self._validate_isolated(m, c) for m, c in items]

        size = max(1, batch_size or self.batch_size)
        results: list[SafetyVerdict] = []
        for offset in range(0, len(items), size):
            chunk = items[offset : offset + size]
            results.extend(
                await asyncio.gather(
                    *(self._validate_isolated(m, c) for m, c in chunk)
                )
            )
        return results

    async def _validate_isolated(
        self, message: str, context: SafetyContext
    ) -> SafetyVerdict:
        try:
            return await self.validate(message, context)
        except Exception as e:
            logger.error("batch_item_error", child_id=context.child_id, error=str(e))
            return SafetyVerdict.fail_safe(
                reason="Batch validation error",
                severity=SafetySeverity.SERIOUS,
                action=SafetyAction.BLOCK,
                flagged_terms=["system_error"],
                fallback_used=True,
            )

    def get_safety_response(self, verdict: SafetyVerdict, child_age: int) -> str:
        """Child-facing response text for a verdict."""
        return self.responder.get_safety_response(verdict, child_age)

    def response_for(self, verdict: SafetyVerdict, child_age: int) -> str | None:
        """Child-facing text, or None for a plain allow with no supportive tag."""
        if (
            verdict.action == SafetyAction.ALLOW
            and self.responder.template_type_for(verdict) is None
        ):
            return None
        return self.get_safety_response(verdict, child_age)

    def get_metrics(self) -> dict[str, Any]:
        """Read-only view of cache, classifier health and pipeline counters."""
        return {
            "cache": self.cache.stats(),
            "fallback": self.fallback.get_status(),
            "classifier_available": bool(
                self.classifier and self.classifier.is_available
            ),
            "pipeline": self.metrics.snapshot(),
        }

    def start(self) -> None:
        """Start background maintenance. Requires a running event loop."""
        self.cache.start_cleanup_task(self.cleanup_interval_seconds)
        self._schedule_health_probe()

    async def aclose(self) -> None:
        """Stop background maintenance tasks."""
        await self.cache.stop_cleanup_task()
        task, self._probe_task = self._probe_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


def create_orchestrator(
    settings: Settings | None = None,
    store: SafetyStore | None = None,
    notifier: Notifier | None = None,
    classifier: RemoteClassifier | None = None,
) -> ValidationOrchestrator:
    """Build a fully wired orchestrator from settings."""
    settings = settings or get_settings()

    responder = SafetyResponder(lambda: load_safety_responses(settings.responses_path))

    if classifier is None and settings.validate_api_key():
        classifier = RemoteClassifier(settings=settings)

    if notifier is None:
        if settings.resend_api_key:
            notifier = ResendEmailNotifier(
                api_key=settings.resend_api_key,
                from_address=settings.alert_from_address,
            )
        else:
            notifier = LoggingNotifier()

    gateway = EscalationGateway(
        store=store or InMemorySafetyStore(),
        notifier=notifier,
        responder=responder,
    )

    return ValidationOrchestrator(
        rule_set=PatternRuleSet.from_path(settings.rules_path),
        fallback=FallbackValidator(
            health=ClassifierHealth(settings.health_check_interval_seconds)
        ),
        cache=ResultCache(
            max_size=settings.cache_max_size,
            ttl_seconds=settings.cache_ttl_seconds,
        ),
        responder=responder,
        classifier=classifier,
        gateway=gateway,
        batch_size=settings.batch_size,
        cleanup_interval_seconds=settings.cache_cleanup_interval_seconds,
    )
