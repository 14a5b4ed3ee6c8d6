"""
End-to-end tests for the validation pipeline with a fake remote classifier.
"""

import asyncio

import pytest

from buddysafe.config import DATA_DIR
from buddysafe.safety.base import (
    DependencyFailure,
    SafetyAction,
    SafetyContext,
    SafetyVerdict,
)
from buddysafe.safety.cache import ResultCache
from buddysafe.safety.classifiers import PatternRuleSet
from buddysafe.safety.escalation import (
    ChildRecord,
    EscalationGateway,
    InMemorySafetyStore,
    LoggingNotifier,
    NotificationStatus,
)
from buddysafe.safety.fallback import FallbackValidator
from buddysafe.safety.orchestrator import ValidationOrchestrator
from buddysafe.safety.responses import SafetyResponder

CHILD = ChildRecord(
    child_id="child_orch",
    name="Sam",
    parent_id="parent_orch",
    parent_email="sam.parent@example.com",
)


class FakeClassifier:
    """Stands in for the Gemini classifier."""

    name = "fake_classifier"
    is_available = True

    def __init__(self, verdict=None, error=None):
        self.verdict = verdict or SafetyVerdict.allow()
        self.error = error
        self.calls = []
        self.health_checks = 0

    async def classify(self, message, age, context=""):
        self.calls.append((message, age, context))
        if self.error is not None:
            raise self.error
        return self.verdict.annotate()

    async def health_check(self):
        self.health_checks += 1
        if self.error is not None:
            raise self.error
        return True


def _context(age=8, recent=()):
    return SafetyContext(
        child_id=CHILD.child_id,
        child_age=age,
        conversation_id="conv_orch",
        recent_messages=recent,
    )


def _build(classifier=None, confirm_classifier=True):
    store = InMemorySafetyStore()
    store.register_child(CHILD)
    notifier = LoggingNotifier()
    responder = SafetyResponder(
        lambda: {"escalate_response": {"7-8": "please talk to a grown-up"}}
    )
    fallback = FallbackValidator()
    if confirm_classifier:
        fallback.health.mark_up()
    orchestrator = ValidationOrchestrator(
        rule_set=PatternRuleSet.from_path(DATA_DIR / "safety_rules.json"),
        fallback=fallback,
        cache=ResultCache(max_size=100),
        responder=responder,
        classifier=classifier,
        gateway=EscalationGateway(store, notifier, responder),
    )
    return orchestrator, store, notifier


async def test_personal_info_request_escalates_to_parent():
    classifier = FakeClassifier()
    orchestrator, store, notifier = _build(classifier)

    verdict = await orchestrator.validate("Where do you live?", _context(age=8))

    assert verdict.is_safe is False
    assert verdict.severity == 3
    assert verdict.action == SafetyAction.ESCALATE
    assert "personal_info" in verdict.flagged_terms
    assert verdict.fallback_used is False

    events = store.events_for_child(CHILD.child_id)
    assert len(events) == 1
    assert events[0].parent_notified_at is not None
    notifications = list(store.notifications.values())
    assert len(notifications) == 1
    assert notifications[0].status == NotificationStatus.SENT
    assert notifier.sent[0]["recipient"] == "sam.parent@example.com"


async def test_benign_message_is_allowed_and_cached():
    classifier = FakeClassifier()
    orchestrator, store, _ = _build(classifier)

    first = await orchestrator.validate("I love my dog!", _context(age=10))
    second = await orchestrator.validate("I love my dog!", _context(age=10))

    assert first.is_safe is True
    assert first.severity == 0
    assert first.action == SafetyAction.ALLOW
    assert first.cache_hit is False
    assert first.processing_time_ms is not None

    assert second.cache_hit is True
    assert second.is_safe is True
    assert len(classifier.calls) == 1
    assert store.events == {}


async def test_cache_hit_for_adjacent_age():
    classifier = FakeClassifier()
    orchestrator, _, _ = _build(classifier)

    await orchestrator.validate("I love my dog!", _context(age=10))
    verdict = await orchestrator.validate("I love my dog!", _context(age=11))

    assert verdict.cache_hit is True
    assert len(classifier.calls) == 1


async def test_serious_verdicts_are_re_evaluated():
    classifier = FakeClassifier()
    orchestrator, store, _ = _build(classifier)

    await orchestrator.validate("Where do you live?", _context())
    again = await orchestrator.validate("Where do you live?", _context())

    assert again.cache_hit is False
    assert len(classifier.calls) == 2
    assert len(store.events) == 2


async def test_classifier_timeout_uses_fallback():
    classifier = FakeClassifier(error=DependencyFailure("timed out"))
    orchestrator, _, _ = _build(classifier)

    verdict = await orchestrator.validate("I love my dog!", _context())

    assert verdict.fallback_used is True
    assert verdict.severity == 0
    assert verdict.is_safe is True
    assert orchestrator.health.is_down is True
    assert orchestrator.get_metrics()["pipeline"]["errors"] == {"dependency": 1}


async def test_down_classifier_is_skipped():
    classifier = FakeClassifier(error=DependencyFailure("unreachable"))
    orchestrator, _, _ = _build(classifier)

    await orchestrator.validate("first message", _context())
    verdict = await orchestrator.validate("second message", _context())

    assert verdict.fallback_used is True
    assert len(classifier.calls) == 1


async def test_unconfirmed_classifier_is_probed():
    classifier = FakeClassifier()
    orchestrator, _, _ = _build(classifier, confirm_classifier=False)

    verdict = await orchestrator.validate("I love my dog!", _context())
    assert verdict.fallback_used is True
    assert classifier.calls == []

    await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert classifier.health_checks == 1
    assert orchestrator.should_use_fallback() is False

    verdict = await orchestrator.validate("hello there friend", _context())
    assert verdict.fallback_used is False
    await orchestrator.aclose()


async def test_fallback_only_without_classifier():
    orchestrator, _, _ = _build(classifier=None)

    verdict = await orchestrator.validate("Where do you live?", _context())

    assert verdict.fallback_used is True
    assert verdict.severity == 3
    assert verdict.action == SafetyAction.ESCALATE
    assert "fallback_critical" in verdict.flagged_terms


async def test_unexpected_error_blocks(monkeypatch):
    classifier = FakeClassifier()
    orchestrator, _, _ = _build(classifier)

    def broken_get(*args, **kwargs):
        raise RuntimeError("cache corrupted")

    monkeypatch.setattr(orchestrator.cache, "get", broken_get)

    verdict = await orchestrator.validate("I love my dog!", _context())

    assert verdict.is_safe is False
    assert verdict.severity == 3
    assert verdict.action == SafetyAction.BLOCK
    assert verdict.flagged_terms == ["system_error"]
    assert verdict.fallback_used is True


async def test_rule_failure_is_isolated(monkeypatch):
    classifier = FakeClassifier()
    orchestrator, _, _ = _build(classifier)

    def broken_rules(message):
        raise RuntimeError("regex engine exploded")

    monkeypatch.setattr(orchestrator.rule_set, "evaluate", broken_rules)

    verdict = await orchestrator.validate("I love my dog!", _context())

    assert verdict.severity == 2
    assert verdict.action == SafetyAction.WARN
    assert "rule_engine_error" in verdict.flagged_terms
    assert verdict.fallback_used is False


async def test_moderate_verdict_is_logged_not_escalated():
    classifier = FakeClassifier()
    orchestrator, store, notifier = _build(classifier)

    verdict = await orchestrator.validate("this game is shit", _context())

    assert verdict.severity == 2
    assert len(store.events) == 1
    assert store.notifications == {}
    assert notifier.sent == []


async def test_classifier_severity_wins_over_rules():
    classifier = FakeClassifier(
        SafetyVerdict(
            is_safe=False,
            severity=2,
            reason="unkind tone",
            action=SafetyAction.BLOCK,
            flagged_terms=["tone"],
        )
    )
    orchestrator, _, _ = _build(classifier)

    verdict = await orchestrator.validate("can we play minecraft", _context())

    assert verdict.severity == 2
    assert verdict.action == SafetyAction.BLOCK
    assert verdict.reason == "unkind tone"
    assert verdict.flagged_terms == ["tone", "gaming"]


async def test_classifier_receives_recent_context():
    classifier = FakeClassifier()
    orchestrator, _, _ = _build(classifier)

    await orchestrator.validate(
        "and then?", _context(recent=("newest", "middle", "oldest", "ancient"))
    )

    assert classifier.calls[0][2] == "oldest | middle | newest"


@pytest.mark.parametrize("parallel", [True, False])
async def test_batch_preserves_order(parallel):
    classifier = FakeClassifier()
    orchestrator, _, _ = _build(classifier)
    items = [
        ("I love my dog!", _context()),
        ("Where do you live?", _context()),
        ("minecraft is fun", _context()),
        ("I feel so sad", _context()),
        ("homework time", _context()),
        ("hello again", _context()),
        ("this is shit", _context()),
    ]

    verdicts = await orchestrator.validate_batch(items, parallel=parallel, batch_size=3)

    assert [v.severity for v in verdicts] == [0, 3, 1, 1, 1, 0, 2]


async def test_batch_item_failure_is_isolated(monkeypatch):
    classifier = FakeClassifier()
    orchestrator, _, _ = _build(classifier)
    original = orchestrator.validate

    async def flaky(message, context):
        if message == "boom":
            raise RuntimeError("unexpected")
        return await original(message, context)

    monkeypatch.setattr(orchestrator, "validate", flaky)

    verdicts = await orchestrator.validate_batch(
        [("I love my dog!", _context()), ("boom", _context())]
    )

    assert verdicts[0].is_safe is True
    assert verdicts[1].severity == 3
    assert verdicts[1].action == SafetyAction.BLOCK


async def test_get_metrics():
    classifier = FakeClassifier()
    orchestrator, _, _ = _build(classifier)

    await orchestrator.validate("I love my dog!", _context())
    await orchestrator.validate("I love my dog!", _context())
    await orchestrator.validate("Where do you live?", _context())

    metrics = orchestrator.get_metrics()

    assert metrics["cache"]["hits"] == 1
    assert metrics["cache"]["size"] == 1
    assert metrics["fallback"]["is_classifier_down"] is False
    assert metrics["classifier_available"] is True
    pipeline = metrics["pipeline"]
    assert pipeline["evaluations"] == 3
    assert pipeline["cache_hits"] == 1
    assert pipeline["by_severity"] == {"0": 2, "3": 1}
    assert pipeline["escalations"] == {"attempted": 1, "delivered": 1, "failed": 0}


async def test_safety_response_for_escalation():
    orchestrator, _, _ = _build(FakeClassifier())

    verdict = await orchestrator.validate("Where do you live?", _context(age=8))

    assert orchestrator.get_safety_response(verdict, 8) == "please talk to a grown-up"


async def test_supportive_verdict_gets_response_text():
    orchestrator, _, _ = _build(FakeClassifier())

    supportive = await orchestrator.validate("I feel so sad", _context(age=8))
    plain = await orchestrator.validate("I love my dog!", _context(age=8))

    assert supportive.is_safe is True
    assert supportive.severity == 1
    assert "emotional_support_needed" in supportive.flagged_terms
    assert orchestrator.response_for(supportive, 8) is not None
    assert orchestrator.response_for(plain, 8) is None


async def test_flagged_verdict_gets_response_text():
    orchestrator, _, _ = _build(FakeClassifier())

    verdict = await orchestrator.validate("Where do you live?", _context(age=8))

    assert orchestrator.response_for(verdict, 8) == "please talk to a grown-up"
