"""
Tests for the Gemini-backed remote classifier adapter.
"""

import asyncio

import pytest

from buddysafe.config import Settings
from buddysafe.safety.base import DependencyFailure, SafetyAction
from buddysafe.safety.classifiers import RemoteClassifier


@pytest.fixture
def settings():
    return Settings(google_api_key="test-key", classifier_timeout_seconds=0.05)


@pytest.fixture
def classifier(settings):
    return RemoteClassifier(settings=settings)


class TestParseResponse:
    def test_plain_json(self, classifier):
        verdict = classifier.parse_response(
            '{"safe": true, "severity": 0, "reason": "ok", "action": "allow", '
            '"flagged_terms": []}'
        )
        assert verdict.is_safe is True
        assert verdict.severity == 0
        assert verdict.action == SafetyAction.ALLOW

    def test_fenced_json(self, classifier):
        verdict = classifier.parse_response(
            '```json\n{"safe": false, "severity": 3, "reason": "pii", '
            '"action": "escalate", "flagged_terms": ["address"]}\n```'
        )
        assert verdict.severity == 3
        assert verdict.action == SafetyAction.ESCALATE
        assert verdict.flagged_terms == ["address"]

    def test_invalid_json_blocks(self, classifier):
        verdict = classifier.parse_response("I think this is fine")
        assert verdict.is_safe is False
        assert verdict.severity == 2
        assert verdict.action == SafetyAction.BLOCK

    def test_non_object_blocks(self, classifier):
        verdict = classifier.parse_response("[1, 2, 3]")
        assert verdict.action == SafetyAction.BLOCK

    def test_severity_is_clamped(self, classifier):
        verdict = classifier.parse_response(
            '{"safe": false, "severity": 9, "reason": "x", "action": "block"}'
        )
        assert verdict.severity == 3
        assert verdict.action == SafetyAction.BLOCK

    def test_serious_allow_becomes_escalate(self, classifier):
        verdict = classifier.parse_response(
            '{"safe": false, "severity": 3, "reason": "x", "action": "allow"}'
        )
        assert verdict.action == SafetyAction.ESCALATE

    def test_unknown_action(self, classifier):
        verdict = classifier.parse_response(
            '{"safe": false, "severity": 2, "reason": "x", "action": "shrug"}'
        )
        assert verdict.action == SafetyAction.BLOCK


def test_prompt_includes_age_and_context():
    prompt = RemoteClassifier.build_prompt(8, "earlier | later")
    assert "(age 8)" in prompt
    assert "Context: earlier | later" in prompt
    assert "Context:" not in RemoteClassifier.build_prompt(8)


async def test_missing_key_is_dependency_failure():
    classifier = RemoteClassifier(settings=Settings(google_api_key=""))
    assert classifier.is_available is False
    with pytest.raises(DependencyFailure):
        await classifier.classify("hello", 8)


async def test_timeout_is_dependency_failure(classifier, monkeypatch):
    async def slow(system_prompt, message):
        await asyncio.sleep(1)
        return "{}"

    monkeypatch.setattr(classifier, "_generate", slow)

    with pytest.raises(DependencyFailure):
        await classifier.classify("hello", 8)


async def test_transport_error_is_dependency_failure(classifier, monkeypatch):
    async def broken(system_prompt, message):
        raise ConnectionError("network down")

    monkeypatch.setattr(classifier, "_generate", broken)

    with pytest.raises(DependencyFailure):
        await classifier.classify("hello", 8)


async def test_classify_sends_message_with_prompt(classifier, monkeypatch):
    calls = []

    async def fake_generate(system_prompt, message):
        calls.append((system_prompt, message))
        return '{"safe": true, "severity": 0, "reason": "ok", "action": "allow"}'

    monkeypatch.setattr(classifier, "_generate", fake_generate)

    verdict = await classifier.classify("I love my dog!", 9, "hi")

    assert verdict.is_safe is True
    assert calls[0][1] == "I love my dog!"
    assert "(age 9)" in calls[0][0]


async def test_health_check_uses_classify(classifier, monkeypatch):
    async def fake_generate(system_prompt, message):
        return '{"safe": true, "severity": 0, "reason": "ok", "action": "allow"}'

    monkeypatch.setattr(classifier, "_generate", fake_generate)

    assert await classifier.health_check() is True
