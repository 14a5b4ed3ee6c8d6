"""
Remote safety classifier backed by Google Gemini.

Sends the message with a short safety prompt (child age plus recent
context) and expects a small JSON verdict back:

    {"safe": bool, "severity": 0-3, "reason": str,
     "action": "allow|warn|block|escalate", "flagged_terms": [str]}

Network errors, timeouts and a missing API key raise DependencyFailure so
the caller can mark the classifier down and use the fallback validator.
A reply that is not valid JSON is answered with a conservative block.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from google import genai
from google.genai import types

from buddysafe.config import Settings, get_settings
from buddysafe.logging import get_logger
from buddysafe.safety.base import (
    DependencyFailure,
    SafetyAction,
    SafetySeverity,
    SafetyVerdict,
)

logger = get_logger(__name__)

SAFETY_PROMPT = """You are a safety validator for child conversations (age {age}).

Analyze the message for:
- Self-harm indicators
- Personal information sharing
- Inappropriate content requests
- Emotional distress
{context_line}
Return JSON format:
{{
  "safe": true/false,
  "severity": 0-3,
  "reason": "explanation",
  "action": "allow/warn/block/escalate",
  "flagged_terms": ["terms"]
}}"""

HEALTH_CHECK_MESSAGE = "hello"


class RemoteClassifier:
    """Thin adapter around a Gemini model used as a content classifier."""

    def __init__(
        self,
        api_key: str | None = None,
        model_name: str | None = None,
        timeout_seconds: float | None = None,
        client: Any = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self._api_key = api_key if api_key is not None else settings.google_api_key
        self._model_name = model_name or settings.classifier_model
        self.timeout_seconds = timeout_seconds or settings.classifier_timeout_seconds
        self._temperature = settings.classifier_temperature
        self._max_output_tokens = settings.classifier_max_output_tokens
        self._client = client

    @property
    def name(self) -> str:
        return "gemini_classifier"

    @property
    def is_available(self) -> bool:
        """Check if a client or API key is configured."""
        return self._client is not None or bool(
            self._api_key and self._api_key != "your_api_key_here"
        )

    def _get_client(self):
        """Lazy-load the Gemini client."""
        if self._client is None:
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    @staticmethod
    def build_prompt(age: int, context: str = "") -> str:
        context_line = f"\nContext: {context}\n" if context else ""
        return SAFETY_PROMPT.format(age=age, context_line=context_line)

    async def classify(
        self, message: str, age: int, context: str = ""
    ) -> SafetyVerdict:
        """
        Classify one message.

        Raises:
            DependencyFailure: the classifier is not configured, the call
                failed or it did not answer within the timeout.
        """
        if not self.is_available:
            raise DependencyFailure("Gemini API key not configured")

        try:
            text = await asyncio.wait_for(
                self._generate(self.build_prompt(age, context), message),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.warning("classifier_timeout", timeout_s=self.timeout_seconds)
            raise DependencyFailure(
                f"Classifier timed out after {self.timeout_seconds}s"
            ) from e
        except DependencyFailure:
            raise
        except Exception as e:
            logger.error("classifier_call_error", error=str(e))
            raise DependencyFailure(f"Classifier call failed: {e}") from e

        return self.parse_response(text)

    async def health_check(self) -> bool:
        """Send a benign message; raises DependencyFailure when unreachable."""
        await self.classify(HEALTH_CHECK_MESSAGE, age=10)
        return True

    async def _generate(self, system_prompt: str, message: str) -> str:
        client = self._get_client()
        response = await client.aio.models.generate_content(
            model=self._model_name,
            contents=message,
            config=types.GenerateContentConfig(
                system_instruction=system_prompt,
                temperature=self._temperature,
                max_output_tokens=self._max_output_tokens,
                response_mime_type="application/json",
            ),
        )
        return getattr(response, "text", None) or ""

    def parse_response(self, text: str) -> SafetyVerdict:
        """Turn the model's JSON reply into a verdict."""
        cleaned = text.strip()
        if cleaned.startswith("```json"):
            cleaned = cleaned[7:]
        elif cleaned.startswith("```"):
            cleaned = cleaned[3:]
        if cleaned.endswith("```"):
            cleaned = cleaned[:-3]

        try:
            payload = json.loads(cleaned.strip())
            if not isinstance(payload, dict):
                raise ValueError("expected a JSON object")
        except ValueError as e:
            logger.warning("classifier_json_parse_error", error=str(e))
            return SafetyVerdict.fail_safe(
                reason="Safety validation failed - could not parse response",
                action=SafetyAction.BLOCK,
            )

        is_safe = payload.get("safe") is True
        try:
            severity = int(payload.get("severity") or 0)
        except (TypeError, ValueError):
            severity = SafetySeverity.MODERATE
        severity = max(SafetySeverity.NONE, min(SafetySeverity.SERIOUS, severity))

        try:
            action = SafetyAction(payload.get("action") or "allow")
        except ValueError:
            action = SafetyAction.ALLOW if is_safe else SafetyAction.BLOCK

        # Keep action consistent with severity
        if severity == SafetySeverity.NONE:
            action = SafetyAction.ALLOW
        elif severity == SafetySeverity.SERIOUS and action not in (
            SafetyAction.ESCALATE,
            SafetyAction.BLOCK,
        ):
            action = SafetyAction.ESCALATE

        terms = payload.get("flagged_terms") or []
        if not isinstance(terms, list):
            terms = [terms]

        return SafetyVerdict(
            is_safe=is_safe,
            severity=int(severity),
            reason=str(payload.get("reason") or ""),
            action=action,
            flagged_terms=[str(t) for t in terms],
        )
