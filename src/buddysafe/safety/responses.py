"""
Child-facing safety responses.

Picks the wording a child sees after a message was flagged. Selection is
a fixed lookup on the verdict's tags and action; only the wording varies
between variants of the same template.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from typing import Any

from buddysafe.config import AgeBand, get_age_group
from buddysafe.logging import get_logger
from buddysafe.safety.base import (
    EMOTIONAL_SUPPORT_TAG,
    INAPPROPRIATE_CONTENT_TAGS,
    SWEARING_TAG,
    SafetyAction,
    SafetyVerdict,
)

logger = get_logger(__name__)

DEFAULT_RESPONSE = "i want to make sure we have good conversations! what's going on?"
UNKNOWN_TYPE_RESPONSE = (
    "I'm not sure how to respond to that, but let's talk about something else."
)

ACTION_TEMPLATES: dict[SafetyAction, str] = {
    SafetyAction.WARN: "gentle_redirect",
    SafetyAction.BLOCK: "block_response",
    SafetyAction.ESCALATE: "escalate_response",
}


class SafetyResponder:
    """
    Chooses age-appropriate response text for a verdict.

    Args:
        templates_provider: Callable returning ``{type: {age_key: str | [str]}}``.
            It may raise; failures fall back to a generic redirect line.
        rng: Random source used to pick among template variants.
    """

    def __init__(
        self,
        templates_provider: Callable[[], dict[str, Any]],
        rng: random.Random | None = None,
    ):
        self._templates_provider = templates_provider
        self._rng = rng or random.Random()

    def template_type_for(self, verdict: SafetyVerdict) -> str | None:
        """Template name for a verdict, or None for the generic line."""
        terms = verdict.flagged_terms
        if EMOTIONAL_SUPPORT_TAG in terms:
            return "emotional_support"
        if SWEARING_TAG in terms:
            return "swearing_response"
        if any(term in INAPPROPRIATE_CONTENT_TAGS for term in terms):
            return "inappropriate_content"
        return ACTION_TEMPLATES.get(verdict.action)

    def get_safety_response(self, verdict: SafetyVerdict, child_age: int) -> str:
        """Response text the child should see for this verdict."""
        response_type = self.template_type_for(verdict)
        if response_type is None:
            return DEFAULT_RESPONSE
        return self.get_response(response_type, child_age)

    def get_response(self, response_type: str, child_age: int) -> str:
        try:
            templates = self._templates_provider()
        except Exception as e:
            logger.error("safety_response_config_error", error=str(e))
            return DEFAULT_RESPONSE

        by_age = templates.get(response_type)
        if not by_age:
            return UNKNOWN_TYPE_RESPONSE

        band = AgeBand.for_age(child_age)
        choices = by_age.get(band.value) if band else None
        if not choices:
            choices = by_age.get(get_age_group(child_age))
        if not choices:
            return DEFAULT_RESPONSE

        if isinstance(choices, list):
            return self._rng.choice(choices)
        if isinstance(choices, str):
            return choices
        return DEFAULT_RESPONSE
