"""
Loading and compiling safety rule sets and response templates.

Rule sets and child-facing response templates live in JSON files so they
can be updated without touching code. Loaded files are cached per path;
call ``clear_config_cache()`` to pick up edits.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

from buddysafe.logging import get_logger
from buddysafe.safety.base import (
    EMOTIONAL_SUPPORT_TAG,
    CompiledPattern,
    ConfigurationFailure,
    RuleCategory,
)

logger = get_logger(__name__)

# JSON group name for each rule category
RULE_GROUPS: dict[RuleCategory, str] = {
    RuleCategory.CRITICAL: "criticalPatterns",
    RuleCategory.EMOTIONAL_SUPPORT: "emotionalSupportPatterns",
    RuleCategory.HIGH_CONCERN: "highConcernPatterns",
    RuleCategory.CONTEXTUAL_GUIDANCE: "contextualGuidancePatterns",
    RuleCategory.YOUTH_CULTURE: "youthCulturePatterns",
    RuleCategory.GAMING: "gamingContextPatterns",
    RuleCategory.SCHOOL: "schoolPatterns",
}

# JavaScript-style regex flags used in rule files
_FLAG_MAP = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "u": 0,
    "g": 0,
}

CompiledRuleSet = dict[RuleCategory, list[CompiledPattern]]

_json_cache: dict[Path, dict[str, Any]] = {}
_compiled_cache: dict[Path, CompiledRuleSet] = {}


def _load_json(path: Path, what: str) -> dict[str, Any]:
    path = Path(path)
    if path in _json_cache:
        return _json_cache[path]
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.error("safety_config_load_error", kind=what, path=str(path), error=str(e))
        raise ConfigurationFailure(f"Could not load {what} from {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationFailure(f"{what} file {path} must contain a JSON object")
    _json_cache[path] = data
    return data


def load_safety_rules(path: Path) -> dict[str, Any]:
    """Load the raw safety rules document."""
    return _load_json(path, "safety rules")


def load_safety_responses(path: Path) -> dict[str, Any]:
    """Load the age-banded response templates document."""
    data = _load_json(path, "safety responses")
    responses = data.get("safetyResponses", data)
    if not isinstance(responses, dict):
        raise ConfigurationFailure(f"safetyResponses in {path} must be an object")
    return responses


def _compile_flags(flags: str) -> int:
    compiled = 0
    for flag in flags or "":
        if flag not in _FLAG_MAP:
            raise ConfigurationFailure(f"Unsupported regex flag: {flag!r}")
        compiled |= _FLAG_MAP[flag]
    return compiled


def compile_rule_set(config: dict[str, Any]) -> CompiledRuleSet:
    """
    Compile a raw rules document into matchers grouped by category.

    Every category group must be present, even if empty. A missing group
    or an invalid pattern fails the whole rule set rather than silently
    dropping a category.
    """
    compiled: CompiledRuleSet = {}
    for category, group in RULE_GROUPS.items():
        section = config.get(group)
        if not isinstance(section, dict) or not isinstance(
            section.get("patterns"), list
        ):
            raise ConfigurationFailure(f"Rule group {group!r} is missing or malformed")

        patterns: list[CompiledPattern] = []
        for raw in section["patterns"]:
            try:
                matcher = re.compile(raw["regex"], _compile_flags(raw.get("flags", "")))
            except (KeyError, re.error) as e:
                raise ConfigurationFailure(
                    f"Invalid pattern in {group!r}: {raw!r} ({e})"
                ) from e

            support_response = raw.get("supportResponse")
            if category == RuleCategory.EMOTIONAL_SUPPORT:
                tag = support_response or EMOTIONAL_SUPPORT_TAG
            else:
                tag = raw.get("category", category.value)

            patterns.append(
                CompiledPattern(
                    category=category,
                    tag=tag,
                    matcher=matcher,
                    reason=raw.get("reason", f"{category.value} pattern matched"),
                    support_response=support_response,
                )
            )
        compiled[category] = patterns
    return compiled


def get_compiled_safety_patterns(path: Path) -> CompiledRuleSet:
    """Load and compile the rule set at ``path``, cached after first use."""
    path = Path(path)
    if path not in _compiled_cache:
        _compiled_cache[path] = compile_rule_set(load_safety_rules(path))
        logger.info(
            "safety_rules_compiled",
            path=str(path),
            counts={c.value: len(p) for c, p in _compiled_cache[path].items()},
        )
    return _compiled_cache[path]


def clear_config_cache() -> None:
    """Forget loaded rule sets and templates (hot reload)."""
    _json_cache.clear()
    _compiled_cache.clear()
