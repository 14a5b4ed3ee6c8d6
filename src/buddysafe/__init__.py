"""
BuddySafe: message safety validation for children's AI companions.

Checks every message exchanged with a child against a remote Gemini
classifier and local pattern rules, falls back to on-device heuristics
when the classifier is unreachable, caches results, and escalates
serious content to the child's parent.
"""

__version__ = "0.1.0"

from buddysafe.config import Settings, get_settings
from buddysafe.safety import (
    SafetyAction,
    SafetyContext,
    SafetySeverity,
    SafetyVerdict,
    ValidationOrchestrator,
    create_orchestrator,
)

__all__ = [
    "Settings",
    "get_settings",
    "SafetyAction",
    "SafetyContext",
    "SafetySeverity",
    "SafetyVerdict",
    "ValidationOrchestrator",
    "create_orchestrator",
    "__version__",
]
