"""
Safety classifiers package.

Provides the remote (Gemini) classifier and the local pattern rule set
that the validation pipeline runs side by side.
"""

from buddysafe.safety.classifiers.gemini_classifier import RemoteClassifier
from buddysafe.safety.classifiers.pattern_classifier import PatternRuleSet

__all__ = [
    "PatternRuleSet",
    "RemoteClassifier",
]
