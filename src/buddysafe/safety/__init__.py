"""
Child-safety validation pipeline.

Every message bound for a child passes through:
1. A short-lived result cache
2. A remote Gemini classifier and local pattern rules, run side by side
3. A local fallback validator whenever the remote classifier is down
4. Safety event logging and parent escalation for serious content

The pipeline is fail-safe: when safety cannot be determined, the message
is warned or blocked rather than allowed.
"""

from buddysafe.safety.base import (
    ConfigurationFailure,
    DependencyFailure,
    PersistenceFailure,
    SafetyAction,
    SafetyContext,
    SafetyPipelineError,
    SafetySeverity,
    SafetyVerdict,
    UnexpectedFailure,
    combine,
)
from buddysafe.safety.cache import ResultCache
from buddysafe.safety.classifiers import PatternRuleSet, RemoteClassifier
from buddysafe.safety.escalation import (
    ChildRecord,
    EscalationGateway,
    InMemorySafetyStore,
    LoggingNotifier,
    ResendEmailNotifier,
)
from buddysafe.safety.fallback import ClassifierHealth, FallbackValidator
from buddysafe.safety.metrics import SafetyMetrics
from buddysafe.safety.orchestrator import ValidationOrchestrator, create_orchestrator
from buddysafe.safety.responses import SafetyResponder

__all__ = [
    # Base types
    "SafetyAction",
    "SafetyContext",
    "SafetySeverity",
    "SafetyVerdict",
    "combine",
    # Errors
    "SafetyPipelineError",
    "DependencyFailure",
    "ConfigurationFailure",
    "PersistenceFailure",
    "UnexpectedFailure",
    # Components
    "ResultCache",
    "PatternRuleSet",
    "RemoteClassifier",
    "FallbackValidator",
    "ClassifierHealth",
    "SafetyResponder",
    "SafetyMetrics",
    # Escalation
    "ChildRecord",
    "EscalationGateway",
    "InMemorySafetyStore",
    "LoggingNotifier",
    "ResendEmailNotifier",
    # Pipeline
    "ValidationOrchestrator",
    "create_orchestrator",
]
