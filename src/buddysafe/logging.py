"""
Logging and observability for BuddySafe.

Provides structured logging with a per-validation trace that records
the pipeline steps taken for one message.
"""

from __future__ import annotations

import logging
import time
from typing import Any
from uuid import uuid4

import structlog

from buddysafe.config import get_settings


def configure_logging() -> None:
    """Configure structured logging for the application."""
    settings = get_settings()

    log_level = getattr(settings, "log_level", "INFO")
    if not isinstance(log_level, str):
        log_level = "INFO"

    is_dev = getattr(settings, "is_development", True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            # Use pretty console output in development
            (
                structlog.dev.ConsoleRenderer()
                if is_dev
                else structlog.processors.JSONRenderer()
            ),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance with the given name."""
    return structlog.get_logger(name)


class ValidationTrace:
    """
    Context manager tracing a single message validation.

    Logs the start and end of the validation with a short trace id and
    collects the pipeline steps (cache lookup, chosen path, combination,
    escalation) so they can be inspected after the fact.
    """

    def __init__(
        self,
        child_id: str | None = None,
        conversation_id: str | None = None,
        operation: str = "validate",
    ):
        self.operation = operation
        self.trace_id = str(uuid4())[:8]
        self.child_id = child_id
        self.conversation_id = conversation_id
        self.start = time.perf_counter()
        self.steps: list[dict[str, Any]] = []
        self.logger = get_logger("trace")

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.start) * 1000

    def __enter__(self) -> "ValidationTrace":
        self.start = time.perf_counter()
        self.logger.debug(
            "trace_start",
            trace_id=self.trace_id,
            operation=self.operation,
            child_id=self.child_id,
            conversation_id=self.conversation_id,
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.logger.debug(
            "trace_end",
            trace_id=self.trace_id,
            operation=self.operation,
            duration_ms=round(self.elapsed_ms, 2),
            step_count=len(self.steps),
            error=str(exc_val) if exc_val else None,
        )

    def step(self, name: str, **data: Any) -> None:
        """Record a pipeline step within this trace."""
        entry = {"step": name, "at_ms": round(self.elapsed_ms, 2), **data}
        self.steps.append(entry)
        self.logger.debug(f"trace_step_{name}", trace_id=self.trace_id, **data)


# Configure logging on module import
configure_logging()
