"""
Safety event logging and parent escalation.

The pipeline hands flagged messages to an EscalationGateway, which:
- Persists a safety event for every moderate or serious verdict
- For serious verdicts, looks up the child's parent, creates a parent
  notification, attempts delivery and records whether it was sent

Storage and delivery are pluggable. InMemorySafetyStore and
LoggingNotifier serve development and tests; ResendEmailNotifier sends
real alert emails.
"""

from __future__ import annotations

import asyncio
import html
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

import aiohttp

from buddysafe.logging import get_logger
from buddysafe.safety.base import (
    PersistenceFailure,
    SafetyContext,
    SafetySeverity,
    SafetyVerdict,
)
from buddysafe.safety.responses import SafetyResponder

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SafetyEventType(str, Enum):
    MESSAGE_FLAGGED = "message_flagged"
    ESCALATED_CONTENT = "escalated_content"


class SafetyEventStatus(str, Enum):
    LOGGED = "logged"  # Kept for dashboard review
    ACTIVE = "active"  # Needs parent attention
    RESOLVED = "resolved"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class SafetyEvent:
    """A flagged message recorded for review."""

    event_type: SafetyEventType
    severity_level: int
    child_id: str
    trigger_content: str
    ai_reasoning: str
    context_summary: str
    status: SafetyEventStatus
    conversation_id: str | None = None
    parent_notified_at: datetime | None = None
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=_now)


@dataclass
class ParentNotification:
    """An alert addressed to a parent about a serious safety event."""

    parent_id: str
    child_id: str
    subject: str
    content: str
    safety_event_id: str
    conversation_id: str | None = None
    notification_type: str = "safety_alert"
    delivery_method: str = "email"
    status: NotificationStatus = NotificationStatus.PENDING
    sent_at: datetime | None = None
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=_now)


@dataclass
class ChildRecord:
    """What escalation needs to know about a child and their parent."""

    child_id: str
    name: str
    parent_id: str
    parent_email: str


@dataclass
class EscalationOutcome:
    event: SafetyEvent
    notification: ParentNotification
    response_text: str
    delivered: bool


@runtime_checkable
class SafetyStore(Protocol):
    """Persistence for safety events and parent notifications."""

    async def create_safety_event(self, event: SafetyEvent) -> SafetyEvent: ...

    async def update_safety_event(
        self, event_id: str, **fields: Any
    ) -> SafetyEvent: ...

    async def get_child(self, child_id: str) -> ChildRecord | None: ...

    async def create_notification(
        self, notification: ParentNotification
    ) -> ParentNotification: ...

    async def update_notification(
        self, notification_id: str, **fields: Any
    ) -> ParentNotification: ...


@runtime_checkable
class Notifier(Protocol):
    """Delivers a safety alert to a parent. Returns True on success."""

    async def send_safety_alert(
        self,
        recipient: str,
        child_name: str,
        severity: int,
        trigger_content: str,
        response_text: str,
    ) -> bool: ...


class InMemorySafetyStore:
    """Process-local store for events, notifications and child records."""

    def __init__(self) -> None:
        self.events: dict[str, SafetyEvent] = {}
        self.notifications: dict[str, ParentNotification] = {}
        self.children: dict[str, ChildRecord] = {}

    def register_child(self, child: ChildRecord) -> None:
        self.children[child.child_id] = child

    async def create_safety_event(self, event: SafetyEvent) -> SafetyEvent:
        self.events[event.id] = event
        return event

    async def update_safety_event(self, event_id: str, **fields: Any) -> SafetyEvent:
        event = self.events.get(event_id)
        if event is None:
            raise PersistenceFailure(f"Unknown safety event {event_id}")
        for name, value in fields.items():
            setattr(event, name, value)
        return event

    async def get_child(self, child_id: str) -> ChildRecord | None:
        return self.children.get(child_id)

    async def create_notification(
        self, notification: ParentNotification
    ) -> ParentNotification:
        self.notifications[notification.id] = notification
        return notification

    async def update_notification(
        self, notification_id: str, **fields: Any
    ) -> ParentNotification:
        notification = self.notifications.get(notification_id)
        if notification is None:
            raise PersistenceFailure(f"Unknown notification {notification_id}")
        for name, value in fields.items():
            setattr(notification, name, value)
        return notification

    def events_for_child(self, child_id: str) -> list[SafetyEvent]:
        return [e for e in self.events.values() if e.child_id == child_id]


class LoggingNotifier:
    """Development notifier: logs the alert and reports success."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send_safety_alert(
        self,
        recipient: str,
        child_name: str,
        severity: int,
        trigger_content: str,
        response_text: str,
    ) -> bool:
        self.sent.append(
            {
                "recipient": recipient,
                "child_name": child_name,
                "severity": severity,
            }
        )
        logger.info(
            "parent_alert_logged",
            recipient=recipient,
            child_name=child_name,
            severity=severity,
        )
        return True


class ResendEmailNotifier:
    """Sends parent alert emails through the Resend HTTP API."""

    API_URL = "https://api.resend.com/emails"

    def __init__(
        self,
        api_key: str,
        from_address: str,
        timeout_seconds: float = 10.0,
    ):
        self._api_key = api_key
        self.from_address = from_address
        self.timeout_seconds = timeout_seconds

    def build_email(
        self,
        recipient: str,
        child_name: str,
        severity: int,
        trigger_content: str,
        response_text: str,
    ) -> dict[str, Any]:
        level = "High" if severity >= SafetySeverity.SERIOUS else "Moderate"
        return {
            "from": self.from_address,
            "to": [recipient],
            "subject": f"Safety Alert: {child_name}",
            "html": (
                f"<p>{html.escape(child_name)} shared something that needs your "
                f"attention ({level} concern).</p>"
                f"<p><strong>Message:</strong> {html.escape(trigger_content)}</p>"
                f"<p><strong>What they were told:</strong> "
                f"{html.escape(response_text)}</p>"
                "<p>Please review the conversation in your parent dashboard.</p>"
            ),
        }

    async def send_safety_alert(
        self,
        recipient: str,
        child_name: str,
        severity: int,
        trigger_content: str,
        response_text: str,
    ) -> bool:
        body = self.build_email(
            recipient, child_name, severity, trigger_content, response_text
        )
        headers = {"Authorization": f"Bearer {self._api_key}"}
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    self.API_URL, json=body, headers=headers
                ) as response:
                    if 200 <= response.status < 300:
                        return True
                    error_text = await response.text()
                    logger.error(
                        "parent_alert_email_rejected",
                        status=response.status,
                        error=error_text[:200],
                    )
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("parent_alert_email_error", error=str(e))
            return False


class EscalationGateway:
    """
    Records flagged messages and alerts parents about serious ones.

    Failures while writing or sending are logged and reported through the
    returned values; they never propagate to the validation caller.
    """

    def __init__(
        self,
        store: SafetyStore,
        notifier: Notifier,
        responder: SafetyResponder,
    ):
        self.store = store
        self.notifier = notifier
        self.responder = responder

    async def log_event(
        self, message: str, verdict: SafetyVerdict, context: SafetyContext
    ) -> SafetyEvent | None:
        """Persist a safety event for a moderate or serious verdict."""
        serious = verdict.severity >= SafetySeverity.SERIOUS
        event = SafetyEvent(
            event_type=(
                SafetyEventType.ESCALATED_CONTENT
                if serious
                else SafetyEventType.MESSAGE_FLAGGED
            ),
            severity_level=int(verdict.severity),
            child_id=context.child_id,
            conversation_id=context.conversation_id,
            trigger_content=message,
            ai_reasoning=verdict.reason,
            context_summary=(
                f"Escalated: {', '.join(verdict.flagged_terms)}"
                if serious
                else f"Age: {context.child_age}, Action: {verdict.action.value}"
            ),
            status=SafetyEventStatus.ACTIVE if serious else SafetyEventStatus.LOGGED,
        )
        try:
            saved = await self.store.create_safety_event(event)
        except Exception as e:
            logger.error(
                "safety_event_log_failed", child_id=context.child_id, error=str(e)
            )
            return None

        logger.info(
            "safety_event_logged",
            event_id=saved.id,
            child_id=context.child_id,
            severity=saved.severity_level,
            event_type=saved.event_type.value,
        )
        return saved

    async def escalate(
        self,
        message: str,
        verdict: SafetyVerdict,
        context: SafetyContext,
        event: SafetyEvent | None = None,
    ) -> EscalationOutcome | None:
        """
        Notify the child's parent about a serious verdict.

        Reuses ``event`` when the caller already logged one. Returns None
        when nothing could be sent (unknown child or a storage failure).
        """
        try:
            if event is None:
                event = await self.log_event(message, verdict, context)
                if event is None:
                    raise PersistenceFailure("Could not persist escalation event")

            child = await self.store.get_child(context.child_id)
            if child is None:
                logger.warning("escalation_child_not_found", child_id=context.child_id)
                return None

            event = await self.store.update_safety_event(
                event.id, parent_notified_at=_now()
            )
            response_text = self.responder.get_safety_response(
                verdict, context.child_age
            )

            notification = await self.store.create_notification(
                ParentNotification(
                    parent_id=child.parent_id,
                    child_id=child.child_id,
                    subject=f"Safety Alert: {child.name}",
                    content=(
                        f"Your child {child.name} has shared content that requires "
                        "your attention. Please review their recent conversation "
                        "in your parent dashboard."
                    ),
                    safety_event_id=event.id,
                    conversation_id=context.conversation_id,
                )
            )
        except Exception as e:
            logger.error("escalation_failed", child_id=context.child_id, error=str(e))
            return None

        delivered = await self._deliver(child, verdict, message, response_text)

        try:
            notification = await self.store.update_notification(
                notification.id,
                status=NotificationStatus.SENT if delivered else NotificationStatus.FAILED,
                sent_at=_now() if delivered else None,
            )
        except Exception as e:
            logger.error(
                "notification_status_update_failed",
                notification_id=notification.id,
                error=str(e),
            )

        logger.info(
            "safety_escalation_processed",
            child_id=child.child_id,
            event_id=event.id,
            notification_id=notification.id,
            delivered=delivered,
        )
        return EscalationOutcome(
            event=event,
            notification=notification,
            response_text=response_text,
            delivered=delivered,
        )

    async def _deliver(
        self,
        child: ChildRecord,
        verdict: SafetyVerdict,
        message: str,
        response_text: str,
    ) -> bool:
        try:
            return bool(
                await self.notifier.send_safety_alert(
                    child.parent_email,
                    child.name,
                    int(verdict.severity),
                    message,
                    response_text,
                )
            )
        except Exception as e:
            logger.error("parent_alert_delivery_error", error=str(e))
            return False
