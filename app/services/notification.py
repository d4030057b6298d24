"""
Certification Workflow Service
Notification sink.

The workflow engine only *emits* notification events; delivery belongs to
a sink. The default sink writes one ``notifications`` row per recipient.

Delivery runs after the business transaction has committed. A failing
sink is logged and its own partial write rolled back; it never undoes
the committed business change.

Usage:
    from app.services.notification import dispatch_notifications, level_unlocked_message

    dispatch_notifications([level_unlocked_message(cert, reviewer_id)])
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Protocol

from flask import current_app, has_app_context

from app.models import db
from app.models.notification import Notification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationMessage:
    user_id: int
    type: str
    title: str
    message: str
    link: str | None = None


class NotificationSink(Protocol):
    def enqueue(self, message: NotificationMessage) -> None:
        ...


class DatabaseNotificationSink:
    """Persist each message as an in-app Notification row."""

    def enqueue(self, message: NotificationMessage) -> None:
        notif = Notification(
            user_id=message.user_id,
            type=message.type,
            title=message.title,
            message=message.message,
            link=message.link,
        )
        db.session.add(notif)
        db.session.commit()


_sink: NotificationSink | None = None


def get_notification_sink() -> NotificationSink:
    global _sink
    if _sink is None:
        _sink = DatabaseNotificationSink()
    return _sink


def set_notification_sink(sink: NotificationSink | None) -> NotificationSink | None:
    """Swap the active sink; returns the previous one. ``None`` restores the default."""
    global _sink
    previous = _sink
    _sink = sink
    return previous


def dispatch_notifications(messages: Iterable[NotificationMessage]) -> int:
    """
    Hand each message to the sink, isolating failures per message.

    Returns:
        Number of messages the sink accepted.
    """
    sink = get_notification_sink()
    delivered = 0
    for msg in messages:
        try:
            sink.enqueue(msg)
            delivered += 1
        except Exception:
            db.session.rollback()
            logger.exception(
                "Notification delivery failed",
                extra={"event_type": msg.type, "recipient_id": msg.user_id},
            )
    return delivered


# ── Message builders ─────────────────────────────────────────────────────────


def _link(path: str) -> str:
    base = ""
    if has_app_context():
        base = (current_app.config.get("NOTIFICATION_LINK_BASE") or "").rstrip("/")
    return f"{base}{path}"


def certification_assigned_message(certification, user_id: int) -> NotificationMessage:
    return NotificationMessage(
        user_id=user_id,
        type="certification_assigned",
        title="New Certification Assigned",
        message=f"You have been assigned to complete: {certification.title}",
        link=_link(f"/attester/certifications/{certification.id}"),
    )


def certification_updated_message(certification, user_id: int) -> NotificationMessage:
    return NotificationMessage(
        user_id=user_id,
        type="certification_updated",
        title="Certification Updated",
        message=f"{certification.title} has been updated. Please review the changes.",
        link=_link(f"/attester/certifications/{certification.id}"),
    )


def attestation_submitted_message(certification, recipient_id: int, attester) -> NotificationMessage:
    name = attester.full_name if attester is not None else "An attester"
    attester_id = attester.id if attester is not None else ""
    return NotificationMessage(
        user_id=recipient_id,
        type="attestation_submitted",
        title="Attestation Submitted",
        message=f"{name} has completed certification: {certification.title}",
        link=_link(f"/mandate-owner/certifications/{certification.id}/responses/{attester_id}"),
    )


def level_unlocked_message(certification, reviewer_id: int) -> NotificationMessage:
    return NotificationMessage(
        user_id=reviewer_id,
        type="level_unlocked",
        title="Action Required: Level 2 Review Unlocked",
        message=(
            "All Level 1 attesters in your group have submitted. "
            f'You can now proceed with your attestation for "{certification.title}".'
        ),
        link=_link(f"/attester/certifications/{certification.id}"),
    )
