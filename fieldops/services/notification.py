"""
Field Maintenance Ticketing
Notification Service.

Creates in-app notification rows for ticket lifecycle events. Dispatch is
fire-and-forget: it runs after the lifecycle change has committed, and a
failure here is logged and swallowed, never surfaced to the caller.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from fieldops.models import db
from fieldops.models.notification import Notification
from fieldops.models.ticket import TicketStatus

logger = logging.getLogger(__name__)


# to_status -> (category, severity)
_EVENT_STYLE = {
    TicketStatus.ASSIGNED.value: ("assignment", "info"),
    TicketStatus.PENDING_REVIEW.value: ("review", "info"),
    TicketStatus.REJECTED.value: ("rejection", "warning"),
    TicketStatus.APPROVED.value: ("review", "success"),
    TicketStatus.CLOSED.value: ("status", "success"),
    TicketStatus.CANCELLED.value: ("status", "warning"),
}


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def broadcast(*, title, message="", category="status", severity="info",
                  entity_type="ticket", entity_id=None, recipients=None):
        """
        Send a notification to each recipient and commit.

        Returns:
            List of created Notification instances.
        """
        notifications = []
        for r in recipients or ():
            notif = Notification(
                recipient=r,
                title=title,
                message=message,
                category=category,
                severity=severity,
                entity_type=entity_type,
                entity_id=entity_id,
            )
            db.session.add(notif)
            notifications.append(notif)
        db.session.commit()
        return notifications

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient, unread_only=False, limit=50):
        """Notifications for a recipient, newest first."""
        stmt = select(Notification).where(Notification.recipient == recipient)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
        return db.session.execute(stmt).scalars().all()

    @staticmethod
    def unread_count(recipient):
        return db.session.execute(
            select(func.count()).select_from(Notification).where(
                Notification.recipient == recipient, Notification.is_read.is_(False),
            )
        ).scalar()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, recipient):
        """Mark one of *recipient*'s notifications as read. Returns None if not theirs."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.recipient != recipient:
            return None
        if not notif.is_read:
            notif.mark_read()
            db.session.commit()
        return notif


def _recipients_for(ticket, actor_id):
    targets = []
    for candidate in (ticket.assigned_to_id, ticket.requester_id):
        if candidate and candidate != actor_id and candidate not in targets:
            targets.append(candidate)
    return targets


def notify_transition(ticket, from_status, to_status, actor):
    """Notify the assignee and requester of an accepted transition.

    Returns the created notifications, or an empty list when dispatch failed.
    """
    recipients = _recipients_for(ticket, actor.id)
    if not recipients:
        return []

    category, severity = _EVENT_STYLE.get(to_status, ("status", "info"))
    title = f"{ticket.reference_code}: {from_status or 'new'} → {to_status}"
    message = f"{ticket.title} was moved to {to_status} by {actor.name or actor.id}"
    if to_status == TicketStatus.REJECTED.value and ticket.last_rejection_reason:
        message += f": {ticket.last_rejection_reason}"

    try:
        return NotificationService.broadcast(
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_id=ticket.id,
            recipients=recipients,
        )
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning(
            "Notification dispatch failed for ticket_id=%s (%s -> %s)",
            ticket.id, from_status, to_status, exc_info=True,
        )
        return []
