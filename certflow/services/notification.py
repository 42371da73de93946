"""
SLF Certification Workflow Engine
Notification Service.

Fan-out of in-app notifications after a workflow transition has committed,
plus the recipient-side read API.

Delivery is best effort: ``dispatch`` runs in its own transaction after the
state change, retries a bounded number of times and then logs and drops the
batch. A failed dispatch never undoes the transition that caused it.
"""

import logging

from flask import current_app

from certflow.core.exceptions import NotFound
from certflow.models import db
from certflow.models.notification import NOTIFICATION_TYPES, Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Dispatch ──────────────────────────────────────────────────────────

    @staticmethod
    def dispatch(*, recipients, project_id, type, message="", sender_id=None,
                 entity_type="", entity_id=None):
        """
        Create one Notification per distinct recipient.

        Args:
            recipients: iterable of user ids; None entries and duplicates are dropped.

        Returns:
            List of created Notification instances, or [] when delivery failed.
        """
        if type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type: {type}")

        targets = sorted({r for r in recipients if r is not None})
        if not targets:
            return []

        attempts = max(1, int(current_app.config.get("NOTIFICATION_MAX_ATTEMPTS", 1)))
        for attempt in range(1, attempts + 1):
            try:
                notifications = [
                    Notification(
                        recipient_id=r,
                        sender_id=sender_id,
                        project_id=project_id,
                        type=type,
                        message=message,
                        entity_type=entity_type,
                        entity_id=entity_id,
                    )
                    for r in targets
                ]
                db.session.add_all(notifications)
                db.session.commit()
                logger.debug(
                    "Dispatched %d notification(s) type=%s", len(notifications), type,
                    extra={"project_id": project_id, "action": type},
                )
                return notifications
            except Exception:
                db.session.rollback()
                logger.warning(
                    "Notification dispatch attempt %d/%d failed type=%s",
                    attempt, attempts, type,
                    exc_info=True,
                    extra={"project_id": project_id, "action": type},
                )

        logger.error(
            "Dropping %d notification(s) type=%s project=%s after %d attempt(s)",
            len(targets), type, project_id, attempts,
            extra={"project_id": project_id, "action": type},
        )
        return []

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient_id, project_id=None, unread_only=False,
                           limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter_by(recipient_id=recipient_id)
        if project_id:
            q = q.filter_by(project_id=project_id)
        if unread_only:
            q = q.filter_by(read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(recipient_id, project_id=None):
        """Return count of unread notifications."""
        q = Notification.query.filter_by(recipient_id=recipient_id, read=False)
        if project_id:
            q = q.filter_by(project_id=project_id)
        return q.count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user):
        """Mark a single notification as read. Only its recipient may do this."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.recipient_id != user.id:
            raise NotFound(resource="Notification", resource_id=notification_id)
        if not notif.read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(recipient_id, project_id=None):
        """Mark all notifications for a recipient as read. Returns count updated."""
        q = Notification.query.filter_by(recipient_id=recipient_id, read=False)
        if project_id:
            q = q.filter_by(project_id=project_id)
        items = q.all()
        for n in items:
            n.mark_read()
        db.session.commit()
        return len(items)
