"""
MillFlow
Notification Service.

Tenant-scoped in-app notifications. The engine only needs `create`; the
query helpers back the notification list in the CRUD layer.
"""

from datetime import datetime, timezone

from millflow.core.exceptions import ValidationError
from millflow.models import db
from millflow.models.notification import (
    NOTIFICATION_CATEGORIES,
    NOTIFICATION_SEVERITIES,
    Notification,
)


class NotificationService:
    """Notifier bound to one tenant."""

    def __init__(self, tenant_id):
        self.tenant_id = tenant_id

    # ── Create ────────────────────────────────────────────────────────────

    def create(self, title, message="", related_id=None, link="", *,
               category="system", severity="info", entity_type=""):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        if category not in NOTIFICATION_CATEGORIES:
            raise ValidationError(f"Unknown notification category '{category}'")
        if severity not in NOTIFICATION_SEVERITIES:
            raise ValidationError(f"Unknown notification severity '{severity}'")
        notif = Notification(
            tenant_id=self.tenant_id,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=related_id,
            link=link or "",
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    def list(self, unread_only=False, limit=50):
        """Newest first."""
        q = Notification.query_for_tenant(self.tenant_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()

    def unread_count(self):
        return Notification.query_for_tenant(self.tenant_id).filter_by(is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    def mark_all_read(self):
        """Mark every unread notification of the tenant as read."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query_for_tenant(self.tenant_id)
            .filter_by(is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count
