"""
MillFlow
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from millflow.models import db
from millflow.models.base import TenantModel, iso


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_CATEGORIES = {"procurement", "production", "system"}
NOTIFICATION_SEVERITIES = {"info", "warning", "error", "success"}


class Notification(TenantModel):
    """In-app notification entity (tenant-wide broadcast)."""

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    category = db.Column(db.String(30), default="system")
    severity = db.Column(db.String(20), default="info")

    # Link to source entity
    entity_type = db.Column(db.String(30), default="", comment="order/work_order/...")
    entity_id = db.Column(db.Integer, nullable=True)
    link = db.Column(db.String(300), default="", comment="UI route to open")

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "title": self.title,
            "message": self.message,
            "category": self.category,
            "severity": self.severity,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "link": self.link,
            "is_read": self.is_read,
            "read_at": iso(self.read_at),
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
