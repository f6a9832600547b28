"""
MillFlow
Purchase-order domain models.

Models:
    - Order:      purchase order sent to one supplier
    - OrderItem:  order line; may aggregate several ProductMaterials
                  ordered together (grouped item, material_ids list)

Architecture:
    Order ──1:N──▶ OrderItem ──N:M──▶ ProductMaterial  (material_ids, plain ids)

Lifecycle states:
    Order:      draft → sent → confirmed → delivered → partially_received → received
    OrderItem:  pending → ordered → received
"""

from millflow.models import db
from millflow.models.base import TenantModel, iso


# ── Constants ────────────────────────────────────────────────────────────────

ORDER_STATUSES = {
    "draft", "sent", "confirmed", "partially_received", "received", "delivered",
}

# Orders in these states still hold their materials
OPEN_ORDER_STATUSES = ORDER_STATUSES - {"received"}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

ORDER_TRANSITIONS = {
    "draft":              ["sent"],
    "sent":               ["draft", "confirmed", "partially_received", "received", "delivered"],
    "confirmed":          ["draft", "partially_received", "received", "delivered"],
    "delivered":          ["partially_received", "received"],
    "partially_received": ["received"],
    "received":           [],
}


def validate_order_transition(old_status, new_status, table=None):
    """Return True if Order status transition is valid (same status is a no-op)."""
    table = table or ORDER_TRANSITIONS
    if old_status not in table or new_status not in table:
        return False
    if old_status == new_status:
        return True
    return new_status in table.get(old_status, [])


# ═════════════════════════════════════════════════════════════════════════════
# 1. Order
# ═════════════════════════════════════════════════════════════════════════════


class Order(TenantModel):
    """
    Purchase order.
    Code format: PO-YYYYMMDD-NNN (tenant-scoped, generated in service layer).
    """

    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(30), nullable=False, index=True)
    supplier_name = db.Column(db.String(200), default="")
    status = db.Column(
        db.String(30), default="draft",
        comment="draft | sent | confirmed | partially_received | received | delivered",
    )
    expected_delivery = db.Column(db.Date, nullable=True)
    total_amount = db.Column(db.Float, default=0.0)
    notes = db.Column(db.Text, default="")
    work_order_id = db.Column(
        db.Integer, nullable=True,
        comment="Set when auto-created for a scheduled work order",
    )
    version = db.Column(
        db.Integer, default=1, nullable=False,
        comment="Optimistic lock — bumped on every status write",
    )

    items = db.relationship(
        "OrderItem", backref="order", lazy="dynamic", order_by="OrderItem.id",
    )

    def to_dict(self, include_items=False):
        result = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "order_number": self.order_number,
            "supplier_name": self.supplier_name,
            "status": self.status,
            "expected_delivery": iso(self.expected_delivery),
            "total_amount": self.total_amount,
            "notes": self.notes,
            "work_order_id": self.work_order_id,
            "version": self.version,
        }
        if include_items:
            result["items"] = [i.to_dict() for i in self.items]
        return result

    def __repr__(self):
        return f"<Order {self.id}: {self.order_number} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. OrderItem
# ═════════════════════════════════════════════════════════════════════════════


class OrderItem(TenantModel):
    """Purchase-order line, possibly grouping several materials."""

    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    material_ids = db.Column(
        db.JSON, default=list,
        comment="ProductMaterial ids represented by this line",
    )
    product_id = db.Column(db.Integer, nullable=True)
    project_id = db.Column(db.Integer, nullable=True)
    material_name = db.Column(db.String(200), default="")
    quantity = db.Column(db.Float, default=0.0)
    unit = db.Column(db.String(20), default="pcs")
    expected_price = db.Column(db.Float, default=0.0)
    actual_price = db.Column(db.Float, default=0.0)
    received_quantity = db.Column(db.Float, default=0.0)
    status = db.Column(db.String(20), default="pending")
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "material_ids": list(self.material_ids or []),
            "product_id": self.product_id,
            "project_id": self.project_id,
            "material_name": self.material_name,
            "quantity": self.quantity,
            "unit": self.unit,
            "expected_price": self.expected_price,
            "actual_price": self.actual_price,
            "received_quantity": self.received_quantity,
            "status": self.status,
            "received_at": iso(self.received_at),
        }

    def __repr__(self):
        return f"<OrderItem {self.id} order={self.order_id} [{self.status}]>"
