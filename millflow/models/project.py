"""
MillFlow
Project / Product / ProductMaterial domain models.

Models:
    - Project:          client job; owns Products by reference
    - Product:          one manufactured piece; caches material_cost
    - ProductMaterial:  bill-of-materials line with procurement status

Architecture:
    Project ──1:N──▶ Product ──1:N──▶ ProductMaterial
    ProductMaterial ──N:1──▶ Order   (order_id back-reference, plain id)

Lifecycle states:
    Project:          draft → offered → approved → in_production → assembly → done
                      (cancelled is off-line)
    Product:          waiting → materials_ordered → materials_ready
                      → <production steps> → ready → installed
    ProductMaterial:  not_ordered → ordered → received → in_stock / in_use → installed
"""

from millflow.models import db
from millflow.models.base import TenantModel, iso


# ── Constants ────────────────────────────────────────────────────────────────

# Only this hop is taken automatically when all products have their materials
PROJECT_READINESS_PROMOTIONS = {"approved": "in_production"}

DEFAULT_PRODUCTION_STEPS = ["cutting", "edging", "drilling", "assembling"]

# Products still blocked on procurement
PRODUCT_AWAITING_MATERIALS = ("waiting", "materials_ordered")

MATERIAL_STATUSES = {
    "not_ordered", "ordered", "received", "in_stock", "in_use", "installed",
}
MATERIAL_READY_STATUSES = frozenset({"received", "in_stock", "in_use", "installed"})


def material_is_ready(status):
    """True once a material can no longer block production."""
    return status in MATERIAL_READY_STATUSES


# ═════════════════════════════════════════════════════════════════════════════
# 1. Project
# ═════════════════════════════════════════════════════════════════════════════


class Project(TenantModel):
    """Client job grouping the products built for it."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    client_name = db.Column(db.String(200), default="")
    status = db.Column(
        db.String(30), default="draft",
        comment="draft | offered | approved | in_production | assembly | done | cancelled",
    )
    deadline = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, default="")

    products = db.relationship("Product", backref="project", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "client_name": self.client_name,
            "status": self.status,
            "deadline": iso(self.deadline),
            "notes": self.notes,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. Product
# ═════════════════════════════════════════════════════════════════════════════


class Product(TenantModel):
    """
    A manufactured piece within a project.

    material_cost is a cached projection of Σ ProductMaterial.total_price.
    It is recomputed by the cascade, never edited by hand.
    """

    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    quantity = db.Column(db.Integer, default=1)
    status = db.Column(db.String(40), default="waiting")
    material_cost = db.Column(db.Float, default=0.0)

    materials = db.relationship("ProductMaterial", backref="product", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "project_id": self.project_id,
            "name": self.name,
            "quantity": self.quantity,
            "status": self.status,
            "material_cost": self.material_cost,
        }

    def __repr__(self):
        return f"<Product {self.id}: {self.name} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. ProductMaterial
# ═════════════════════════════════════════════════════════════════════════════


class ProductMaterial(TenantModel):
    """Bill-of-materials line for a product."""

    __tablename__ = "product_materials"

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    material_name = db.Column(db.String(200), nullable=False)
    supplier_name = db.Column(db.String(200), default="")
    unit = db.Column(db.String(20), default="pcs")
    quantity = db.Column(db.Float, default=0.0)
    unit_price = db.Column(db.Float, default=0.0)
    total_price = db.Column(db.Float, default=0.0, comment="quantity × unit_price")
    on_hand_qty = db.Column(db.Float, default=0.0)
    is_essential = db.Column(db.Boolean, default=False)
    status = db.Column(db.String(30), default="not_ordered", index=True)
    order_id = db.Column(
        db.Integer, nullable=True, index=True,
        comment="Order that last touched this material; cleared on revert",
    )

    def recompute_total(self):
        self.total_price = (self.quantity or 0) * (self.unit_price or 0)
        return self.total_price

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "material_name": self.material_name,
            "supplier_name": self.supplier_name,
            "unit": self.unit,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total_price": self.total_price,
            "on_hand_qty": self.on_hand_qty,
            "is_essential": self.is_essential,
            "status": self.status,
            "order_id": self.order_id,
        }

    def __repr__(self):
        return f"<ProductMaterial {self.id}: {self.material_name} [{self.status}]>"
