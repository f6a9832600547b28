"""
Cascade synchronizer — Order → OrderItem → ProductMaterial → Product → Project.

Status changes on purchase orders fan out to materials, product cost and
readiness, and project status. Every step after the order status write
re-derives from stored state, so re-running a cascade (or the whole
recompute) is safe and converges.

Order status change steps:
    1  validate the transition                      (no writes on rejection)
    2  write the order status, optimistic version check
    3  project material + item updates, write them as one chunked batch
    4  recompute material_cost of every product the order touches
    5  promote products whose materials are all ready / all ordered
    6  promote projects whose products are all ready (approved → in_production)

A failure after step 2 raises CascadeStepError naming the step.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field

from millflow.core.exceptions import (
    CascadeStepError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from millflow.integrations.store_gateway import WriteOp
from millflow.models.procurement import OPEN_ORDER_STATUSES, Order, OrderItem
from millflow.models.project import (
    MATERIAL_STATUSES,
    PRODUCT_AWAITING_MATERIALS,
    PROJECT_READINESS_PROMOTIONS,
    Product,
    ProductMaterial,
    Project,
    material_is_ready,
)
from millflow.services.code_generator import generate_order_number
from millflow.services.material_projection import (
    aggregate_order_status,
    item_material_ids,
    project_order_status_change,
    project_partial_receipt,
)
from millflow.services.transitions import validate_order_transition

logger = logging.getLogger(__name__)

MATERIAL_ACTIONS = {"reset", "received"}


# ── Results ──────────────────────────────────────────────────────────────────


@dataclass
class ReadinessResult:
    products_recomputed: list = field(default_factory=list)
    products_promoted: list = field(default_factory=list)
    projects_promoted: list = field(default_factory=list)

    def to_dict(self):
        return asdict(self)


@dataclass
class CascadeResult:
    order_id: int
    previous_status: str
    new_status: str
    materials_updated: int = 0
    items_updated: int = 0
    products_recomputed: list = field(default_factory=list)
    products_promoted: list = field(default_factory=list)
    projects_promoted: list = field(default_factory=list)

    def to_dict(self):
        return asdict(self)


@dataclass
class ItemBatchResult:
    """Outcome of a receipt or delete over a set of order items."""

    item_ids: list
    orders: dict = field(default_factory=dict)
    materials_updated: int = 0
    products_recomputed: list = field(default_factory=list)
    products_promoted: list = field(default_factory=list)
    projects_promoted: list = field(default_factory=list)

    def to_dict(self):
        return asdict(self)


def _absorb(result, readiness):
    result.products_recomputed = readiness.products_recomputed
    result.products_promoted = readiness.products_promoted
    result.projects_promoted = readiness.projects_promoted
    return result


# ── Readiness rules ──────────────────────────────────────────────────────────


def product_readiness_status(current, material_statuses):
    """Status a product should move to given its materials, or `current`.

    Only forward moves out of the pre-production statuses; a product with
    no materials is left alone.
    """
    statuses = list(material_statuses)
    if not statuses or current not in PRODUCT_AWAITING_MATERIALS:
        return current
    if all(material_is_ready(s) for s in statuses):
        return "materials_ready"
    if current == "waiting" and all(s != "not_ordered" for s in statuses):
        return "materials_ordered"
    return current


def product_is_ready(status, material_statuses=()):
    """Readiness of a product, judged from its live materials.

    A product past the material-waiting stages is ready whatever its
    materials say; one still waiting is ready when every material is.
    """
    return product_readiness_status(status, material_statuses) not in PRODUCT_AWAITING_MATERIALS


class CascadeSynchronizer:
    """Keeps denormalized status and cost fields consistent for one tenant.

    Usage:
        sync = CascadeSynchronizer(SqlAlchemyStore(tenant_id=1))
        result = sync.apply_order_status_change(order_id=7, new_status="sent")
    """

    def __init__(self, store):
        self.store = store

    @property
    def tenant_id(self):
        return self.store.tenant_id

    @contextmanager
    def _step(self, name, order_id=None):
        try:
            yield
        except (CascadeStepError, ConflictError):
            raise
        except Exception as exc:
            logger.error(
                "Cascade step failed: %s", exc,
                extra={"tenant_id": self.tenant_id, "order_id": order_id, "step": name},
            )
            raise CascadeStepError(name, exc) from exc

    # ── Loading helpers ──────────────────────────────────────────────────────

    def _materials_by_id(self, items):
        ids = sorted({m for item in items for m in item_material_ids(item)})
        if not ids:
            return {}
        return {m.id: m for m in self.store.query(ProductMaterial, {"id": ids})}

    def _items_by_ids(self, item_ids):
        wanted = sorted(set(item_ids))
        if not wanted:
            raise ValidationError("No order items given", details={"item_ids": "required"})
        items = self.store.query(OrderItem, {"id": wanted})
        found = {i.id for i in items}
        missing = [i for i in wanted if i not in found]
        if missing:
            raise NotFoundError("OrderItem", missing[0], self.tenant_id)
        return items

    def _write_projection(self, projection):
        ops = [
            WriteOp(ProductMaterial, u.material_id, {"status": u.target_status, "order_id": u.order_id})
            for u in projection.material_updates
        ]
        for u in projection.item_updates:
            values = {"status": u.status}
            if u.received_at is not None:
                values["received_at"] = u.received_at
            ops.append(WriteOp(OrderItem, u.item_id, values))
        self.store.batch_write(ops)
        return len(projection.material_updates), len(projection.item_updates)

    # ═════════════════════════════════════════════════════════════════════════
    # Order status cascade
    # ═════════════════════════════════════════════════════════════════════════

    def apply_order_status_change(self, order_id, new_status):
        """Validate, write and cascade an order status change.

        Raises:
            NotFoundError: unknown order (or another tenant's).
            InvalidTransitionError: transition not in the table; nothing written.
            ConflictError: another cascade on the same order won the race.
            CascadeStepError: a step after the status write failed; re-run to repair.
        """
        t0 = time.monotonic()
        order = self.store.get(Order, order_id)
        previous = order.status
        validate_order_transition(previous, new_status)

        expected_version = order.version
        items = self.store.query(OrderItem, {"order_id": order_id})
        materials = self._materials_by_id(items)

        self.store.update_versioned(Order, order_id, expected_version, {"status": new_status})
        logger.info(
            "Order status %s → %s", previous, new_status,
            extra={"tenant_id": self.tenant_id, "order_id": order_id, "step": "write_order"},
        )

        result = CascadeResult(order_id=order_id, previous_status=previous, new_status=new_status)

        with self._step("write_materials", order_id):
            projection = project_order_status_change(
                order_id, previous, new_status, items,
                {m.id: m.status for m in materials.values()},
            )
            result.materials_updated, result.items_updated = self._write_projection(projection)

        product_ids = {m.product_id for m in materials.values()}
        product_ids.update(i.product_id for i in items if i.product_id)
        _absorb(result, self._sync_products(product_ids, order_id=order_id))

        logger.info(
            "Cascade complete: %d material(s), %d product(s) recomputed",
            result.materials_updated, len(result.products_recomputed),
            extra={"tenant_id": self.tenant_id, "order_id": order_id,
                   "duration_ms": (time.monotonic() - t0) * 1000},
        )
        return result

    # ── Partial receipt ──────────────────────────────────────────────────────

    def mark_items_received(self, item_ids):
        """Receive individual order items and re-aggregate their orders.

        The status each order ends up in is validated against the transition
        table before anything is written, so items of a draft order cannot be
        received.
        """
        items = self._items_by_ids(item_ids)
        result = ItemBatchResult(item_ids=sorted(i.id for i in items))
        order_ids = sorted({i.order_id for i in items})
        orders = {oid: self.store.get(Order, oid) for oid in order_ids}
        all_items = self.store.query(OrderItem, {"order_id": order_ids})
        materials = self._materials_by_id(items)

        received = set(result.item_ids)
        targets = {}
        for oid, order in orders.items():
            statuses = [
                "received" if i.id in received else i.status
                for i in all_items if i.order_id == oid
            ]
            target = aggregate_order_status(order.status, statuses)
            validate_order_transition(order.status, target)
            targets[oid] = (order.status, order.version, target)

        with self._step("write_materials"):
            projection = project_partial_receipt(
                result.item_ids, items, {m.id: m.status for m in materials.values()},
            )
            result.materials_updated, _ = self._write_projection(projection)

        with self._step("aggregate_orders"):
            for oid, (previous, version, status) in targets.items():
                if status != previous:
                    self.store.update_versioned(Order, oid, version, {"status": status})
                    logger.info(
                        "Order aggregate status %s → %s", previous, status,
                        extra={"tenant_id": self.tenant_id, "order_id": oid},
                    )
                result.orders[oid] = {"status": status}

        product_ids = {m.product_id for m in materials.values()}
        product_ids.update(i.product_id for i in items if i.product_id)
        return _absorb(result, self._sync_products(product_ids))

    # ── Deletion ─────────────────────────────────────────────────────────────

    def _release_materials(self, materials, target_status):
        ops = []
        for material in materials:
            if material_is_ready(material.status):
                continue
            if material.status == target_status and material.order_id is None:
                continue
            ops.append(WriteOp(ProductMaterial, material.id, {"status": target_status, "order_id": None}))
        self.store.batch_write(ops)
        return len(ops)

    def delete_order_items(self, item_ids):
        """Delete order items and reset only their own materials.

        Materials of a grouped item all go back to not_ordered (unless already
        received); materials on any other item are never touched.
        """
        items = self._items_by_ids(item_ids)
        materials = self._materials_by_id(items)
        result = ItemBatchResult(item_ids=sorted(i.id for i in items))
        # Deleted rows come back detached; read everything needed afterwards now
        order_ids = sorted({i.order_id for i in items})
        product_ids = {m.product_id for m in materials.values()}

        with self._step("release_materials"):
            result.materials_updated = self._release_materials(materials.values(), "not_ordered")

        with self._step("delete_items"):
            self.store.batch_delete(OrderItem, result.item_ids)

        with self._step("recompute_order_totals"):
            for oid in order_ids:
                total = self.recalculate_order_total(oid)
                result.orders[oid] = {"total_amount": total}

        return _absorb(result, self._sync_products(product_ids))

    def delete_order(self, order_id, material_action=None):
        """Delete an order and its items.

        material_action:
            "reset"     materials → not_ordered
            "received"  materials → received
            None        materials keep their status
        """
        if material_action is not None and material_action not in MATERIAL_ACTIONS:
            raise ValidationError(
                f"Unknown material action '{material_action}'",
                details={"material_action": sorted(MATERIAL_ACTIONS)},
            )
        order = self.store.get(Order, order_id)
        items = self.store.query(OrderItem, {"order_id": order_id})
        materials = self._materials_by_id(items)
        result = ItemBatchResult(item_ids=[i.id for i in items])

        if material_action:
            target = "received" if material_action == "received" else "not_ordered"
            with self._step("release_materials", order_id):
                result.materials_updated = self._release_materials(materials.values(), target)

        with self._step("delete_items", order_id):
            self.store.batch_delete(OrderItem, result.item_ids)
            self.store.delete(order)
            self.store.commit()
        logger.info(
            "Order deleted (%d item(s), material_action=%s)", len(items), material_action,
            extra={"tenant_id": self.tenant_id, "order_id": order_id},
        )
        result.orders[order_id] = {"deleted": True}
        return _absorb(result, self._sync_products({m.product_id for m in materials.values()}, order_id=order_id))

    # ── Cost recompute ───────────────────────────────────────────────────────

    def recalculate_product_cost(self, product_id):
        """material_cost = Σ total_price over the live material set."""
        product = self.store.get(Product, product_id)
        materials = self.store.query(ProductMaterial, {"product_id": product_id})
        cost = sum(m.total_price or 0 for m in materials)
        if product.material_cost != cost:
            product.material_cost = cost
            self.store.commit()
        return cost

    def recalculate_order_total(self, order_id):
        """total_amount = Σ quantity × expected_price over the order's items."""
        order = self.store.get(Order, order_id)
        items = self.store.query(OrderItem, {"order_id": order_id})
        total = sum((i.quantity or 0) * (i.expected_price or 0) for i in items)
        if order.total_amount != total:
            order.total_amount = total
            self.store.commit()
        return total

    def _product_ready(self, product):
        materials = self.store.query(ProductMaterial, {"product_id": product.id})
        return product_is_ready(product.status, [m.status for m in materials])

    def _sync_products(self, product_ids, order_id=None):
        """Steps 4-6: cost, product readiness, project readiness."""
        readiness = ReadinessResult()
        product_ids = sorted(p for p in product_ids if p is not None)
        if not product_ids:
            return readiness

        project_ids = set()
        with self._step("recompute_costs", order_id):
            for product in self.store.query(Product, {"id": product_ids}):
                materials = self.store.query(ProductMaterial, {"product_id": product.id})
                cost = sum(m.total_price or 0 for m in materials)
                if product.material_cost != cost:
                    product.material_cost = cost
                readiness.products_recomputed.append(product.id)

                status = product_readiness_status(product.status, [m.status for m in materials])
                if status != product.status:
                    logger.info(
                        "Product %s: %s → %s", product.id, product.status, status,
                        extra={"tenant_id": self.tenant_id, "order_id": order_id, "step": "promote_products"},
                    )
                    product.status = status
                    readiness.products_promoted.append(product.id)
                if product.project_id:
                    project_ids.add(product.project_id)
            self.store.commit()

        with self._step("promote_projects", order_id):
            for project in self.store.query(Project, {"id": sorted(project_ids)}):
                target = PROJECT_READINESS_PROMOTIONS.get(project.status)
                if target is None:
                    continue
                products = self.store.query(Product, {"project_id": project.id})
                if products and all(self._product_ready(p) for p in products):
                    logger.info(
                        "Project %s: %s → %s", project.id, project.status, target,
                        extra={"tenant_id": self.tenant_id, "order_id": order_id, "step": "promote_projects"},
                    )
                    project.status = target
                    readiness.projects_promoted.append(project.id)
            self.store.commit()
        return readiness

    def recompute_all_products(self):
        """Repair pass over the whole tenant: material totals, costs, readiness."""
        with self._step("repair_material_totals"):
            for material in self.store.query(ProductMaterial):
                expected = (material.quantity or 0) * (material.unit_price or 0)
                if material.total_price != expected:
                    material.total_price = expected
            self.store.commit()
        return self._sync_products([p.id for p in self.store.query(Product)])

    # ═════════════════════════════════════════════════════════════════════════
    # Order creation + material edits
    # ═════════════════════════════════════════════════════════════════════════

    def open_material_ids(self):
        """Material ids already held by a not-yet-received item of an open order."""
        open_orders = self.store.query(Order, {"status": sorted(OPEN_ORDER_STATUSES)})
        if not open_orders:
            return {}
        held = {}
        items = self.store.query(
            OrderItem, {"order_id": [o.id for o in open_orders], "status": ["pending", "ordered"]},
        )
        for item in items:
            for material_id in item_material_ids(item):
                held[material_id] = item.id
        return held

    def create_order(self, supplier_name, items, expected_delivery=None, notes="",
                     work_order_id=None):
        """Create a draft order; its materials stay untouched until it is sent.

        Each entry of `items` is a dict with material_ids, material_name,
        quantity, unit, expected_price and optionally product_id / project_id.

        Raises:
            ValidationError: no items, or a material listed twice.
            NotFoundError: unknown material id.
            ConflictError: a material is already on another open order item.
        """
        if not items:
            raise ValidationError("An order needs at least one item", details={"items": "required"})

        requested = []
        for entry in items:
            requested.extend(int(m) for m in entry.get("material_ids") or [])
        if len(requested) != len(set(requested)):
            raise ValidationError(
                "A material may appear on only one item of an order",
                details={"material_ids": "duplicate"},
            )
        if requested:
            found = {m.id for m in self.store.query(ProductMaterial, {"id": requested})}
            missing = [m for m in requested if m not in found]
            if missing:
                raise NotFoundError("ProductMaterial", missing[0], self.tenant_id)
            held = self.open_material_ids()
            for material_id in requested:
                if material_id in held:
                    raise ConflictError(
                        "OrderItem", "material_ids", material_id,
                        message=(
                            f"Material {material_id} is already on open order item "
                            f"{held[material_id]}"
                        ),
                    )

        order = self.store.add(Order(
            order_number=generate_order_number(self.store),
            supplier_name=supplier_name or "",
            status="draft",
            expected_delivery=expected_delivery,
            notes=notes or "",
            work_order_id=work_order_id,
            version=1,
        ))
        total = 0.0
        for entry in items:
            quantity = float(entry.get("quantity") or 0)
            price = float(entry.get("expected_price") or 0)
            total += quantity * price
            self.store.add(OrderItem(
                order_id=order.id,
                material_ids=[int(m) for m in entry.get("material_ids") or []],
                product_id=entry.get("product_id"),
                project_id=entry.get("project_id"),
                material_name=entry.get("material_name") or "",
                quantity=quantity,
                unit=entry.get("unit") or "pcs",
                expected_price=price,
                status="pending",
            ))
        order.total_amount = total
        self.store.commit()
        logger.info(
            "Order %s created for %s (%d item(s))", order.order_number, supplier_name, len(items),
            extra={"tenant_id": self.tenant_id, "order_id": order.id},
        )
        return order

    def update_material(self, material_id, quantity=None, unit_price=None, status=None):
        """Edit a material and keep total_price, product cost and readiness in step."""
        material = self.store.get(ProductMaterial, material_id)
        if status is not None:
            if status not in MATERIAL_STATUSES:
                raise ValidationError(f"Unknown material status '{status}'", details={"status": status})
            if status == "ordered" and material.order_id is None:
                raise ValidationError(
                    "A material can only be 'ordered' through an order",
                    details={"status": "ordered requires an order"},
                )
        if quantity is not None and quantity < 0:
            raise ValidationError("Quantity cannot be negative", details={"quantity": quantity})
        if unit_price is not None and unit_price < 0:
            raise ValidationError("Unit price cannot be negative", details={"unit_price": unit_price})

        if quantity is not None:
            material.quantity = quantity
        if unit_price is not None:
            material.unit_price = unit_price
        if status is not None:
            material.status = status
            if status == "not_ordered":
                material.order_id = None
        material.recompute_total()
        self.store.commit()
        self._sync_products({material.product_id})
        return material
