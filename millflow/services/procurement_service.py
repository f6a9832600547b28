"""
Auto-procurement for scheduled work orders.

When a work order is scheduled close to its start date, every material its
products still lack is ordered automatically: one draft order per supplier,
expected one day before the planned start. Orders go through the regular
CascadeSynchronizer.create_order path, so the one-open-item-per-material
rule holds for them too.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import timedelta

from flask import current_app, has_app_context

from millflow.models.procurement import Order
from millflow.models.project import Product, ProductMaterial, material_is_ready
from millflow.models.production import WorkOrder, WorkOrderItem

logger = logging.getLogger(__name__)

UNKNOWN_SUPPLIER = "Unknown supplier"


def _send_immediately():
    if has_app_context():
        return bool(current_app.config.get("AUTO_PROCUREMENT_SEND", False))
    return False


class AutoProcurementTrigger:
    """Creates purchase orders for materials a work order still needs."""

    def __init__(self, store, cascade, notifier=None):
        self.store = store
        self.cascade = cascade
        self.notifier = notifier

    def _live_order_ids(self, materials):
        ids = sorted({m.order_id for m in materials if m.order_id})
        if not ids:
            return set()
        return {o.id for o in self.store.query(Order, {"id": ids})}

    def collect_missing(self, work_order_id):
        """Group the materials to order by supplier.

        Returns:
            OrderedDict supplier_name → list of (material, quantity_to_order, item).
        """
        items = self.store.query(WorkOrderItem, {"work_order_id": work_order_id})
        units_per_product = OrderedDict()
        first_item = {}
        for item in items:
            if not item.product_id:
                continue
            units_per_product[item.product_id] = (
                units_per_product.get(item.product_id, 0) + (item.quantity or 1)
            )
            first_item.setdefault(item.product_id, item)
        if not units_per_product:
            return OrderedDict()

        materials = self.store.query(ProductMaterial, {"product_id": list(units_per_product)})
        live_orders = self._live_order_ids(materials)
        held = self.cascade.open_material_ids()

        groups = OrderedDict()
        for material in materials:
            if material_is_ready(material.status):
                continue
            if material.status == "ordered" and material.order_id in live_orders:
                continue
            if material.id in held:
                continue
            needed = (material.quantity or 0) * units_per_product[material.product_id]
            to_order = needed - (material.on_hand_qty or 0)
            if to_order <= 0:
                continue
            supplier = (material.supplier_name or "").strip() or UNKNOWN_SUPPLIER
            groups.setdefault(supplier, []).append(
                (material, to_order, first_item[material.product_id])
            )
        return groups

    def create_missing_material_orders(self, work_order_id, planned_start):
        """Create one order per supplier for the work order's missing materials.

        Returns:
            List of created order numbers (empty when nothing was missing).
        """
        work_order = self.store.get(WorkOrder, work_order_id)
        groups = self.collect_missing(work_order_id)
        if not groups:
            logger.info(
                "Auto-procurement: nothing to order",
                extra={"tenant_id": self.store.tenant_id, "work_order_id": work_order_id},
            )
            return []

        products = {
            p.id: p for p in self.store.query(
                Product, {"id": sorted({m.product_id for g in groups.values() for m, _, _ in g})},
            )
        }
        expected_delivery = planned_start - timedelta(days=1)
        send = _send_immediately()
        order_numbers = []
        for supplier, lines in groups.items():
            order = self.cascade.create_order(
                supplier_name=supplier,
                items=[
                    {
                        "material_ids": [material.id],
                        "product_id": material.product_id,
                        "project_id": item.project_id or getattr(products.get(material.product_id), "project_id", None),
                        "material_name": material.material_name,
                        "quantity": quantity,
                        "unit": material.unit,
                        "expected_price": material.unit_price or 0,
                    }
                    for material, quantity, item in lines
                ],
                expected_delivery=expected_delivery,
                notes=(
                    f"Auto-created for work order {work_order.work_order_number}. "
                    f"Planned start: {planned_start.isoformat()}"
                ),
                work_order_id=work_order_id,
            )
            if send:
                self.cascade.apply_order_status_change(order.id, "sent")
            order_numbers.append(order.order_number)
            logger.info(
                "Auto-procurement order %s for %s (%d line(s))",
                order.order_number, supplier, len(lines),
                extra={"tenant_id": self.store.tenant_id, "work_order_id": work_order_id,
                       "order_id": order.id},
            )

        if self.notifier is not None:
            self.notifier.create(
                title="Purchase orders created automatically",
                message=(
                    f"{len(order_numbers)} order(s) created for work order "
                    f"{work_order.work_order_number}: {', '.join(order_numbers)}"
                ),
                related_id=work_order_id,
                link="/orders",
                category="procurement",
                entity_type="work_order",
            )
        return order_numbers
