"""
Material status projection — pure functions, no store access.

Given an order status change (or a partial receipt) and the current state
of the affected order items and materials, compute the material and item
updates the cascade has to write. Nothing here reads the clock unless the
caller leaves `now` unset.

Targets depend only on the order's (new) status, never on the status it
came from, so projecting again over stored state after a half-written
cascade yields exactly the writes that are still missing:

    draft                      non-received items: materials → not_ordered
                               (order ref cleared), item → pending
    sent, confirmed,           non-received items: materials → ordered
    delivered,                 (order ref set), item → ordered
    partially_received
    received                   non-received items: materials → received,
                               item → received (received_at stamped)

On a consistent order the intermediate statuses project nothing. A
material already in the ready set is never touched, whatever the branch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from millflow.models.project import material_is_ready

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MaterialUpdate:
    material_id: int
    target_status: str
    order_id: int | None


@dataclass(frozen=True)
class ItemUpdate:
    item_id: int
    status: str
    received_at: datetime | None = None


@dataclass
class Projection:
    material_updates: list[MaterialUpdate] = field(default_factory=list)
    item_updates: list[ItemUpdate] = field(default_factory=list)

    @property
    def is_empty(self):
        return not self.material_updates and not self.item_updates

    @property
    def material_ids(self):
        return [u.material_id for u in self.material_updates]


def item_material_ids(item):
    """Material ids covered by an order item (grouped items carry several)."""
    return [m for m in (item.material_ids or []) if m is not None]


ORDERED_ORDER_STATUSES = frozenset({"sent", "confirmed", "delivered", "partially_received"})


def _target_for(status):
    """(material_status, item_status, keep_order_ref) for an order status, or None."""
    if status == "draft":
        return "not_ordered", "pending", False
    if status in ORDERED_ORDER_STATUSES:
        return "ordered", "ordered", True
    if status == "received":
        return "received", "received", True
    return None


def _project_items(order_id, items, material_statuses, material_status,
                   item_status, keep_ref, now):
    projection = Projection()
    seen = set()
    for item in items:
        if item.status == "received":
            continue
        if item.status != item_status:
            projection.item_updates.append(ItemUpdate(
                item_id=item.id,
                status=item_status,
                received_at=now if item_status == "received" else None,
            ))
        for material_id in item_material_ids(item):
            if material_id in seen:
                continue
            seen.add(material_id)
            current = material_statuses.get(material_id)
            if current is None:
                logger.debug("Order item %s references missing material %s", item.id, material_id)
                continue
            if material_is_ready(current):
                continue
            if current == material_status:
                continue
            projection.material_updates.append(MaterialUpdate(
                material_id=material_id,
                target_status=material_status,
                order_id=order_id if keep_ref else None,
            ))
    return projection


def project_order_status_change(order_id, previous, new, items, material_statuses, now=None):
    """Compute material + item updates for an order moving previous → new.

    Args:
        order_id: Order whose status changed.
        previous / new: Order statuses (already validated). Only `new`
            decides the targets; `previous` is for logging.
        items: The order's items (objects with id, status, material_ids).
        material_statuses: {material_id: current status} for every material
            referenced by `items`.
        now: Timestamp for received_at; defaults to the current UTC time.

    Returns:
        Projection (empty when every item and material already matches).
    """
    target = _target_for(new)
    if target is None:
        logger.debug("No material rule for order %s (%s → %s)", order_id, previous, new)
        return Projection()
    material_status, item_status, keep_ref = target
    now = now or datetime.now(timezone.utc)
    return _project_items(
        order_id, items, material_statuses, material_status, item_status, keep_ref, now,
    )


def project_partial_receipt(item_ids, items, material_statuses, now=None):
    """Only the named items (and their materials) become received."""
    wanted = set(item_ids)
    now = now or datetime.now(timezone.utc)
    projection = Projection()
    for item in items:
        if item.id not in wanted:
            continue
        part = _project_items(
            item.order_id, [item], material_statuses, "received", "received", True, now,
        )
        projection.material_updates.extend(part.material_updates)
        projection.item_updates.extend(part.item_updates)
    return projection


def aggregate_order_status(current, item_statuses):
    """Order status implied by its item statuses.

    All received → received; some → partially_received (an order that is
    already received is never downgraded); none → unchanged.
    """
    statuses = list(item_statuses)
    if not statuses:
        return current
    received = sum(1 for s in statuses if s == "received")
    if received == len(statuses):
        return "received"
    if received and current != "received":
        return "partially_received"
    return current
