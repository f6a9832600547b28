"""
Document number generator.

Generates day-scoped sequential numbers for:
  - Purchase orders:  PO-{YYYYMMDD}-{seq}   (e.g. PO-20261019-001)
  - Work orders:      WO-{YYYYMMDD}-{seq}   (e.g. WO-20261019-014)

Numbers are tenant-unique per day; the sequence continues from the highest
number already issued that day.
"""

from datetime import date

from millflow.integrations.store_gateway import Range
from millflow.models.procurement import Order
from millflow.models.production import WorkOrder


def _next_number(store, model_class, column, prefix, day):
    stem = f"{prefix}-{day:%Y%m%d}"
    existing = store.query(model_class, {column: Range(f"{stem}-000", f"{stem}-999")})
    highest = 0
    for record in existing:
        suffix = getattr(record, column).rsplit("-", 1)[-1]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{stem}-{highest + 1:03d}"


def generate_order_number(store, day: date | None = None) -> str:
    """Next purchase order number: PO-20261019-001, PO-20261019-002, ..."""
    return _next_number(store, Order, "order_number", "PO", day or date.today())


def generate_work_order_number(store, day: date | None = None) -> str:
    """Next work order number: WO-20261019-001, ..."""
    return _next_number(store, WorkOrder, "work_order_number", "WO", day or date.today())
