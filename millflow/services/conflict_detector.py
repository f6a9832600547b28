"""
Worker double-booking detection.

Read-only: finds scheduled, non-terminal work orders whose date range
overlaps the requested one and that share at least one worker (primary or
helper, on any step of any item). Day granularity, both ends inclusive;
a work order without an end date occupies its start day only.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date

from millflow.core.exceptions import ValidationError
from millflow.models.production import (
    WORK_ORDER_TERMINAL_STATUSES,
    Worker,
    WorkOrder,
    WorkOrderItem,
    WorkOrderProcess,
)

logger = logging.getLogger(__name__)

UNKNOWN_WORKER = "Unknown worker"


@dataclass(frozen=True)
class WorkerConflict:
    worker_id: int
    worker_name: str
    conflicting_work_order_id: int
    conflicting_work_order_number: str
    overlap_start: date
    overlap_end: date

    def to_dict(self):
        data = asdict(self)
        data["overlap_start"] = self.overlap_start.isoformat()
        data["overlap_end"] = self.overlap_end.isoformat()
        return data


def ranges_overlap(start, end, other_start, other_end=None):
    """Inclusive day overlap; other_end defaults to other_start."""
    other_end = other_end or other_start
    return start <= other_end and end >= other_start


def work_order_worker_ids(store, work_order_ids):
    """{work_order_id: set(worker ids)} across every step of every item."""
    result = {wid: set() for wid in work_order_ids}
    if not work_order_ids:
        return result
    items = store.query(WorkOrderItem, {"work_order_id": list(work_order_ids)})
    item_to_order = {i.id: i.work_order_id for i in items}
    if not item_to_order:
        return result
    for process in store.query(WorkOrderProcess, {"work_order_item_id": list(item_to_order)}):
        result[item_to_order[process.work_order_item_id]].update(process.worker_ids())
    return result


def find_worker_conflicts(store, worker_ids, start, end, exclude_work_order_id=None):
    """Return the WorkerConflicts for `worker_ids` over [start, end].

    Advisory only; callers decide whether to proceed.
    """
    worker_ids = [w for w in dict.fromkeys(worker_ids or []) if w]
    if not worker_ids:
        return []
    if end is None:
        end = start
    if end < start:
        raise ValidationError("End date is before start date", details={"end": end.isoformat()})

    candidates = [
        wo for wo in store.query(WorkOrder, {"is_scheduled": True})
        if wo.id != exclude_work_order_id
        and wo.status not in WORK_ORDER_TERMINAL_STATUSES
        and wo.planned_start is not None
        and ranges_overlap(start, end, wo.planned_start, wo.planned_end)
    ]
    if not candidates:
        return []

    crews = work_order_worker_ids(store, [wo.id for wo in candidates])
    names = {w.id: w.name for w in store.query(Worker, {"id": worker_ids})}

    conflicts = []
    for wo in candidates:
        other_end = wo.planned_end or wo.planned_start
        for worker_id in worker_ids:
            if worker_id not in crews[wo.id]:
                continue
            conflicts.append(WorkerConflict(
                worker_id=worker_id,
                worker_name=names.get(worker_id, UNKNOWN_WORKER),
                conflicting_work_order_id=wo.id,
                conflicting_work_order_number=wo.work_order_number,
                overlap_start=max(start, wo.planned_start),
                overlap_end=min(end, other_end),
            ))
    if conflicts:
        logger.info(
            "%d worker conflict(s) for %s..%s", len(conflicts), start, end,
            extra={"tenant_id": store.tenant_id, "work_order_id": exclude_work_order_id},
        )
    return conflicts
