"""
Labor ledger — worker-day logs and the costs derived from them.

Work logs are the single source of actual labor cost: every figure here is
recomputed from the logs on each call, never cached on the item. The
planned_labor_cost stored on items is the scheduling estimate and is only
reported next to the actuals (variance).
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from millflow.core.exceptions import ValidationError
from millflow.models.project import Product
from millflow.models.production import (
    ProductionSnapshot,
    Worker,
    WorkLog,
    WorkOrder,
    WorkOrderItem,
)

logger = logging.getLogger(__name__)


@dataclass
class LaborCost:
    total: float = 0.0
    days: int = 0
    workers: list = field(default_factory=list)

    def to_dict(self):
        return asdict(self)


def summarize_logs(logs, worker_names=None):
    """Fold work logs into total cost, distinct days and a per-worker breakdown."""
    worker_names = worker_names or {}
    per_worker = {}
    for log in logs:
        entry = per_worker.setdefault(log.worker_id, {
            "worker_id": log.worker_id,
            "worker_name": worker_names.get(log.worker_id, ""),
            "days": 0,
            "cost": 0.0,
        })
        entry["days"] += 1
        entry["cost"] += log.daily_rate or 0
    return LaborCost(
        total=sum(e["cost"] for e in per_worker.values()),
        days=len({log.work_date for log in logs}),
        workers=sorted(per_worker.values(), key=lambda e: e["worker_id"]),
    )


class LaborLedger:
    """Work-log bookkeeping for one tenant."""

    def __init__(self, store):
        self.store = store

    def _worker_names(self, logs):
        ids = sorted({log.worker_id for log in logs})
        return {w.id: w.name for w in self.store.query(Worker, {"id": ids})}

    # ── Logs ─────────────────────────────────────────────────────────────────

    def _existing_log(self, worker_id, item_id, work_date):
        found = self.store.query(
            WorkLog, {"worker_id": worker_id, "work_order_item_id": item_id, "work_date": work_date},
        )
        return found[0] if found else None

    def record_work_log(self, worker_id, item_id, work_date, daily_rate=None, process_name=""):
        """Log one worker-day on an item.

        Returns:
            (WorkLog, created) — created is False when the worker already has
            a log for that item on that day.
        """
        if work_date is None:
            raise ValidationError("work_date is required", details={"work_date": "required"})
        if daily_rate is not None and daily_rate < 0:
            raise ValidationError("Daily rate cannot be negative", details={"daily_rate": daily_rate})
        worker = self.store.get(Worker, worker_id)
        item = self.store.get(WorkOrderItem, item_id)

        existing = self._existing_log(worker.id, item.id, work_date)
        if existing is not None:
            return existing, False

        log = WorkLog(
            worker_id=worker.id,
            work_order_id=item.work_order_id,
            work_order_item_id=item.id,
            product_id=item.product_id,
            work_date=work_date,
            daily_rate=(worker.daily_rate or 0) if daily_rate is None else daily_rate,
            process_name=process_name or "",
        )
        try:
            self.store.add(log)
            self.store.commit()
        except IntegrityError:
            self.store.rollback()
            # Lost a race against an identical log; the unique key kept one row
            logger.info("Duplicate work log for worker=%s item=%s on %s", worker_id, item_id, work_date)
            existing = self._existing_log(worker.id, item.id, work_date)
            if existing is None:
                raise
            return existing, False
        logger.debug(
            "Work log recorded worker=%s item=%s %s", worker_id, item_id, work_date,
            extra={"tenant_id": self.store.tenant_id, "work_order_id": item.work_order_id},
        )
        return log, True

    def delete_work_log(self, log_id):
        log = self.store.get(WorkLog, log_id)
        self.store.delete(log)
        self.store.commit()

    def delete_logs_for_worker_on_date(self, worker_id, day):
        """Remove every log of a worker for one day (e.g. attendance corrected to absent)."""
        ids = [log.id for log in self.store.query(WorkLog, {"worker_id": worker_id, "work_date": day})]
        return self.store.batch_delete(WorkLog, ids)

    # ── Costs ────────────────────────────────────────────────────────────────

    def item_labor_cost(self, item_id):
        item = self.store.get(WorkOrderItem, item_id)
        logs = self.store.query(WorkLog, {"work_order_item_id": item.id})
        return summarize_logs(logs, self._worker_names(logs))

    def work_order_labor_cost(self, work_order_id):
        """Labor cost of the whole work order plus a per-item breakdown."""
        self.store.get(WorkOrder, work_order_id)
        items = self.store.query(WorkOrderItem, {"work_order_id": work_order_id})
        logs = self.store.query(WorkLog, {"work_order_item_id": [i.id for i in items]}) if items else []
        names = self._worker_names(logs)
        summary = summarize_logs(logs, names)
        return {
            **summary.to_dict(),
            "items": {
                item.id: summarize_logs(
                    [log for log in logs if log.work_order_item_id == item.id], names,
                ).to_dict()
                for item in items
            },
        }

    def capture_profitability_snapshot(self, work_order_id):
        """Persist material cost, actual labor (logs) and planned labor of a work order."""
        work_order = self.store.get(WorkOrder, work_order_id)
        items = self.store.query(WorkOrderItem, {"work_order_id": work_order_id})
        product_ids = sorted({i.product_id for i in items if i.product_id})
        products = {p.id: p for p in self.store.query(Product, {"id": product_ids})}
        logs = self.store.query(WorkLog, {"work_order_item_id": [i.id for i in items]}) if items else []

        material_cost = sum(
            (products[i.product_id].material_cost or 0) * (i.quantity or 1)
            for i in items if i.product_id in products
        )
        labor = summarize_logs(logs, self._worker_names(logs))
        planned_labor = sum(i.planned_labor_cost or 0 for i in items)
        metrics = {
            "work_order_number": work_order.work_order_number,
            "status": work_order.status,
            "items": len(items),
            "material_cost": material_cost,
            "labor_cost": labor.total,
            "labor_days": labor.days,
            "planned_labor_cost": planned_labor,
            "labor_variance": labor.total - planned_labor,
            "total_cost": material_cost + labor.total,
            "workers": labor.workers,
        }
        snapshot = self.store.add(ProductionSnapshot(
            work_order_id=work_order_id,
            captured_at=datetime.now(timezone.utc),
            metrics=metrics,
        ))
        self.store.commit()
        logger.info(
            "Snapshot captured: material=%.2f labor=%.2f", material_cost, labor.total,
            extra={"tenant_id": self.store.tenant_id, "work_order_id": work_order_id},
        )
        return snapshot
