"""
ProductionEngine — the entry points the CRUD layer calls.

Every operation returns an OperationResult; engine errors never escape as
exceptions. A failure carries the error message verbatim plus a machine
code (same E.* codes the HTTP layer uses), so the caller can show the
message to the user or decide to retry.

Usage:
    engine = ProductionEngine(tenant_id=1)
    result = engine.apply_order_status_change(order_id=7, new_status="sent")
    if not result.ok:
        flash(result.message)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from millflow.core.exceptions import (
    CascadeStepError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PartialBatchFailureError,
    PreconditionFailedError,
    StoreTimeoutError,
    ValidationError,
)
from millflow.integrations.attendance_gateway import attendance_from_config
from millflow.integrations.store_gateway import SqlAlchemyStore
from millflow.services.cascade_service import CascadeSynchronizer
from millflow.services.conflict_detector import find_worker_conflicts
from millflow.services.labor_ledger import LaborLedger
from millflow.services.notification import NotificationService
from millflow.services.scheduling_service import ProductionScheduler
from millflow.utils.errors import E

logger = logging.getLogger(__name__)

# Most specific first: InvalidTransition / PreconditionFailed subclass ValidationError
_ERROR_CODES = (
    (NotFoundError, E.NOT_FOUND),
    (InvalidTransitionError, E.INVALID_TRANSITION),
    (PreconditionFailedError, E.PRECONDITION_FAILED),
    (ValidationError, E.VALIDATION_CONSTRAINT),
    (ConflictError, E.CONFLICT_STATE),
    (PartialBatchFailureError, E.STORE_UNAVAILABLE),
    (StoreTimeoutError, E.STORE_UNAVAILABLE),
    (CascadeStepError, E.CASCADE_INCOMPLETE),
)

ENGINE_ERRORS = tuple(cls for cls, _ in _ERROR_CODES)


def error_code_for(exc):
    for cls, code in _ERROR_CODES:
        if isinstance(exc, cls):
            return code
    return E.INTERNAL


@dataclass
class OperationResult:
    ok: bool
    message: str
    code: str | None = None
    data: Any = None
    details: dict = field(default_factory=dict)

    @classmethod
    def success(cls, message, data=None):
        return cls(ok=True, message=message, data=data)

    @classmethod
    def failure(cls, exc):
        return cls(
            ok=False,
            message=str(exc),
            code=error_code_for(exc),
            details=getattr(exc, "details", None) or {},
        )

    def to_dict(self):
        body = {"ok": self.ok, "message": self.message}
        if self.code:
            body["code"] = self.code
        if self.data is not None:
            body["data"] = self.data
        if self.details:
            body["details"] = self.details
        return body


class ProductionEngine:
    """Facade over the cascade, scheduler and labor ledger for one tenant."""

    def __init__(self, tenant_id, store=None, attendance=None, notifier=None, today=None):
        self.tenant_id = tenant_id
        self.store = store or SqlAlchemyStore(tenant_id=tenant_id)
        self.notifier = notifier or NotificationService(tenant_id)
        self.cascade = CascadeSynchronizer(self.store)
        self.scheduler = ProductionScheduler(
            self.store,
            attendance=attendance or attendance_from_config(),
            notifier=self.notifier,
            today=today,
        )
        self.ledger = LaborLedger(self.store)

    def _run(self, operation, fn, success_message):
        try:
            data = fn()
        except ENGINE_ERRORS as exc:
            logger.warning(
                "%s failed: %s", operation, exc,
                extra={"tenant_id": self.tenant_id},
            )
            return OperationResult.failure(exc)
        return OperationResult.success(success_message, data)

    # ── Procurement cascade ──────────────────────────────────────────────────

    def apply_order_status_change(self, order_id, new_status):
        return self._run(
            "apply_order_status_change",
            lambda: self.cascade.apply_order_status_change(order_id, new_status).to_dict(),
            "Order status updated",
        )

    def mark_items_received(self, item_ids):
        return self._run(
            "mark_items_received",
            lambda: self.cascade.mark_items_received(item_ids).to_dict(),
            "Materials received",
        )

    def delete_order_items(self, item_ids):
        return self._run(
            "delete_order_items",
            lambda: self.cascade.delete_order_items(item_ids).to_dict(),
            "Order items deleted",
        )

    # ── Scheduling ───────────────────────────────────────────────────────────

    def schedule_work_order(self, work_order_id, start, end=None):
        def _schedule():
            result = self.scheduler.schedule(work_order_id, start, end)
            return result.to_dict()

        outcome = self._run("schedule_work_order", _schedule, "Work order scheduled")
        if outcome.ok:
            parts = ["Work order scheduled."]
            if outcome.data["tasks_created"]:
                parts.append(f"{outcome.data['tasks_created']} material task(s) created.")
            if outcome.data["orders_created"]:
                parts.append(
                    f"{len(outcome.data['orders_created'])} order(s) created automatically "
                    f"({', '.join(outcome.data['orders_created'])})."
                )
            if outcome.data["conflicts"]:
                parts.append(f"{len(outcome.data['conflicts'])} worker conflict(s).")
            outcome.message = " ".join(parts)
        return outcome

    def reschedule_work_order(self, work_order_id, start, end=None):
        return self._run(
            "reschedule_work_order",
            lambda: {"conflicts": [c.to_dict() for c in self.scheduler.reschedule(work_order_id, start, end)]},
            "Work order moved",
        )

    def unschedule_work_order(self, work_order_id):
        return self._run(
            "unschedule_work_order",
            lambda: self.scheduler.unschedule(work_order_id).to_dict(),
            "Work order removed from the schedule",
        )

    def start_work_order(self, work_order_id):
        return self._run(
            "start_work_order",
            lambda: self.scheduler.start(work_order_id).to_dict(),
            "Work order started",
        )

    def complete_work_order_step(self, item_id, step_name):
        return self._run(
            "complete_work_order_step",
            lambda: self.scheduler.complete_step(item_id, step_name),
            "Step completed",
        )

    def check_worker_conflicts(self, worker_ids, start, end=None, exclude_work_order_id=None):
        """Read-only conflict lookup; returns the list itself."""
        return find_worker_conflicts(self.store, worker_ids, start, end, exclude_work_order_id)

    # ── Labor ────────────────────────────────────────────────────────────────

    def record_work_log(self, worker_id, item_id, work_date, daily_rate=None, process_name=""):
        def _record():
            log, created = self.ledger.record_work_log(
                worker_id, item_id, work_date, daily_rate=daily_rate, process_name=process_name,
            )
            return {"work_log": log.to_dict(), "created": created}

        outcome = self._run("record_work_log", _record, "Work log recorded")
        if outcome.ok and not outcome.data["created"]:
            outcome.message = "Work log already exists for that day"
        return outcome

    def capture_snapshot(self, work_order_id):
        return self._run(
            "capture_snapshot",
            lambda: self.ledger.capture_profitability_snapshot(work_order_id).to_dict(),
            "Snapshot captured",
        )
