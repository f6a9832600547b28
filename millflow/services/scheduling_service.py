"""
Production scheduling — work order timeline and start gate.

State machine:
    pending (unscheduled) ⇄ pending (scheduled) → in_progress → done
    cancelled from either pending state

schedule()    puts a work order on the timeline; worker conflicts are advisory;
              missing essential materials become high-priority reminder tasks;
              a start within AUTO_PROCUREMENT_LEAD_DAYS triggers auto-procurement
reschedule()  date-only move of a scheduled work order
unschedule()  back to the backlog (blocked while in progress)
start()       all-or-nothing gate: start date reached, crew present, essential
              materials ready; only then is anything written
complete_step()  finishes one step of an item and advances the product
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from flask import current_app, has_app_context

from millflow.core.exceptions import (
    NotFoundError,
    PreconditionFailedError,
    ValidationError,
)
from millflow.integrations.attendance_gateway import (
    AttendanceUnavailableError,
    NullAttendanceGateway,
)
from millflow.models.project import (
    DEFAULT_PRODUCTION_STEPS,
    PROJECT_READINESS_PROMOTIONS,
    Product,
    ProductMaterial,
    Project,
    material_is_ready,
)
from millflow.models.production import (
    ReminderTask,
    Worker,
    WorkOrder,
    WorkOrderItem,
    WorkOrderProcess,
)
from millflow.services.cascade_service import CascadeSynchronizer
from millflow.services.code_generator import generate_work_order_number
from millflow.services.conflict_detector import find_worker_conflicts, work_order_worker_ids
from millflow.services.procurement_service import AutoProcurementTrigger
from millflow.services.transitions import validate_work_order_transition

logger = logging.getLogger(__name__)

_DEFAULT_LEAD_DAYS = 2


def _now():
    return datetime.now(timezone.utc)


def _lead_days():
    if has_app_context():
        return int(current_app.config.get("AUTO_PROCUREMENT_LEAD_DAYS", _DEFAULT_LEAD_DAYS))
    return _DEFAULT_LEAD_DAYS


@dataclass
class ScheduleResult:
    work_order_id: int
    conflicts: list = field(default_factory=list)
    tasks_created: int = 0
    orders_created: list = field(default_factory=list)

    def to_dict(self):
        return {
            "work_order_id": self.work_order_id,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "tasks_created": self.tasks_created,
            "orders_created": list(self.orders_created),
        }


class ProductionScheduler:
    """Work-order scheduling for one tenant.

    Args:
        store: StoreGateway bound to the tenant.
        attendance: AttendanceGateway; defaults to the null gateway.
        notifier: Notifier for auto-procurement messages.
        today: Callable returning the current date (injectable for tests).
    """

    def __init__(self, store, attendance=None, notifier=None, today=None):
        self.store = store
        self.attendance = attendance or NullAttendanceGateway()
        self.notifier = notifier
        self.today = today or date.today
        self.cascade = CascadeSynchronizer(store)
        self.procurement = AutoProcurementTrigger(store, self.cascade, notifier)

    @property
    def tenant_id(self):
        return self.store.tenant_id

    def _log_extra(self, work_order_id, **extra):
        return {"tenant_id": self.tenant_id, "work_order_id": work_order_id, **extra}

    # ── Loading helpers ──────────────────────────────────────────────────────

    def _items(self, work_order_id):
        return self.store.query(WorkOrderItem, {"work_order_id": work_order_id})

    def _processes(self, items):
        if not items:
            return []
        return self.store.query(
            WorkOrderProcess, {"work_order_item_id": [i.id for i in items]},
            order_by=WorkOrderProcess.position,
        )

    def _crew(self, work_order_id):
        return sorted(work_order_worker_ids(self.store, [work_order_id])[work_order_id])

    def _missing_essentials(self, items):
        """[(item, product, [materials])] for items blocked on essential materials."""
        product_ids = sorted({i.product_id for i in items if i.product_id})
        if not product_ids:
            return []
        products = {p.id: p for p in self.store.query(Product, {"id": product_ids})}
        materials = self.store.query(
            ProductMaterial, {"product_id": product_ids, "is_essential": True},
        )
        missing = []
        for item in items:
            blocked = [
                m for m in materials
                if m.product_id == item.product_id and not material_is_ready(m.status)
            ]
            if blocked:
                missing.append((item, products.get(item.product_id), blocked))
        return missing

    @staticmethod
    def _check_dates(start, end):
        if start is None:
            raise ValidationError("Planned start date is required", details={"start": "required"})
        if end is None:
            end = start
        if end < start:
            raise ValidationError(
                "Planned end date is before the start date",
                details={"start": start.isoformat(), "end": end.isoformat()},
            )
        return start, end

    # ═════════════════════════════════════════════════════════════════════════
    # Creation
    # ═════════════════════════════════════════════════════════════════════════

    def create_work_order(self, items, production_steps=None, due_date=None, notes=""):
        """Create an unscheduled work order.

        Each entry of `items`: product_id, quantity, and optionally
        `crew` = {step_name: {"worker_id": int, "helper_ids": [int]}}.
        """
        if not items:
            raise ValidationError("A work order needs at least one item", details={"items": "required"})
        steps = list(production_steps or DEFAULT_PRODUCTION_STEPS)
        if len(steps) != len(set(steps)):
            raise ValidationError("Production steps must be unique", details={"production_steps": steps})

        resolved = []
        for entry in items:
            product = self.store.get(Product, entry.get("product_id"))
            resolved.append((entry, product))
            for step in (entry.get("crew") or {}):
                if step not in steps:
                    raise ValidationError(
                        f"Unknown production step '{step}'", details={"crew": step},
                    )

        work_order = self.store.add(WorkOrder(
            work_order_number=generate_work_order_number(self.store, self.today()),
            status="pending",
            production_steps=steps,
            is_scheduled=False,
            due_date=due_date,
            notes=notes or "",
        ))
        for entry, product in resolved:
            item = self.store.add(WorkOrderItem(
                work_order_id=work_order.id,
                product_id=product.id,
                project_id=product.project_id,
                quantity=int(entry.get("quantity") or 1),
                status="pending",
            ))
            crew = entry.get("crew") or {}
            for position, step in enumerate(steps):
                assignment = crew.get(step) or {}
                self.store.add(WorkOrderProcess(
                    work_order_item_id=item.id,
                    step_name=step,
                    position=position,
                    status="pending",
                    assigned_worker_id=assignment.get("worker_id"),
                    helper_worker_ids=list(assignment.get("helper_ids") or []),
                ))
        self.store.commit()
        logger.info(
            "Work order %s created (%d item(s))", work_order.work_order_number, len(items),
            extra=self._log_extra(work_order.id),
        )
        return work_order

    # ═════════════════════════════════════════════════════════════════════════
    # Timeline
    # ═════════════════════════════════════════════════════════════════════════

    def schedule(self, work_order_id, start, end=None):
        """Place a work order on the timeline.

        Raises:
            ValidationError: end before start.
            PreconditionFailedError: work order in progress, done or cancelled.
        """
        start, end = self._check_dates(start, end)
        work_order = self.store.get(WorkOrder, work_order_id)
        if work_order.status != "pending":
            raise PreconditionFailedError(
                f"Work order {work_order.work_order_number} is {work_order.status} "
                f"and cannot be scheduled",
                details={"status": work_order.status},
            )

        result = ScheduleResult(work_order_id=work_order_id)
        result.conflicts = find_worker_conflicts(
            self.store, self._crew(work_order_id), start, end, exclude_work_order_id=work_order_id,
        )

        work_order.planned_start = start
        work_order.planned_end = end
        work_order.is_scheduled = True
        work_order.scheduled_at = _now()
        items = self._items(work_order_id)
        self._estimate_labor(items, (end - start).days + 1)
        self.store.commit()
        logger.info(
            "Scheduled %s for %s..%s (%d advisory conflict(s))",
            work_order.work_order_number, start, end, len(result.conflicts),
            extra=self._log_extra(work_order_id),
        )

        result.tasks_created = self._create_material_tasks(work_order, items, start)

        days_until_start = (start - self.today()).days
        if days_until_start <= _lead_days():
            result.orders_created = self.procurement.create_missing_material_orders(
                work_order_id, start,
            )
        return result

    def _estimate_labor(self, items, days):
        """planned_labor_cost = days × Σ daily rate of the item's crew."""
        processes = self._processes(items)
        worker_ids = sorted({w for p in processes for w in p.worker_ids()})
        rates = {w.id: w.daily_rate or 0 for w in self.store.query(Worker, {"id": worker_ids})}
        for item in items:
            crew = {w for p in processes if p.work_order_item_id == item.id for w in p.worker_ids()}
            item.planned_labor_cost = days * sum(rates.get(w, 0) for w in crew)

    def _create_material_tasks(self, work_order, items, start):
        """One high-priority reminder per essential material still missing."""
        existing = {
            t.material_id for t in self.store.query(
                ReminderTask,
                {"work_order_id": work_order.id, "auto_generated": True, "status": "open"},
            )
        }
        created = 0
        for item, product, materials in self._missing_essentials(items):
            product_name = product.name if product else f"product {item.product_id}"
            for material in materials:
                if material.id in existing:
                    continue
                self.store.add(ReminderTask(
                    title=f"Order: {material.material_name}",
                    description=(
                        f"Essential material for \"{product_name}\" "
                        f"(work order {work_order.work_order_number}). "
                        f"Must be received before production starts."
                    ),
                    priority="high",
                    status="open",
                    due_date=start,
                    project_id=item.project_id,
                    work_order_id=work_order.id,
                    product_id=item.product_id,
                    material_id=material.id,
                    auto_generated=True,
                ))
                existing.add(material.id)
                created += 1
        if created:
            self.store.commit()
            logger.info(
                "%d material reminder task(s) created", created,
                extra=self._log_extra(work_order.id),
            )
        return created

    def reschedule(self, work_order_id, start, end=None):
        """Move a scheduled work order; returns the advisory conflicts."""
        start, end = self._check_dates(start, end)
        work_order = self.store.get(WorkOrder, work_order_id)
        if not work_order.is_scheduled:
            raise PreconditionFailedError(
                f"Work order {work_order.work_order_number} is not scheduled",
            )
        if work_order.is_terminal:
            raise PreconditionFailedError(
                f"Work order {work_order.work_order_number} is {work_order.status}",
            )
        conflicts = find_worker_conflicts(
            self.store, self._crew(work_order_id), start, end, exclude_work_order_id=work_order_id,
        )
        work_order.planned_start = start
        work_order.planned_end = end
        self.store.commit()
        logger.info("Rescheduled to %s..%s", start, end, extra=self._log_extra(work_order_id))
        return conflicts

    def unschedule(self, work_order_id):
        """Take a work order off the timeline; refused while in progress."""
        work_order = self.store.get(WorkOrder, work_order_id)
        if work_order.status == "in_progress":
            raise PreconditionFailedError(
                "A work order in progress cannot be removed from the schedule. "
                "Pause or finish production first.",
            )
        work_order.planned_start = None
        work_order.planned_end = None
        work_order.is_scheduled = False
        work_order.scheduled_at = None
        self.store.commit()
        logger.info("Unscheduled", extra=self._log_extra(work_order_id))
        return work_order

    def cancel(self, work_order_id):
        work_order = self.store.get(WorkOrder, work_order_id)
        validate_work_order_transition(work_order.status, "cancelled")
        work_order.status = "cancelled"
        work_order.planned_start = None
        work_order.planned_end = None
        work_order.is_scheduled = False
        work_order.scheduled_at = None
        self.store.commit()
        logger.info("Cancelled", extra=self._log_extra(work_order_id))
        return work_order

    # ═════════════════════════════════════════════════════════════════════════
    # Start gate
    # ═════════════════════════════════════════════════════════════════════════

    def _check_start_gate(self, work_order, items):
        today = self.today()
        if work_order.status == "in_progress":
            raise PreconditionFailedError(
                f"Work order {work_order.work_order_number} is already in progress",
            )
        validate_work_order_transition(work_order.status, "in_progress")

        if work_order.is_scheduled and work_order.planned_start and work_order.planned_start > today:
            raise PreconditionFailedError(
                f"Work order is scheduled for {work_order.planned_start.isoformat()} "
                f"and can only be started on that date.",
                details={"planned_start": work_order.planned_start.isoformat()},
            )

        processes = self._processes(items)
        primaries = {p.assigned_worker_id for p in processes if p.assigned_worker_id}
        crew = sorted({w for p in processes for w in p.worker_ids()})
        names = {w.id: w.name for w in self.store.query(Worker, {"id": crew})}
        for worker_id in crew:
            role = "Worker" if worker_id in primaries else "Helper"
            name = names.get(worker_id, f"#{worker_id}")
            try:
                available, reason = self.attendance.is_worker_available(worker_id, today)
            except AttendanceUnavailableError as exc:
                raise PreconditionFailedError(
                    f"{role} \"{name}\" attendance could not be checked: {exc}",
                    details={"worker_id": worker_id},
                ) from exc
            if not available:
                raise PreconditionFailedError(
                    f"{role} \"{name}\" is not present today. {reason}",
                    details={"worker_id": worker_id, "reason": reason},
                )

        missing = self._missing_essentials(items)
        if missing:
            item, product, materials = missing[0]
            product_name = product.name if product else f"product {item.product_id}"
            raise PreconditionFailedError(
                f"Essential materials are not ready for \"{product_name}\": "
                + ", ".join(m.material_name for m in materials),
                details={"product_id": item.product_id, "material_ids": [m.id for m in materials]},
            )
        return processes

    def start(self, work_order_id):
        """Start production if every gate passes; otherwise write nothing."""
        work_order = self.store.get(WorkOrder, work_order_id)
        items = self._items(work_order_id)
        processes = self._check_start_gate(work_order, items)

        now = _now()
        work_order.status = "in_progress"
        work_order.started_at = now
        for item in items:
            if item.status == "pending":
                item.status = "in_progress"
                item.started_at = now
        for process in processes:
            if process.status == "pending":
                process.status = "in_progress"
                process.started_at = now

        first_step = (work_order.production_steps or DEFAULT_PRODUCTION_STEPS)[0]
        product_ids = sorted({i.product_id for i in items if i.product_id})
        project_ids = set()
        for product in self.store.query(Product, {"id": product_ids}):
            product.status = first_step
            if product.project_id:
                project_ids.add(product.project_id)
        for project in self.store.query(Project, {"id": sorted(project_ids)}):
            target = PROJECT_READINESS_PROMOTIONS.get(project.status)
            if target:
                project.status = target
        self.store.commit()
        logger.info(
            "Work order %s started (%d item(s))", work_order.work_order_number, len(items),
            extra=self._log_extra(work_order_id),
        )
        return work_order

    # ═════════════════════════════════════════════════════════════════════════
    # Step completion
    # ═════════════════════════════════════════════════════════════════════════

    def complete_step(self, item_id, step_name):
        """Finish one step of an item; the product moves to the next step or `ready`."""
        item = self.store.get(WorkOrderItem, item_id)
        work_order = self.store.get(WorkOrder, item.work_order_id)
        if work_order.status != "in_progress":
            raise PreconditionFailedError(
                f"Work order {work_order.work_order_number} is {work_order.status}; "
                f"steps can only be completed while it is in progress",
            )
        processes = self._processes([item])
        current = next((p for p in processes if p.step_name == step_name), None)
        if current is None:
            raise NotFoundError("WorkOrderProcess", step_name, self.tenant_id)

        now = _now()
        if current.status != "done":
            current.status = "done"
            current.completed_at = now

        remaining = [p for p in processes if p.status != "done"]
        product = self.store.get(Product, item.product_id) if item.product_id else None
        if remaining:
            upcoming = remaining[0]
            if upcoming.status == "pending":
                upcoming.status = "in_progress"
                upcoming.started_at = now
            if product is not None:
                product.status = upcoming.step_name
        else:
            item.status = "done"
            item.completed_at = now
            if product is not None:
                product.status = "ready"

        siblings = self._items(work_order.id)
        if all(i.status == "done" for i in siblings):
            validate_work_order_transition(work_order.status, "done")
            work_order.status = "done"
            work_order.completed_at = now
        self.store.commit()
        logger.info(
            "Step %s done on item %s", step_name, item_id,
            extra=self._log_extra(work_order.id, step=step_name),
        )
        return {
            "item_id": item.id,
            "item_status": item.status,
            "product_status": product.status if product is not None else None,
            "work_order_status": work_order.status,
        }
