"""
MillFlow
Production domain models — work orders, workers, labor.

Models:
    - WorkOrder:          scheduled production batch
    - WorkOrderItem:      one product (× quantity) inside a work order
    - WorkOrderProcess:   ordered production step of an item, with crew
    - Worker:             shop-floor worker with a daily rate
    - WorkLog:            one worker-day on one item (labor ledger row)
    - ReminderTask:       follow-up task (e.g. missing essential material)
    - ProductionSnapshot: frozen cost / labor metrics of a work order

Architecture:
    WorkOrder ──1:N──▶ WorkOrderItem ──1:N──▶ WorkOrderProcess
    WorkOrderItem ──1:N──▶ WorkLog ◀──N:1── Worker

Lifecycle states:
    WorkOrder:        pending (unscheduled / scheduled) → in_progress → done
                      (cancelled from pending)
    WorkOrderItem:    pending → in_progress → done
    WorkOrderProcess: pending → in_progress → done
"""

from millflow.models import db
from millflow.models.base import TenantModel, iso


# ── Constants ────────────────────────────────────────────────────────────────

WORK_ORDER_TERMINAL_STATUSES = {"done", "cancelled"}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

WORK_ORDER_TRANSITIONS = {
    "pending":     ["in_progress", "cancelled"],
    "in_progress": ["done", "pending"],
    "done":        [],
    "cancelled":   [],
}


def validate_work_order_transition(old_status, new_status):
    """Return True if WorkOrder status transition is valid."""
    if old_status not in WORK_ORDER_TRANSITIONS or new_status not in WORK_ORDER_TRANSITIONS:
        return False
    if old_status == new_status:
        return True
    return new_status in WORK_ORDER_TRANSITIONS.get(old_status, [])


# ═════════════════════════════════════════════════════════════════════════════
# 1. WorkOrder
# ═════════════════════════════════════════════════════════════════════════════


class WorkOrder(TenantModel):
    """
    Production work order.
    Code format: WO-YYYYMMDD-NNN.

    is_scheduled is False exactly when planned_start / planned_end are null.
    """

    __tablename__ = "work_orders"

    id = db.Column(db.Integer, primary_key=True)
    work_order_number = db.Column(db.String(30), nullable=False, index=True)
    status = db.Column(
        db.String(20), default="pending",
        comment="pending | in_progress | done | cancelled",
    )
    production_steps = db.Column(db.JSON, default=list, comment="Ordered step names")
    planned_start = db.Column(db.Date, nullable=True)
    planned_end = db.Column(db.Date, nullable=True)
    is_scheduled = db.Column(db.Boolean, default=False)
    scheduled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    due_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, default="")

    items = db.relationship(
        "WorkOrderItem", backref="work_order", lazy="dynamic",
        cascade="all, delete-orphan", order_by="WorkOrderItem.id",
    )

    @property
    def is_terminal(self):
        return self.status in WORK_ORDER_TERMINAL_STATUSES

    def to_dict(self, include_items=False):
        result = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "work_order_number": self.work_order_number,
            "status": self.status,
            "production_steps": list(self.production_steps or []),
            "planned_start": iso(self.planned_start),
            "planned_end": iso(self.planned_end),
            "is_scheduled": self.is_scheduled,
            "scheduled_at": iso(self.scheduled_at),
            "started_at": iso(self.started_at),
            "completed_at": iso(self.completed_at),
            "due_date": iso(self.due_date),
            "notes": self.notes,
        }
        if include_items:
            result["items"] = [i.to_dict(include_processes=True) for i in self.items]
        return result

    def __repr__(self):
        return f"<WorkOrder {self.id}: {self.work_order_number} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. WorkOrderItem + WorkOrderProcess
# ═════════════════════════════════════════════════════════════════════════════


class WorkOrderItem(TenantModel):
    """A product being built inside a work order."""

    __tablename__ = "work_order_items"

    id = db.Column(db.Integer, primary_key=True)
    work_order_id = db.Column(
        db.Integer, db.ForeignKey("work_orders.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    product_id = db.Column(db.Integer, nullable=True, index=True)
    project_id = db.Column(db.Integer, nullable=True)
    quantity = db.Column(db.Integer, default=1)
    status = db.Column(db.String(20), default="pending")
    planned_labor_cost = db.Column(
        db.Float, default=0.0, comment="Estimate only; actual labor comes from work_logs",
    )
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    processes = db.relationship(
        "WorkOrderProcess", backref="item", lazy="dynamic",
        cascade="all, delete-orphan", order_by="WorkOrderProcess.position",
    )

    def to_dict(self, include_processes=False):
        result = {
            "id": self.id,
            "work_order_id": self.work_order_id,
            "product_id": self.product_id,
            "project_id": self.project_id,
            "quantity": self.quantity,
            "status": self.status,
            "planned_labor_cost": self.planned_labor_cost,
            "started_at": iso(self.started_at),
            "completed_at": iso(self.completed_at),
        }
        if include_processes:
            result["processes"] = [p.to_dict() for p in self.processes]
        return result

    def __repr__(self):
        return f"<WorkOrderItem {self.id} wo={self.work_order_id} [{self.status}]>"


class WorkOrderProcess(TenantModel):
    """One production step of a work-order item, with its assigned crew."""

    __tablename__ = "work_order_processes"

    id = db.Column(db.Integer, primary_key=True)
    work_order_item_id = db.Column(
        db.Integer, db.ForeignKey("work_order_items.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    step_name = db.Column(db.String(50), nullable=False)
    position = db.Column(db.Integer, default=0)
    status = db.Column(db.String(20), default="pending")
    assigned_worker_id = db.Column(db.Integer, nullable=True, index=True)
    helper_worker_ids = db.Column(db.JSON, default=list)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def worker_ids(self):
        ids = []
        if self.assigned_worker_id:
            ids.append(self.assigned_worker_id)
        ids.extend(w for w in (self.helper_worker_ids or []) if w)
        return ids

    def to_dict(self):
        return {
            "id": self.id,
            "work_order_item_id": self.work_order_item_id,
            "step_name": self.step_name,
            "position": self.position,
            "status": self.status,
            "assigned_worker_id": self.assigned_worker_id,
            "helper_worker_ids": list(self.helper_worker_ids or []),
            "started_at": iso(self.started_at),
            "completed_at": iso(self.completed_at),
        }

    def __repr__(self):
        return f"<WorkOrderProcess {self.id}: {self.step_name} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. Worker + WorkLog
# ═════════════════════════════════════════════════════════════════════════════


class Worker(TenantModel):
    __tablename__ = "workers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    daily_rate = db.Column(db.Float, default=0.0)
    is_active = db.Column(db.Boolean, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "daily_rate": self.daily_rate,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Worker {self.id}: {self.name}>"


class WorkLog(TenantModel):
    """One worker-day spent on one work-order item."""

    __tablename__ = "work_logs"
    __table_args__ = (
        db.UniqueConstraint(
            "tenant_id", "worker_id", "work_order_item_id", "work_date",
            name="uq_work_log_worker_item_day",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    worker_id = db.Column(
        db.Integer, db.ForeignKey("workers.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    work_order_id = db.Column(db.Integer, nullable=True, index=True)
    work_order_item_id = db.Column(
        db.Integer, db.ForeignKey("work_order_items.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    product_id = db.Column(db.Integer, nullable=True)
    work_date = db.Column(db.Date, nullable=False, index=True)
    daily_rate = db.Column(db.Float, default=0.0, comment="Rate frozen at log time")
    process_name = db.Column(db.String(50), default="")

    def to_dict(self):
        return {
            "id": self.id,
            "worker_id": self.worker_id,
            "work_order_id": self.work_order_id,
            "work_order_item_id": self.work_order_item_id,
            "product_id": self.product_id,
            "work_date": iso(self.work_date),
            "daily_rate": self.daily_rate,
            "process_name": self.process_name,
        }

    def __repr__(self):
        return f"<WorkLog {self.id} worker={self.worker_id} {self.work_date}>"


# ═════════════════════════════════════════════════════════════════════════════
# 4. ReminderTask + ProductionSnapshot
# ═════════════════════════════════════════════════════════════════════════════


class ReminderTask(TenantModel):
    __tablename__ = "reminder_tasks"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    priority = db.Column(db.String(10), default="medium")
    status = db.Column(db.String(10), default="open")
    due_date = db.Column(db.Date, nullable=True)
    project_id = db.Column(db.Integer, nullable=True)
    work_order_id = db.Column(db.Integer, nullable=True, index=True)
    product_id = db.Column(db.Integer, nullable=True)
    material_id = db.Column(db.Integer, nullable=True)
    auto_generated = db.Column(db.Boolean, default=False)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "due_date": iso(self.due_date),
            "project_id": self.project_id,
            "work_order_id": self.work_order_id,
            "product_id": self.product_id,
            "material_id": self.material_id,
            "auto_generated": self.auto_generated,
        }

    def __repr__(self):
        return f"<ReminderTask {self.id}: {self.title[:40]}>"


class ProductionSnapshot(TenantModel):
    """Point-in-time profitability figures for a work order."""

    __tablename__ = "production_snapshots"

    id = db.Column(db.Integer, primary_key=True)
    work_order_id = db.Column(db.Integer, nullable=False, index=True)
    captured_at = db.Column(db.DateTime(timezone=True), nullable=False)
    metrics = db.Column(db.JSON, default=dict)

    def to_dict(self):
        return {
            "id": self.id,
            "work_order_id": self.work_order_id,
            "captured_at": iso(self.captured_at),
            "metrics": self.metrics or {},
        }

    def __repr__(self):
        return f"<ProductionSnapshot {self.id} wo={self.work_order_id}>"
