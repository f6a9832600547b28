"""Production blueprint — work orders, scheduling, step progress and labor.

Endpoint groups:
  Work orders      POST   /api/v1/work-orders
                   GET    /api/v1/work-orders/<id>
  Timeline         POST   /api/v1/work-orders/<id>/schedule
                   POST   /api/v1/work-orders/<id>/reschedule
                   POST   /api/v1/work-orders/<id>/unschedule
                   POST   /api/v1/work-orders/<id>/cancel
                   POST   /api/v1/work-orders/conflicts
  Execution        POST   /api/v1/work-orders/<id>/start
                   POST   /api/v1/work-order-items/<id>/complete-step
  Labor            POST   /api/v1/work-logs
                   DELETE /api/v1/work-logs/<id>
                   GET    /api/v1/work-order-items/<id>/labor-cost
                   GET    /api/v1/work-orders/<id>/labor-cost
                   POST   /api/v1/work-orders/<id>/snapshot
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from millflow.blueprints import register_error_handlers, result_response, tenant_required
from millflow.models.production import WorkOrder
from millflow.services.engine import ProductionEngine
from millflow.utils.errors import E, api_error
from millflow.utils.helpers import parse_date_input, parse_id_list

logger = logging.getLogger(__name__)

production_bp = Blueprint("production", __name__, url_prefix="/api/v1")
register_error_handlers(production_bp)


def _date_range(data):
    """Parse start/end from a body. Returns (start, end, error_response)."""
    try:
        start = parse_date_input(data.get("start"))
        end = parse_date_input(data.get("end"))
    except ValueError as exc:
        return None, None, api_error(E.VALIDATION_INVALID, str(exc))
    if start is None:
        return None, None, api_error(E.VALIDATION_REQUIRED, "start is required")
    return start, end, None


# ═════════════════════════════════════════════════════════════════════════
# Work orders
# ═════════════════════════════════════════════════════════════════════════


@production_bp.route("/work-orders", methods=["POST"])
def create_work_order():
    """Create an unscheduled work order.

    Body: {
        tenant_id, due_date?, notes?, production_steps?: [str],
        items: [{product_id, quantity, crew?: {step: {worker_id, helper_ids}}}]
    }
    """
    tenant_id, err = tenant_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    items = data.get("items")
    if not isinstance(items, list) or not items:
        return api_error(E.VALIDATION_REQUIRED, "items is required")
    try:
        due_date = parse_date_input(data.get("due_date"))
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    engine = ProductionEngine(tenant_id)
    work_order = engine.scheduler.create_work_order(
        items,
        production_steps=data.get("production_steps"),
        due_date=due_date,
        notes=data.get("notes") or "",
    )
    return jsonify(work_order.to_dict(include_items=True)), 201


@production_bp.route("/work-orders/<int:work_order_id>", methods=["GET"])
def get_work_order(work_order_id):
    tenant_id, err = tenant_required()
    if err:
        return err
    work_order = ProductionEngine(tenant_id).store.get(WorkOrder, work_order_id)
    return jsonify(work_order.to_dict(include_items=True)), 200


# ═════════════════════════════════════════════════════════════════════════
# Timeline
# ═════════════════════════════════════════════════════════════════════════


@production_bp.route("/work-orders/<int:work_order_id>/schedule", methods=["POST"])
def schedule_work_order(work_order_id):
    """Body: { tenant_id, start, end? } — dates as YYYY-MM-DD or DD.MM.YYYY."""
    tenant_id, err = tenant_required()
    if err:
        return err
    start, end, err = _date_range(request.get_json(silent=True) or {})
    if err:
        return err
    return result_response(ProductionEngine(tenant_id).schedule_work_order(work_order_id, start, end))


@production_bp.route("/work-orders/<int:work_order_id>/reschedule", methods=["POST"])
def reschedule_work_order(work_order_id):
    tenant_id, err = tenant_required()
    if err:
        return err
    start, end, err = _date_range(request.get_json(silent=True) or {})
    if err:
        return err
    return result_response(ProductionEngine(tenant_id).reschedule_work_order(work_order_id, start, end))


@production_bp.route("/work-orders/<int:work_order_id>/unschedule", methods=["POST"])
def unschedule_work_order(work_order_id):
    tenant_id, err = tenant_required()
    if err:
        return err
    return result_response(ProductionEngine(tenant_id).unschedule_work_order(work_order_id))


@production_bp.route("/work-orders/<int:work_order_id>/cancel", methods=["POST"])
def cancel_work_order(work_order_id):
    tenant_id, err = tenant_required()
    if err:
        return err
    work_order = ProductionEngine(tenant_id).scheduler.cancel(work_order_id)
    return jsonify(work_order.to_dict()), 200


@production_bp.route("/work-orders/conflicts", methods=["POST"])
def worker_conflicts():
    """Which of the given workers are already booked in [start, end]?

    Body: { tenant_id, worker_ids: [int], start, end?, exclude_work_order_id? }
    """
    tenant_id, err = tenant_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    start, end, err = _date_range(data)
    if err:
        return err
    try:
        worker_ids = parse_id_list(data.get("worker_ids"), "worker_ids")
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    conflicts = ProductionEngine(tenant_id).check_worker_conflicts(
        worker_ids, start, end, exclude_work_order_id=data.get("exclude_work_order_id"),
    )
    return jsonify({"conflicts": [c.to_dict() for c in conflicts], "total": len(conflicts)}), 200


# ═════════════════════════════════════════════════════════════════════════
# Execution
# ═════════════════════════════════════════════════════════════════════════


@production_bp.route("/work-orders/<int:work_order_id>/start", methods=["POST"])
def start_work_order(work_order_id):
    tenant_id, err = tenant_required()
    if err:
        return err
    return result_response(ProductionEngine(tenant_id).start_work_order(work_order_id))


@production_bp.route("/work-order-items/<int:item_id>/complete-step", methods=["POST"])
def complete_step(item_id):
    """Body: { tenant_id, step_name }"""
    tenant_id, err = tenant_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    step_name = (data.get("step_name") or "").strip()
    if not step_name:
        return api_error(E.VALIDATION_REQUIRED, "step_name is required")
    return result_response(ProductionEngine(tenant_id).complete_work_order_step(item_id, step_name))


# ═════════════════════════════════════════════════════════════════════════
# Labor
# ═════════════════════════════════════════════════════════════════════════


@production_bp.route("/work-logs", methods=["POST"])
def record_work_log():
    """Body: { tenant_id, worker_id, item_id, work_date, daily_rate?, process_name? }

    201 when a new log was written, 200 when the worker already had one
    for that item on that day.
    """
    tenant_id, err = tenant_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    for key in ("worker_id", "item_id", "work_date"):
        if not data.get(key):
            return api_error(E.VALIDATION_REQUIRED, f"{key} is required")
    try:
        work_date = parse_date_input(data["work_date"])
        worker_id = int(data["worker_id"])
        item_id = int(data["item_id"])
        daily_rate = float(data["daily_rate"]) if data.get("daily_rate") is not None else None
    except (TypeError, ValueError) as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    result = ProductionEngine(tenant_id).record_work_log(
        worker_id, item_id, work_date,
        daily_rate=daily_rate, process_name=data.get("process_name") or "",
    )
    created = bool(result.ok and result.data["created"])
    return result_response(result, success_status=201 if created else 200)


@production_bp.route("/work-logs/<int:log_id>", methods=["DELETE"])
def delete_work_log(log_id):
    tenant_id, err = tenant_required()
    if err:
        return err
    ProductionEngine(tenant_id).ledger.delete_work_log(log_id)
    return jsonify({"deleted": True, "id": log_id}), 200


@production_bp.route("/work-order-items/<int:item_id>/labor-cost", methods=["GET"])
def item_labor_cost(item_id):
    tenant_id, err = tenant_required()
    if err:
        return err
    cost = ProductionEngine(tenant_id).ledger.item_labor_cost(item_id)
    return jsonify(cost.to_dict()), 200


@production_bp.route("/work-orders/<int:work_order_id>/labor-cost", methods=["GET"])
def work_order_labor_cost(work_order_id):
    tenant_id, err = tenant_required()
    if err:
        return err
    return jsonify(ProductionEngine(tenant_id).ledger.work_order_labor_cost(work_order_id)), 200


@production_bp.route("/work-orders/<int:work_order_id>/snapshot", methods=["POST"])
def capture_snapshot(work_order_id):
    tenant_id, err = tenant_required()
    if err:
        return err
    return result_response(ProductionEngine(tenant_id).capture_snapshot(work_order_id), success_status=201)
