"""Purchase-order blueprint.

Endpoint groups:
  Orders           POST   /api/v1/orders
                   GET    /api/v1/orders/<id>
                   DELETE /api/v1/orders/<id>?material_action=reset|received
  Status cascade   POST   /api/v1/orders/<id>/transition
  Order items      POST   /api/v1/order-items/receive
                   POST   /api/v1/order-items/delete

tenant_id is resolved from query param or JSON body.
Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from millflow.blueprints import register_error_handlers, result_response, tenant_required
from millflow.integrations.store_gateway import SqlAlchemyStore
from millflow.models.procurement import Order
from millflow.services.cascade_service import CascadeSynchronizer
from millflow.services.engine import ProductionEngine
from millflow.utils.errors import E, api_error
from millflow.utils.helpers import parse_date_input, parse_id_list

logger = logging.getLogger(__name__)

procurement_bp = Blueprint("procurement", __name__, url_prefix="/api/v1")
register_error_handlers(procurement_bp)


def _item_ids_from_body():
    data = request.get_json(silent=True) or {}
    try:
        ids = parse_id_list(data.get("item_ids"), "item_ids")
    except ValueError as exc:
        return None, api_error(E.VALIDATION_INVALID, str(exc))
    if not ids:
        return None, api_error(E.VALIDATION_REQUIRED, "item_ids is required")
    return ids, None


# ═════════════════════════════════════════════════════════════════════════
# Orders
# ═════════════════════════════════════════════════════════════════════════


@procurement_bp.route("/orders", methods=["POST"])
def create_order():
    """Create a draft purchase order.

    Body: {
        tenant_id, supplier_name, expected_delivery?, notes?,
        items: [{material_ids, material_name, quantity, unit, expected_price,
                 product_id?, project_id?}]
    }
    Returns: order dict with items (201).
    """
    tenant_id, err = tenant_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    items = data.get("items")
    if not isinstance(items, list) or not items:
        return api_error(E.VALIDATION_REQUIRED, "items is required")
    try:
        expected_delivery = parse_date_input(data.get("expected_delivery"))
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc))

    sync = CascadeSynchronizer(SqlAlchemyStore(tenant_id=tenant_id))
    order = sync.create_order(
        supplier_name=(data.get("supplier_name") or "").strip(),
        items=items,
        expected_delivery=expected_delivery,
        notes=data.get("notes") or "",
    )
    return jsonify(order.to_dict(include_items=True)), 201


@procurement_bp.route("/orders/<int:order_id>", methods=["GET"])
def get_order(order_id):
    tenant_id, err = tenant_required()
    if err:
        return err
    order = SqlAlchemyStore(tenant_id=tenant_id).get(Order, order_id)
    return jsonify(order.to_dict(include_items=True)), 200


@procurement_bp.route("/orders/<int:order_id>", methods=["DELETE"])
def delete_order(order_id):
    """Delete an order; ?material_action=reset|received decides what happens to its materials."""
    tenant_id, err = tenant_required()
    if err:
        return err
    material_action = request.args.get("material_action") or None
    sync = CascadeSynchronizer(SqlAlchemyStore(tenant_id=tenant_id))
    result = sync.delete_order(order_id, material_action=material_action)
    return jsonify(result.to_dict()), 200


@procurement_bp.route("/orders/<int:order_id>/transition", methods=["POST"])
def transition_order(order_id):
    """Change an order's status and cascade it to materials, products and projects.

    Body: { tenant_id, status }
    """
    tenant_id, err = tenant_required()
    if err:
        return err
    data = request.get_json(silent=True) or {}
    new_status = (data.get("status") or "").strip()
    if not new_status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")

    result = ProductionEngine(tenant_id).apply_order_status_change(order_id, new_status)
    return result_response(result)


# ═════════════════════════════════════════════════════════════════════════
# Order items
# ═════════════════════════════════════════════════════════════════════════


@procurement_bp.route("/order-items/receive", methods=["POST"])
def receive_items():
    """Body: { tenant_id, item_ids: [int] }"""
    tenant_id, err = tenant_required()
    if err:
        return err
    item_ids, err = _item_ids_from_body()
    if err:
        return err
    return result_response(ProductionEngine(tenant_id).mark_items_received(item_ids))


@procurement_bp.route("/order-items/delete", methods=["POST"])
def delete_items():
    """Body: { tenant_id, item_ids: [int] }"""
    tenant_id, err = tenant_required()
    if err:
        return err
    item_ids, err = _item_ids_from_body()
    if err:
        return err
    return result_response(ProductionEngine(tenant_id).delete_order_items(item_ids))
