"""
HTTP API tests — procurement and production blueprints.

Engine operations answer {"ok", "message", "data"} on success and the
standard {"error", "code", "details"} body on failure.
"""

import pytest

from millflow.models import db
from millflow.models.procurement import Order, OrderItem
from millflow.models.production import WorkLog, WorkOrderItem
from millflow.models.project import Product, ProductMaterial

BASE = "/api/v1"


@pytest.fixture()
def cabinet(make_project, make_product, make_material):
    product = make_product(project=make_project(status="approved"))
    oak = make_material(product, name="Oak", quantity=2, unit_price=15)
    hinge = make_material(product, name="Hinge", quantity=4, unit_price=2.5)
    return product, oak, hinge


def _create_order(client, tenant, materials):
    res = client.post(f"{BASE}/orders", json={
        "tenant_id": tenant.id,
        "supplier_name": "Timber Co",
        "expected_delivery": "24.10.2026",
        "items": [
            {"material_ids": [m.id], "material_name": m.material_name, "quantity": 2, "expected_price": 5}
            for m in materials
        ],
    })
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def test_health(client):
    assert client.get(f"{BASE}/health").get_json()["status"] == "ok"


# ═════════════════════════════════════════════════════════════════════════════
# Procurement
# ═════════════════════════════════════════════════════════════════════════════


def test_create_order(client, tenant, cabinet):
    _, oak, hinge = cabinet
    body = _create_order(client, tenant, [oak, hinge])

    assert body["status"] == "draft"
    assert body["expected_delivery"] == "2026-10-24"
    assert body["total_amount"] == pytest.approx(20.0)
    assert len(body["items"]) == 2


def test_tenant_is_required(client, cabinet):
    res = client.post(f"{BASE}/orders/1/transition", json={"status": "sent"})
    assert res.status_code == 400
    assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"


def test_transition_cascades(client, tenant, cabinet):
    product, oak, hinge = cabinet
    order = _create_order(client, tenant, [oak, hinge])

    res = client.post(
        f"{BASE}/orders/{order['id']}/transition", json={"tenant_id": tenant.id, "status": "sent"},
    )

    assert res.status_code == 200
    body = res.get_json()
    assert body["ok"] is True
    assert body["data"]["materials_updated"] == 2
    assert body["data"]["products_promoted"] == [product.id]
    assert db.session.get(ProductMaterial, oak.id).status == "ordered"


def test_invalid_transition_is_409(client, tenant, cabinet):
    _, oak, _ = cabinet
    order = _create_order(client, tenant, [oak])

    res = client.post(
        f"{BASE}/orders/{order['id']}/transition", json={"tenant_id": tenant.id, "status": "received"},
    )

    assert res.status_code == 409
    body = res.get_json()
    assert body["code"] == "ERR_INVALID_TRANSITION"
    assert body["details"] == {"from_status": "draft", "to_status": "received"}
    assert db.session.get(Order, order["id"]).status == "draft"


def test_foreign_tenant_order_is_404(client, other_tenant, tenant, cabinet):
    _, oak, _ = cabinet
    order = _create_order(client, tenant, [oak])

    res = client.get(f"{BASE}/orders/{order['id']}?tenant_id={other_tenant.id}")
    assert res.status_code == 404

    res = client.post(
        f"{BASE}/orders/{order['id']}/transition",
        json={"tenant_id": other_tenant.id, "status": "sent"},
    )
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"


def test_duplicate_material_on_open_order_is_409(client, tenant, cabinet):
    _, oak, _ = cabinet
    _create_order(client, tenant, [oak])
    res = client.post(f"{BASE}/orders", json={
        "tenant_id": tenant.id, "supplier_name": "Other", "items": [{"material_ids": [oak.id]}],
    })
    assert res.status_code == 409
    assert res.get_json()["code"] == "ERR_CONFLICT_STATE"


def test_receive_and_delete_items(client, tenant, cabinet):
    product, oak, hinge = cabinet
    order = _create_order(client, tenant, [oak, hinge])
    client.post(f"{BASE}/orders/{order['id']}/transition", json={"tenant_id": tenant.id, "status": "sent"})
    oak_item, hinge_item = [i["id"] for i in order["items"]]

    res = client.post(f"{BASE}/order-items/receive", json={"tenant_id": tenant.id, "item_ids": [oak_item]})
    assert res.status_code == 200
    assert res.get_json()["data"]["orders"] == {str(order["id"]): {"status": "partially_received"}}

    res = client.post(f"{BASE}/order-items/delete", json={"tenant_id": tenant.id, "item_ids": [hinge_item]})
    assert res.status_code == 200
    assert db.session.get(ProductMaterial, hinge.id).status == "not_ordered"
    assert OrderItem.query.count() == 1
    assert db.session.get(Product, product.id).material_cost == pytest.approx(40.0)


def test_item_ids_must_be_integers(client, tenant):
    res = client.post(f"{BASE}/order-items/receive", json={"tenant_id": tenant.id, "item_ids": ["x"]})
    assert res.status_code == 400
    res = client.post(f"{BASE}/order-items/receive", json={"tenant_id": tenant.id, "item_ids": []})
    assert res.status_code == 400


def test_delete_order(client, tenant, cabinet):
    _, oak, _ = cabinet
    order = _create_order(client, tenant, [oak])

    bad = client.delete(f"{BASE}/orders/{order['id']}?tenant_id={tenant.id}&material_action=burn")
    assert bad.status_code == 422

    res = client.delete(f"{BASE}/orders/{order['id']}?tenant_id={tenant.id}&material_action=reset")
    assert res.status_code == 200
    assert Order.query.count() == 0


# ═════════════════════════════════════════════════════════════════════════════
# Production
# ═════════════════════════════════════════════════════════════════════════════


@pytest.fixture()
def work_order(client, tenant, make_project, make_product, make_material, make_worker):
    product = make_product(project=make_project(status="approved"), status="materials_ready")
    make_material(product, name="Board", status="in_stock", is_essential=True)
    ayla = make_worker("Ayla", daily_rate=120)
    res = client.post(f"{BASE}/work-orders", json={
        "tenant_id": tenant.id,
        "production_steps": ["cutting", "assembling"],
        "items": [{
            "product_id": product.id,
            "quantity": 1,
            "crew": {"cutting": {"worker_id": ayla.id}, "assembling": {"worker_id": ayla.id}},
        }],
    })
    assert res.status_code == 201, res.get_json()
    body = res.get_json()
    body["worker_id"] = ayla.id
    return body


def test_schedule_and_conflicts(client, tenant, work_order):
    res = client.post(
        f"{BASE}/work-orders/{work_order['id']}/schedule",
        json={"tenant_id": tenant.id, "start": "2030-03-04", "end": "2030-03-06"},
    )
    assert res.status_code == 200
    assert res.get_json()["message"] == "Work order scheduled."

    res = client.post(f"{BASE}/work-orders/conflicts", json={
        "tenant_id": tenant.id, "worker_ids": [work_order["worker_id"]],
        "start": "06.03.2030", "end": "2030-03-09",
    })
    body = res.get_json()
    assert body["total"] == 1
    assert body["conflicts"][0]["overlap_start"] == "2030-03-06"


def test_schedule_requires_valid_start(client, tenant, work_order):
    res = client.post(
        f"{BASE}/work-orders/{work_order['id']}/schedule", json={"tenant_id": tenant.id, "start": "soon"},
    )
    assert res.status_code == 400
    res = client.post(f"{BASE}/work-orders/{work_order['id']}/schedule", json={"tenant_id": tenant.id})
    assert res.status_code == 400


def test_start_refused_before_planned_date(client, tenant, work_order):
    client.post(
        f"{BASE}/work-orders/{work_order['id']}/schedule",
        json={"tenant_id": tenant.id, "start": "2030-03-04"},
    )
    res = client.post(f"{BASE}/work-orders/{work_order['id']}/start", json={"tenant_id": tenant.id})

    assert res.status_code == 409
    body = res.get_json()
    assert body["code"] == "ERR_PRECONDITION_FAILED"
    assert "2030-03-04" in body["error"]


def test_start_complete_and_unschedule(client, tenant, work_order):
    wo_id = work_order["id"]
    item_id = work_order["items"][0]["id"]

    assert client.post(f"{BASE}/work-orders/{wo_id}/start", json={"tenant_id": tenant.id}).status_code == 200

    res = client.post(f"{BASE}/work-orders/{wo_id}/unschedule", json={"tenant_id": tenant.id})
    assert res.status_code == 409

    res = client.post(
        f"{BASE}/work-order-items/{item_id}/complete-step",
        json={"tenant_id": tenant.id, "step_name": "cutting"},
    )
    assert res.get_json()["data"]["product_status"] == "assembling"
    res = client.post(
        f"{BASE}/work-order-items/{item_id}/complete-step",
        json={"tenant_id": tenant.id, "step_name": "assembling"},
    )
    assert res.get_json()["data"]["work_order_status"] == "done"


def test_cancel_work_order(client, tenant, work_order):
    res = client.post(f"{BASE}/work-orders/{work_order['id']}/cancel", json={"tenant_id": tenant.id})
    assert res.status_code == 200
    assert res.get_json()["status"] == "cancelled"

    res = client.post(f"{BASE}/work-orders/{work_order['id']}/start", json={"tenant_id": tenant.id})
    assert res.status_code == 409
    assert res.get_json()["code"] == "ERR_INVALID_TRANSITION"


def test_work_logs_and_costs(client, tenant, work_order):
    item_id = work_order["items"][0]["id"]
    payload = {
        "tenant_id": tenant.id, "worker_id": work_order["worker_id"],
        "item_id": item_id, "work_date": "2026-10-19",
    }

    first = client.post(f"{BASE}/work-logs", json=payload)
    again = client.post(f"{BASE}/work-logs", json=payload)

    assert first.status_code == 201
    assert again.status_code == 200
    assert again.get_json()["data"]["created"] is False
    assert WorkLog.query.count() == 1

    cost = client.get(f"{BASE}/work-order-items/{item_id}/labor-cost?tenant_id={tenant.id}").get_json()
    assert cost["total"] == pytest.approx(120.0)

    wo_cost = client.get(f"{BASE}/work-orders/{work_order['id']}/labor-cost?tenant_id={tenant.id}").get_json()
    assert wo_cost["days"] == 1

    res = client.post(f"{BASE}/work-orders/{work_order['id']}/snapshot", json={"tenant_id": tenant.id})
    assert res.status_code == 201
    assert res.get_json()["data"]["metrics"]["labor_cost"] == pytest.approx(120.0)

    log_id = first.get_json()["data"]["work_log"]["id"]
    assert client.delete(f"{BASE}/work-logs/{log_id}?tenant_id={tenant.id}").status_code == 200
    assert WorkLog.query.count() == 0


def test_work_log_requires_fields(client, tenant):
    res = client.post(f"{BASE}/work-logs", json={"tenant_id": tenant.id, "worker_id": 1})
    assert res.status_code == 400
    assert res.get_json()["error"] == "item_id is required"


def test_unknown_work_order_item_is_404(client, tenant):
    res = client.get(f"{BASE}/work-order-items/9999/labor-cost?tenant_id={tenant.id}")
    assert res.status_code == 404
    assert WorkOrderItem.query.count() == 0
