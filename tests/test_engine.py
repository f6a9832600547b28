"""
ProductionEngine facade — errors come back as OperationResults, never raised.
"""

from datetime import date, timedelta

import pytest

from millflow.core.exceptions import (
    CascadeStepError,
    InvalidTransitionError,
    PreconditionFailedError,
    StoreTimeoutError,
    ValidationError,
)
from millflow.models.notification import Notification
from millflow.services.engine import OperationResult, ProductionEngine, error_code_for
from millflow.services.notification import NotificationService
from millflow.utils.errors import E

TODAY = date(2026, 10, 19)


@pytest.fixture()
def engine(tenant, attendance, notifier):
    return ProductionEngine(tenant.id, attendance=attendance, notifier=notifier, today=lambda: TODAY)


@pytest.mark.parametrize("exc,code", [
    (InvalidTransitionError("draft", "received"), E.INVALID_TRANSITION),
    (PreconditionFailedError("Worker absent"), E.PRECONDITION_FAILED),
    (ValidationError("bad"), E.VALIDATION_CONSTRAINT),
    (StoreTimeoutError("query", 1), E.STORE_UNAVAILABLE),
    (CascadeStepError("write_materials", RuntimeError("x")), E.CASCADE_INCOMPLETE),
    (RuntimeError("boom"), E.INTERNAL),
])
def test_error_codes(exc, code):
    assert error_code_for(exc) == code


def test_failure_result_carries_message_and_details():
    result = OperationResult.failure(InvalidTransitionError("received", "draft"))
    assert result.ok is False
    assert result.to_dict() == {
        "ok": False,
        "message": "Order cannot move from 'received' to 'draft'",
        "code": E.INVALID_TRANSITION,
        "details": {"from_status": "received", "to_status": "draft"},
    }


def test_unknown_order_becomes_not_found_result(engine):
    result = engine.apply_order_status_change(12345, "sent")
    assert result.ok is False
    assert result.code == E.NOT_FOUND


def test_absent_worker_reason_reaches_the_caller(engine, attendance, make_project, make_product, make_worker):
    product = make_product(project=make_project(), status="materials_ready")
    ayla = make_worker("Ayla")
    attendance.mark_absent(ayla.id, "Annual leave")
    work_order = engine.scheduler.create_work_order(
        [{"product_id": product.id, "crew": {"cutting": {"worker_id": ayla.id}}}],
        production_steps=["cutting"],
    )

    result = engine.start_work_order(work_order.id)

    assert result.ok is False
    assert result.code == E.PRECONDITION_FAILED
    assert result.message == 'Worker "Ayla" is not present today. Annual leave'


def test_schedule_message_mentions_created_orders(engine, make_project, make_product, make_material):
    product = make_product(project=make_project())
    make_material(product, name="Oak")
    work_order = engine.scheduler.create_work_order([{"product_id": product.id}], production_steps=["cutting"])

    result = engine.schedule_work_order(work_order.id, TODAY + timedelta(days=1))

    assert result.ok is True
    assert "1 order(s) created automatically" in result.message
    assert result.data["orders_created"][0] in result.message


def test_notification_service_roundtrip(tenant):
    service = NotificationService(tenant.id)
    service.create("Orders created", "2 order(s)", related_id=4, link="/orders", category="procurement")
    service.create("Heads up")

    assert service.unread_count() == 2
    assert [n.title for n in service.list()][0] in {"Orders created", "Heads up"}
    assert service.mark_all_read() == 2
    assert service.list(unread_only=True) == []
    assert Notification.query.filter_by(entity_id=4).one().category == "procurement"


def test_notification_rejects_unknown_category(tenant):
    with pytest.raises(ValidationError):
        NotificationService(tenant.id).create("Oops", category="marketing")
    assert Notification.query.count() == 0
