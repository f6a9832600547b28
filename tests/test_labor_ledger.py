"""
Labor ledger — worker-day logs, derived costs, profitability snapshots.
"""

from datetime import date

import pytest

from millflow.core.exceptions import NotFoundError, ValidationError
from millflow.models import db
from millflow.models.production import ProductionSnapshot, WorkLog, WorkOrderItem
from millflow.services.labor_ledger import LaborLedger

MON, TUE = date(2026, 10, 19), date(2026, 10, 20)


@pytest.fixture()
def ledger(store):
    return LaborLedger(store)


@pytest.fixture()
def floor(make_project, make_product, make_worker, make_work_order):
    product = make_product(project=make_project(), status="cutting")
    product.material_cost = 250.0
    db.session.commit()
    ayla = make_worker("Ayla", daily_rate=100)
    deniz = make_worker("Deniz", daily_rate=60)
    work_order = make_work_order(products=[product], crew=[ayla, deniz], status="in_progress")
    item = WorkOrderItem.query.filter_by(work_order_id=work_order.id).one()
    item.quantity = 2
    item.planned_labor_cost = 300.0
    db.session.commit()
    return {"product": product, "ayla": ayla, "deniz": deniz, "work_order": work_order, "item": item}


def test_record_uses_worker_rate_by_default(ledger, floor):
    log, created = ledger.record_work_log(floor["ayla"].id, floor["item"].id, MON, process_name="cutting")

    assert created is True
    assert log.daily_rate == pytest.approx(100.0)
    assert log.work_order_id == floor["work_order"].id
    assert log.product_id == floor["product"].id


def test_one_log_per_worker_item_and_day(ledger, floor):
    first, _ = ledger.record_work_log(floor["ayla"].id, floor["item"].id, MON)
    again, created = ledger.record_work_log(floor["ayla"].id, floor["item"].id, MON, daily_rate=999)

    assert created is False
    assert again.id == first.id
    assert again.daily_rate == pytest.approx(100.0)
    assert WorkLog.query.count() == 1


def test_record_validation(ledger, floor):
    with pytest.raises(ValidationError):
        ledger.record_work_log(floor["ayla"].id, floor["item"].id, None)
    with pytest.raises(ValidationError):
        ledger.record_work_log(floor["ayla"].id, floor["item"].id, MON, daily_rate=-5)
    with pytest.raises(NotFoundError):
        ledger.record_work_log(9999, floor["item"].id, MON)


def test_item_cost_is_derived_from_logs(ledger, floor):
    item_id = floor["item"].id
    ledger.record_work_log(floor["ayla"].id, item_id, MON)
    ledger.record_work_log(floor["ayla"].id, item_id, TUE)
    ledger.record_work_log(floor["deniz"].id, item_id, MON, daily_rate=70)

    cost = ledger.item_labor_cost(item_id)

    assert cost.total == pytest.approx(270.0)
    assert cost.days == 2
    assert [(w["worker_name"], w["days"], w["cost"]) for w in cost.workers] == [
        ("Ayla", 2, 200.0), ("Deniz", 1, 70.0),
    ]


def test_deleting_a_days_logs_updates_cost(ledger, floor):
    item_id = floor["item"].id
    ledger.record_work_log(floor["ayla"].id, item_id, MON)
    log, _ = ledger.record_work_log(floor["ayla"].id, item_id, TUE)

    assert ledger.delete_logs_for_worker_on_date(floor["ayla"].id, MON) == 1
    assert ledger.item_labor_cost(item_id).total == pytest.approx(100.0)

    ledger.delete_work_log(log.id)
    assert ledger.item_labor_cost(item_id).total == 0


def test_work_order_cost_breaks_down_per_item(ledger, floor):
    ledger.record_work_log(floor["deniz"].id, floor["item"].id, MON)

    summary = ledger.work_order_labor_cost(floor["work_order"].id)

    assert summary["total"] == pytest.approx(60.0)
    assert summary["items"][floor["item"].id]["days"] == 1


def test_snapshot_captures_material_and_labor(ledger, floor):
    ledger.record_work_log(floor["ayla"].id, floor["item"].id, MON)
    ledger.record_work_log(floor["deniz"].id, floor["item"].id, MON)

    snapshot = ledger.capture_profitability_snapshot(floor["work_order"].id)

    metrics = snapshot.metrics
    assert metrics["material_cost"] == pytest.approx(500.0)
    assert metrics["labor_cost"] == pytest.approx(160.0)
    assert metrics["planned_labor_cost"] == pytest.approx(300.0)
    assert metrics["labor_variance"] == pytest.approx(-140.0)
    assert metrics["total_cost"] == pytest.approx(660.0)
    assert ProductionSnapshot.query.count() == 1
