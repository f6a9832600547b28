"""
Shared pytest fixtures for the MillFlow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - tenant / store: default Tenant and a SqlAlchemyStore bound to it
    - attendance / notifier: in-memory collaborators for the scheduler
    - make_*: ORM factories (bypass services to set arbitrary starting states)
"""

import pytest

from millflow import create_app
from millflow.integrations.attendance_gateway import AttendanceGateway
from millflow.integrations.store_gateway import SqlAlchemyStore
from millflow.models import db as _db
from millflow.models.procurement import Order, OrderItem
from millflow.models.production import (
    Worker,
    WorkOrder,
    WorkOrderItem,
    WorkOrderProcess,
)
from millflow.models.project import Product, ProductMaterial, Project
from millflow.models.tenant import Tenant

DEFAULT_TENANT_SLUG = "test-default"

# Item status implied by an order status when building fixtures
_ITEM_STATUS_FOR = {
    "draft": "pending",
    "received": "received",
}


def _ensure_default_tenant():
    t = Tenant.query.filter_by(slug=DEFAULT_TENANT_SLUG).first()
    if not t:
        t = Tenant(name="Test Default", slug=DEFAULT_TENANT_SLUG)
        _db.session.add(t)
        _db.session.commit()
    return t.id


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        _ensure_default_tenant()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def tenant():
    """Return the auto-created default test tenant."""
    return Tenant.query.filter_by(slug=DEFAULT_TENANT_SLUG).first()


@pytest.fixture()
def other_tenant():
    t = Tenant(name="Other Shop", slug="other-shop")
    _db.session.add(t)
    _db.session.commit()
    return t


@pytest.fixture()
def store(tenant):
    return SqlAlchemyStore(tenant_id=tenant.id)


# ── Collaborators ────────────────────────────────────────────────────────


class FakeAttendance(AttendanceGateway):
    """Attendance source answering from an in-memory absence map."""

    def __init__(self):
        self.absent = {}

    def mark_absent(self, worker_id, reason="On leave"):
        self.absent[worker_id] = reason

    def is_worker_available(self, worker_id, day):
        if worker_id in self.absent:
            return False, self.absent[worker_id]
        return True, "present"


class CapturingNotifier:
    """Notifier that records every create() call instead of persisting it."""

    def __init__(self):
        self.sent = []

    def create(self, title, message="", related_id=None, link="", **extra):
        self.sent.append({
            "title": title, "message": message, "related_id": related_id, "link": link, **extra,
        })


@pytest.fixture()
def attendance():
    return FakeAttendance()


@pytest.fixture()
def notifier():
    return CapturingNotifier()


# ── ORM factories ────────────────────────────────────────────────────────


@pytest.fixture()
def make_project(tenant):
    def _make(status="approved", name="Kitchen Refit", tenant_id=None):
        project = Project(tenant_id=tenant_id or tenant.id, name=name, status=status)
        _db.session.add(project)
        _db.session.commit()
        return project
    return _make


@pytest.fixture()
def make_product(tenant):
    def _make(project=None, status="waiting", name="Wall Cabinet", quantity=1, tenant_id=None):
        product = Product(
            tenant_id=tenant_id or tenant.id,
            project_id=project.id if project else None,
            name=name,
            quantity=quantity,
            status=status,
            material_cost=0.0,
        )
        _db.session.add(product)
        _db.session.commit()
        return product
    return _make


@pytest.fixture()
def make_material(tenant):
    def _make(product, status="not_ordered", name="Oak panel 18mm", quantity=2.0,
              unit_price=10.0, supplier_name="Timber Co", is_essential=False,
              on_hand_qty=0.0, order_id=None, unit="pcs"):
        material = ProductMaterial(
            tenant_id=product.tenant_id,
            product_id=product.id,
            material_name=name,
            supplier_name=supplier_name,
            unit=unit,
            quantity=quantity,
            unit_price=unit_price,
            total_price=quantity * unit_price,
            on_hand_qty=on_hand_qty,
            is_essential=is_essential,
            status=status,
            order_id=order_id,
        )
        _db.session.add(material)
        _db.session.commit()
        return material
    return _make


@pytest.fixture()
def make_order(tenant):
    """Order with one item per entry of `groups` (each entry: list of materials)."""
    def _make(groups, status="draft", supplier_name="Timber Co", item_statuses=None,
              order_number=None, tenant_id=None):
        tid = tenant_id or tenant.id
        order = Order(
            tenant_id=tid,
            order_number=order_number or f"PO-TEST-{Order.query.count() + 1:03d}",
            supplier_name=supplier_name,
            status=status,
            version=1,
        )
        _db.session.add(order)
        _db.session.flush()
        for index, materials in enumerate(groups):
            default_status = _ITEM_STATUS_FOR.get(status, "ordered")
            item = OrderItem(
                tenant_id=tid,
                order_id=order.id,
                material_ids=[m.id for m in materials],
                product_id=materials[0].product_id if materials else None,
                material_name=", ".join(m.material_name for m in materials),
                quantity=2.0,
                expected_price=10.0,
                status=(item_statuses or {}).get(index, default_status),
            )
            _db.session.add(item)
        _db.session.commit()
        return order
    return _make


@pytest.fixture()
def make_worker(tenant):
    def _make(name="Ayla", daily_rate=100.0, tenant_id=None):
        worker = Worker(tenant_id=tenant_id or tenant.id, name=name, daily_rate=daily_rate)
        _db.session.add(worker)
        _db.session.commit()
        return worker
    return _make


@pytest.fixture()
def make_work_order(tenant):
    """Work order with one item per product; every step gets the same crew."""
    def _make(products=(), crew=(), start=None, end=None, status="pending",
              steps=("cutting", "assembling"), number=None, tenant_id=None):
        tid = tenant_id or tenant.id
        crew = list(crew)
        work_order = WorkOrder(
            tenant_id=tid,
            work_order_number=number or f"WO-TEST-{WorkOrder.query.count() + 1:03d}",
            status=status,
            production_steps=list(steps),
            planned_start=start,
            planned_end=end,
            is_scheduled=start is not None,
        )
        _db.session.add(work_order)
        _db.session.flush()
        for product in (products or [None]):
            item = WorkOrderItem(
                tenant_id=tid,
                work_order_id=work_order.id,
                product_id=product.id if product else None,
                project_id=product.project_id if product else None,
                quantity=1,
                status="pending",
            )
            _db.session.add(item)
            _db.session.flush()
            for position, step in enumerate(steps):
                _db.session.add(WorkOrderProcess(
                    tenant_id=tid,
                    work_order_item_id=item.id,
                    step_name=step,
                    position=position,
                    status="pending",
                    assigned_worker_id=crew[0].id if crew else None,
                    helper_worker_ids=[w.id for w in crew[1:]],
                ))
        _db.session.commit()
        return work_order
    return _make
