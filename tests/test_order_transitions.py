"""
Transition-table tests for purchase orders and work orders.

    Order:      draft → sent → confirmed → delivered → partially_received → received
                (sent / confirmed may fall back to draft; received is terminal)
    WorkOrder:  pending → in_progress → done, pending → cancelled
"""

import pytest

from millflow.core.exceptions import InvalidTransitionError
from millflow.models.procurement import ORDER_TRANSITIONS
from millflow.models.procurement import validate_order_transition as order_allowed
from millflow.models.production import validate_work_order_transition as work_order_allowed
from millflow.services.transitions import (
    order_transition_table,
    validate_order_transition,
    validate_work_order_transition,
)


# ═════════════════════════════════════════════════════════════════════════════
# Order table
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize("old,new", [
    (old, new) for old, targets in ORDER_TRANSITIONS.items() for new in targets
])
def test_every_listed_order_edge_is_allowed(old, new):
    assert order_allowed(old, new)
    validate_order_transition(old, new)


@pytest.mark.parametrize("old,new", [
    ("draft", "received"),
    ("draft", "confirmed"),
    ("received", "draft"),
    ("received", "sent"),
    ("partially_received", "draft"),
    ("delivered", "sent"),
])
def test_unlisted_order_edges_are_rejected(old, new):
    assert not order_allowed(old, new)
    with pytest.raises(InvalidTransitionError) as exc:
        validate_order_transition(old, new)
    assert exc.value.details == {"from_status": old, "to_status": new}
    assert exc.value.entity == "Order"


@pytest.mark.parametrize("status", sorted(ORDER_TRANSITIONS))
def test_same_status_is_a_no_op_not_a_rejection(status):
    assert order_allowed(status, status)


def test_unknown_statuses_are_rejected():
    assert not order_allowed("draft", "shipped")
    assert not order_allowed("archived", "draft")
    with pytest.raises(InvalidTransitionError):
        validate_order_transition("draft", "shipped")


def test_received_is_terminal():
    assert ORDER_TRANSITIONS["received"] == []


def test_config_override_replaces_order_table(app):
    app.config["ORDER_TRANSITIONS_OVERRIDE"] = {"draft": ["received"], "received": []}
    try:
        assert order_transition_table() == {"draft": ["received"], "received": []}
        validate_order_transition("draft", "received")
        with pytest.raises(InvalidTransitionError):
            validate_order_transition("draft", "sent")
    finally:
        app.config["ORDER_TRANSITIONS_OVERRIDE"] = None
    assert order_transition_table() is ORDER_TRANSITIONS


# ═════════════════════════════════════════════════════════════════════════════
# WorkOrder table
# ═════════════════════════════════════════════════════════════════════════════


@pytest.mark.parametrize("old,new,allowed", [
    ("pending", "in_progress", True),
    ("pending", "cancelled", True),
    ("in_progress", "done", True),
    ("done", "in_progress", False),
    ("cancelled", "pending", False),
    ("pending", "done", False),
])
def test_work_order_transitions(old, new, allowed):
    assert work_order_allowed(old, new) is allowed
    if allowed:
        validate_work_order_transition(old, new)
    else:
        with pytest.raises(InvalidTransitionError) as exc:
            validate_work_order_transition(old, new)
        assert exc.value.entity == "WorkOrder"
