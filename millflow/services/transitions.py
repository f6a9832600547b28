"""
Status transition validation for purchase orders and work orders.

Pure lookups in the adjacency tables kept next to the models; the only
outside input is the optional ORDER_TRANSITIONS_OVERRIDE config entry.
Rejections raise InvalidTransitionError before anything is written.
"""

import logging

from flask import current_app, has_app_context

from millflow.core.exceptions import InvalidTransitionError
from millflow.models.procurement import ORDER_TRANSITIONS
from millflow.models.procurement import validate_order_transition as _order_allowed
from millflow.models.production import validate_work_order_transition as _work_order_allowed

logger = logging.getLogger(__name__)


def order_transition_table():
    """Active purchase-order table (config override wins)."""
    if has_app_context():
        override = current_app.config.get("ORDER_TRANSITIONS_OVERRIDE")
        if override:
            return override
    return ORDER_TRANSITIONS


def validate_order_transition(previous, new):
    """Raise InvalidTransitionError unless previous → new is allowed."""
    if not _order_allowed(previous, new, order_transition_table()):
        logger.info("Rejected order transition %s → %s", previous, new)
        raise InvalidTransitionError(previous, new, entity="Order")


def validate_work_order_transition(previous, new):
    if not _work_order_allowed(previous, new):
        logger.info("Rejected work order transition %s → %s", previous, new)
        raise InvalidTransitionError(previous, new, entity="WorkOrder")
