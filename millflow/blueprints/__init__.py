"""
MillFlow
Blueprint registry and shared request helpers.

tenant_id is resolved from the query string or the JSON body. Engine
operations come back as OperationResults and are turned into responses by
`result_response`; exceptions raised by direct service calls are mapped by
the handlers `register_error_handlers` installs on each blueprint.
"""

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from millflow.core.exceptions import (
    CascadeStepError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PartialBatchFailureError,
    PreconditionFailedError,
    StoreTimeoutError,
    ValidationError,
)
from millflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)


# ── Tenant helpers ────────────────────────────────────────────────────────────


def _tenant_id():
    """Extract tenant_id from query string or JSON body."""
    tid = request.args.get("tenant_id", type=int)
    if tid:
        return tid
    data = request.get_json(silent=True) or {}
    try:
        return int(data.get("tenant_id")) if data.get("tenant_id") else None
    except (TypeError, ValueError):
        return None


def tenant_required():
    """(tenant_id, None) or (None, error_response)."""
    tid = _tenant_id()
    if not tid:
        return None, api_error(E.VALIDATION_REQUIRED, "tenant_id is required")
    return tid, None


def result_response(result, success_status=200):
    """Turn an engine OperationResult into a JSON response."""
    if result.ok:
        return jsonify(result.to_dict()), success_status
    return api_error(result.code or E.INTERNAL, result.message, details=result.details)


# ── Error handlers ────────────────────────────────────────────────────────────


def register_error_handlers(bp):
    """Map engine exceptions to HTTP responses for one blueprint."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(InvalidTransitionError)
    def _handle_transition(error):
        return api_error(E.INVALID_TRANSITION, str(error), details=error.details)

    @bp.errorhandler(PreconditionFailedError)
    def _handle_precondition(error):
        return api_error(E.PRECONDITION_FAILED, error.reason, details=error.details)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error):
        return api_error(E.VALIDATION_CONSTRAINT, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error):
        return api_error(E.CONFLICT_STATE, str(error))

    @bp.errorhandler(PartialBatchFailureError)
    def _handle_partial_batch(error):
        return api_error(
            E.STORE_UNAVAILABLE, str(error),
            details={"chunk_index": error.chunk_index, "committed_chunks": error.committed_chunks},
        )

    @bp.errorhandler(StoreTimeoutError)
    def _handle_timeout(error):
        return api_error(E.STORE_UNAVAILABLE, str(error))

    @bp.errorhandler(CascadeStepError)
    def _handle_cascade(error):
        return api_error(E.CASCADE_INCOMPLETE, str(error), details={"step": error.step})

    @bp.errorhandler(Exception)
    def _handle_unexpected(error):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
