"""
Engine-wide exception hierarchy.

Services raise these types; blueprints register one handler per type and
the ProductionEngine facade folds them into failure OperationResults.

Usage:
    from millflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Order", resource_id=42)
    raise InvalidTransitionError("received", "draft")
"""


class NotFoundError(Exception):
    """Raised when a requested record does not exist within the tenant scope.

    Used for BOTH genuinely missing records AND cross-tenant access attempts,
    so a foreign id never confirms that the record exists.

    Args:
        resource: Human-readable entity name (e.g. "Order", "WorkOrder").
        resource_id: The PK that was looked up.
        tenant_id: Optional — the scope that was enforced.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Always raised before any write. Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(ValidationError):
    """Status change not allowed by the transition table. Maps to HTTP 409."""

    def __init__(self, from_status: str, to_status: str, entity: str = "Order") -> None:
        self.from_status = from_status
        self.to_status = to_status
        self.entity = entity
        super().__init__(
            f"{entity} cannot move from '{from_status}' to '{to_status}'",
            details={"from_status": from_status, "to_status": to_status},
        )


class PreconditionFailedError(ValidationError):
    """An operation's gate was not met; `reason` is shown to the end user."""

    def __init__(self, reason: str, details: dict | None = None) -> None:
        self.reason = reason
        super().__init__(reason, details=details)


class ConflictError(Exception):
    """Raised on a duplicate or a concurrent modification. Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The field whose value collides (or "version" for a lost update).
        value: The conflicting value.
        message: Optional override of the generated message.
    """

    def __init__(
        self,
        resource: str,
        field: str,
        value=None,
        message: str | None = None,
    ) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(message or f"{resource} with {field}={value!r} already exists")


class StoreTimeoutError(Exception):
    """A store call ran past the caller-supplied deadline. Safe to re-run."""

    def __init__(self, operation: str, deadline_seconds: float) -> None:
        self.operation = operation
        self.deadline_seconds = deadline_seconds
        super().__init__(f"Store {operation} exceeded deadline of {deadline_seconds}s")


class PartialBatchFailureError(Exception):
    """A batch chunk failed after earlier chunks were committed.

    Args:
        chunk_index: Zero-based index of the failed chunk.
        committed_chunks: How many chunks were durably written before it.
        cause: The underlying exception.
    """

    def __init__(self, chunk_index: int, committed_chunks: int, cause: Exception | None = None) -> None:
        self.chunk_index = chunk_index
        self.committed_chunks = committed_chunks
        self.cause = cause
        super().__init__(
            f"Batch chunk {chunk_index} failed after {committed_chunks} committed chunk(s): {cause}"
        )


class CascadeStepError(Exception):
    """A cascade failed after the order status write; re-running is safe."""

    def __init__(self, step: str, cause: Exception) -> None:
        self.step = step
        self.cause = cause
        super().__init__(f"Cascade step '{step}' failed: {cause}")
