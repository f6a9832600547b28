"""
Persistence gateway — every engine read and write goes through a Store.

The engine never touches the session directly. A Store is bound to one
tenant; tenant_id is added to every query, so a foreign id behaves exactly
like a missing one (NotFoundError).

Design:
  - query / get / add for single records
  - batch_write / batch_delete chunked at STORE_BATCH_SIZE (default 30);
    each chunk commits before the next one starts, a failing chunk is rolled
    back and surfaced as PartialBatchFailureError (never swallowed)
  - update_versioned: compare-and-set on a version column, the per-order
    serialization point for concurrent cascades
  - a caller-supplied deadline (seconds, measured from Store creation) is
    checked before every call; past it the call raises StoreTimeoutError.
    It is a per-operation budget: create one Store per engine operation or
    request (long jobs pass their own `deadline=`). A call already in
    flight is not interrupted; that bound belongs to the database driver.

Testability: SqlAlchemyStore takes batch_size / deadline overrides so tests
can force small chunks or an expired deadline without touching config.
"""

from __future__ import annotations

import abc
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from flask import current_app, has_app_context

from millflow.core.exceptions import (
    ConflictError,
    NotFoundError,
    PartialBatchFailureError,
    StoreTimeoutError,
)
from millflow.models import db

logger = logging.getLogger(__name__)

_DEFAULT_BATCH_SIZE = 30


@dataclass(frozen=True)
class Range:
    """Inclusive range filter value; either bound may be None."""

    low: Any = None
    high: Any = None


@dataclass
class WriteOp:
    """Field update for one record inside a batch_write."""

    entity: type
    id: int
    values: dict = field(default_factory=dict)


def chunked(seq, size):
    """Yield consecutive slices of `seq` of at most `size` elements."""
    seq = list(seq)
    for start in range(0, len(seq), size):
        yield seq[start:start + size]


class StoreGateway(abc.ABC):
    """Tenant-bound persistence interface consumed by the engine."""

    tenant_id: int

    @abc.abstractmethod
    def query(self, entity, filters: dict | None = None, order_by=None) -> list:
        """Return records of `entity` matching `filters` (AND-ed)."""

    @abc.abstractmethod
    def get(self, entity, record_id):
        """Return one record or raise NotFoundError."""

    @abc.abstractmethod
    def add(self, record):
        """Stage a new record (tenant_id set) and flush so it gets an id."""

    @abc.abstractmethod
    def delete(self, record) -> None:
        """Stage a single delete."""

    @abc.abstractmethod
    def commit(self) -> None:
        """Durably write everything staged so far."""

    @abc.abstractmethod
    def rollback(self) -> None:
        """Discard everything staged since the last commit."""

    @abc.abstractmethod
    def update_versioned(self, entity, record_id, expected_version, values: dict):
        """Write `values` only if the stored version still equals `expected_version`."""

    @abc.abstractmethod
    def batch_write(self, ops: list[WriteOp]) -> int:
        """Apply field updates in committed chunks; return the chunk count."""

    @abc.abstractmethod
    def batch_delete(self, entity, ids) -> int:
        """Delete records by id in committed chunks; return rows deleted."""


class SqlAlchemyStore(StoreGateway):
    """StoreGateway over the shared Flask-SQLAlchemy session.

    Usage:
        store = SqlAlchemyStore(tenant_id=1)
        order = store.get(Order, 42)
        store.batch_write([WriteOp(ProductMaterial, 7, {"status": "ordered"})])
    """

    def __init__(
        self,
        tenant_id: int,
        batch_size: int | None = None,
        deadline: float | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        if batch_size is None:
            batch_size = _config("STORE_BATCH_SIZE", _DEFAULT_BATCH_SIZE)
        if deadline is None:
            deadline = _config("STORE_DEADLINE_SECONDS", None)
        self.batch_size = max(int(batch_size), 1)
        self.deadline = deadline
        self._deadline_at = time.monotonic() + deadline if deadline else None

    # ── Deadline ─────────────────────────────────────────────────────────────

    def _check_deadline(self, operation: str) -> None:
        if self._deadline_at is not None and time.monotonic() > self._deadline_at:
            logger.warning(
                "Store deadline exceeded during %s", operation,
                extra={"tenant_id": self.tenant_id},
            )
            raise StoreTimeoutError(operation, self.deadline)

    # ── Reads ────────────────────────────────────────────────────────────────

    def _scoped(self, entity):
        return entity.query.filter(entity.tenant_id == self.tenant_id)

    def query(self, entity, filters=None, order_by=None):
        self._check_deadline(f"query {entity.__name__}")
        q = self._scoped(entity)
        for name, value in (filters or {}).items():
            column = getattr(entity, name)
            if isinstance(value, Range):
                if value.low is not None:
                    q = q.filter(column >= value.low)
                if value.high is not None:
                    q = q.filter(column <= value.high)
            elif isinstance(value, (list, tuple, set, frozenset)):
                values = list(value)
                if not values:
                    return []
                q = q.filter(column.in_(values))
            elif value is None:
                q = q.filter(column.is_(None))
            else:
                q = q.filter(column == value)
        q = q.order_by(order_by if order_by is not None else entity.id)
        return q.all()

    def get(self, entity, record_id):
        self._check_deadline(f"get {entity.__name__}")
        record = db.session.get(entity, record_id) if record_id is not None else None
        if record is None or record.tenant_id != self.tenant_id:
            raise NotFoundError(
                resource=entity.__name__, resource_id=record_id, tenant_id=self.tenant_id,
            )
        return record

    # ── Single-record writes ─────────────────────────────────────────────────

    def add(self, record):
        self._check_deadline(f"add {type(record).__name__}")
        record.tenant_id = self.tenant_id
        db.session.add(record)
        db.session.flush()
        return record

    def delete(self, record):
        self._check_deadline(f"delete {type(record).__name__}")
        if record.tenant_id != self.tenant_id:
            raise NotFoundError(type(record).__name__, record.id, self.tenant_id)
        db.session.delete(record)

    def commit(self):
        self._check_deadline("commit")
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception("Store commit failed", extra={"tenant_id": self.tenant_id})
            raise

    def rollback(self):
        db.session.rollback()

    def update_versioned(self, entity, record_id, expected_version, values):
        self._check_deadline(f"update_versioned {entity.__name__}")
        payload = dict(values)
        payload["version"] = expected_version + 1
        rows = (
            self._scoped(entity)
            .filter(entity.id == record_id, entity.version == expected_version)
            .update(payload, synchronize_session="fetch")
        )
        if rows == 0:
            db.session.rollback()
            raise ConflictError(
                entity.__name__, "version", expected_version,
                message=(
                    f"{entity.__name__} id={record_id} was modified concurrently "
                    f"(expected version {expected_version})"
                ),
            )
        db.session.commit()
        return self.get(entity, record_id)

    # ── Batches ──────────────────────────────────────────────────────────────

    def batch_write(self, ops):
        ops = list(ops)
        if not ops:
            return 0
        committed = 0
        t0 = time.monotonic()
        for index, chunk in enumerate(chunked(ops, self.batch_size)):
            self._check_deadline(f"batch_write chunk {index}")
            try:
                for op in chunk:
                    record = self.get(op.entity, op.id)
                    for name, value in op.values.items():
                        setattr(record, name, value)
                db.session.commit()
            except Exception as exc:
                db.session.rollback()
                logger.error(
                    "Batch write chunk failed after %d committed chunk(s): %s",
                    committed, exc, extra={"tenant_id": self.tenant_id, "chunk": index},
                )
                raise PartialBatchFailureError(index, committed, exc) from exc
            committed += 1
            logger.debug(
                "Batch write chunk committed (%d ops)", len(chunk),
                extra={"tenant_id": self.tenant_id, "chunk": index},
            )
        logger.info(
            "Batch write: %d ops in %d chunk(s)", len(ops), committed,
            extra={"tenant_id": self.tenant_id,
                   "duration_ms": (time.monotonic() - t0) * 1000},
        )
        return committed

    def batch_delete(self, entity, ids):
        ids = [i for i in ids if i is not None]
        if not ids:
            return 0
        deleted = 0
        committed = 0
        for index, chunk in enumerate(chunked(ids, self.batch_size)):
            self._check_deadline(f"batch_delete chunk {index}")
            try:
                deleted += (
                    self._scoped(entity)
                    .filter(entity.id.in_(chunk))
                    .delete(synchronize_session="fetch")
                )
                db.session.commit()
            except Exception as exc:
                db.session.rollback()
                logger.error(
                    "Batch delete of %s failed after %d committed chunk(s): %s",
                    entity.__name__, committed, exc,
                    extra={"tenant_id": self.tenant_id, "chunk": index},
                )
                raise PartialBatchFailureError(index, committed, exc) from exc
            committed += 1
        logger.info(
            "Batch delete: %d %s row(s) in %d chunk(s)", deleted, entity.__name__, committed,
            extra={"tenant_id": self.tenant_id},
        )
        return deleted


def _config(key, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default
