"""
Persistence primitives for surplus records.

`conditional_update` is the compare-and-set the lifecycle relies on: one
`UPDATE ... WHERE id = :id AND <guard predicate>` statement, so two clients racing on
the same record cannot both see their write applied.
"""
import enum
from datetime import datetime
from typing import Any

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from foodlink.core.errors import NotFoundError
from foodlink.domains.surplus.lifecycle import NOT_NULL
from foodlink.domains.surplus.models import SurplusRecord, SurplusStatus


class UpdateResult(str, enum.Enum):
    APPLIED = "APPLIED"
    PREDICATE_FAILED = "PREDICATE_FAILED"
    NOT_FOUND = "NOT_FOUND"


_ORDERINGS = {
    "created_desc": SurplusRecord.created_at.desc(),
    "expiry_asc": SurplusRecord.expiry_time.asc(),
    "claimed_desc": SurplusRecord.claimed_at.desc(),
    "updated_desc": SurplusRecord.updated_at.desc(),
}


def _predicate(expected: dict[str, Any]) -> list:
    clauses = []
    for field, value in expected.items():
        col = getattr(SurplusRecord, field)
        if value is None:
            clauses.append(col.is_(None))
        elif value is NOT_NULL:
            clauses.append(col.isnot(None))
        else:
            clauses.append(col == value)
    return clauses


def read(db: Session, surplus_id: str) -> SurplusRecord:
    """Latest persisted state; never a cached identity-map copy."""
    rec = db.get(SurplusRecord, surplus_id, populate_existing=True)
    if rec is None:
        raise NotFoundError("Surplus item not found", code="SURPLUS_NOT_FOUND")
    return rec


def insert(db: Session, record: SurplusRecord) -> SurplusRecord:
    db.add(record)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)
    return record


def conditional_update(db: Session, surplus_id: str, expected: dict[str, Any], changes: dict[str, Any]) -> UpdateResult:
    stmt = (
        update(SurplusRecord)
        .where(SurplusRecord.id == surplus_id, *_predicate(expected))
        .values(**changes)
        .execution_options(synchronize_session=False)
    )
    try:
        result = db.execute(stmt)
        db.commit()
    except Exception:
        db.rollback()
        raise
    if result.rowcount == 1:
        return UpdateResult.APPLIED
    if db.get(SurplusRecord, surplus_id, populate_existing=True) is None:
        return UpdateResult.NOT_FOUND
    return UpdateResult.PREDICATE_FAILED


def conditional_delete(db: Session, surplus_id: str, expected: dict[str, Any]) -> UpdateResult:
    stmt = (
        delete(SurplusRecord)
        .where(SurplusRecord.id == surplus_id, *_predicate(expected))
        .execution_options(synchronize_session=False)
    )
    try:
        result = db.execute(stmt)
        db.commit()
    except Exception:
        db.rollback()
        raise
    if result.rowcount == 1:
        return UpdateResult.APPLIED
    if db.get(SurplusRecord, surplus_id, populate_existing=True) is None:
        return UpdateResult.NOT_FOUND
    return UpdateResult.PREDICATE_FAILED


def query(
    db: Session,
    *,
    canteen_id: str | None = None,
    claimed_by: str | None = None,
    assigned_driver_id: str | None = None,
    status: SurplusStatus | list[SurplusStatus] | None = None,
    expiry_after: datetime | None = None,
    expiry_before: datetime | None = None,
    needs_driver: bool = False,
    order_by: str | None = None,
    limit: int | None = None,
) -> list[SurplusRecord]:
    q = db.query(SurplusRecord).populate_existing()
    if canteen_id is not None:
        q = q.filter(SurplusRecord.canteen_id == canteen_id)
    if claimed_by is not None:
        q = q.filter(SurplusRecord.claimed_by == claimed_by)
    if assigned_driver_id is not None:
        q = q.filter(SurplusRecord.assigned_driver_id == assigned_driver_id)
    if isinstance(status, list):
        q = q.filter(SurplusRecord.status.in_(status))
    elif status is not None:
        q = q.filter(SurplusRecord.status == status)
    if expiry_after is not None:
        q = q.filter(SurplusRecord.expiry_time > expiry_after)
    if expiry_before is not None:
        q = q.filter(SurplusRecord.expiry_time <= expiry_before)
    if needs_driver:
        q = q.filter(SurplusRecord.assigned_driver_id.is_(None))
    if order_by:
        q = q.order_by(_ORDERINGS[order_by], SurplusRecord.id.asc())
    if limit is not None:
        q = q.limit(limit)
    return q.all()
