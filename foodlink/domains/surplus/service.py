import logging
import math
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from foodlink.core.config import settings
from foodlink.core.db import utcnow
from foodlink.core.errors import AuthorizationError, ConflictError, GuardViolation, NotFoundError, ValidationError
from foodlink.core.roles import PartyRole
from foodlink.core.security import Principal
from foodlink.domains.surplus import lifecycle, store
from foodlink.domains.surplus.freshness import FreshnessPredictor, default_predictor
from foodlink.domains.surplus.lifecycle import Reason, SurplusState, Transition
from foodlink.domains.surplus.models import FoodCategory, SurplusRecord, SurplusStatus
from foodlink.domains.surplus.store import UpdateResult
from foodlink.utils.qr import parse_handoff_qr_payload

logger = logging.getLogger(__name__)


def create_surplus(
    db: Session,
    *,
    canteen_id: str,
    canteen_name: str,
    food_name: str,
    category: FoodCategory,
    quantity: float,
    unit: str,
    pickup_location: str,
    expiry_time: datetime | None = None,
    additional_info: str | None = None,
    image_url: str | None = None,
    predictor: FreshnessPredictor | None = None,
    now: datetime | None = None,
) -> SurplusRecord:
    now = now or utcnow()
    if quantity is None or not math.isfinite(quantity) or quantity <= 0:
        raise ValidationError("Quantity must be greater than zero.", code="INVALID_QUANTITY")
    if not (food_name or "").strip():
        raise ValidationError("Food name is required.", code="FOOD_NAME_REQUIRED")
    if not (pickup_location or "").strip():
        raise ValidationError("Pickup location is required.", code="PICKUP_LOCATION_REQUIRED")

    if expiry_time is None:
        estimate = (predictor or default_predictor).predict(food_name=food_name, category=category, quantity=quantity)
        if not math.isfinite(estimate.quantity) or estimate.quantity <= 0:
            raise ValidationError("Predicted quantity must be greater than zero.", code="INVALID_QUANTITY")
        quantity = estimate.quantity
        expiry_time = now + estimate.shelf_life
    if expiry_time.tzinfo is None:
        expiry_time = expiry_time.replace(tzinfo=timezone.utc)
    if expiry_time <= now:
        raise ValidationError("Expiry time must be in the future.", code="INVALID_EXPIRY")

    rec = SurplusRecord(
        canteen_id=canteen_id,
        canteen_name=canteen_name,
        food_name=food_name.strip(),
        category=category,
        quantity=quantity,
        unit=unit,
        pickup_location=pickup_location.strip(),
        expiry_time=expiry_time,
        additional_info=additional_info,
        image_url=image_url,
        status=SurplusStatus.AVAILABLE,
        created_at=now,
        updated_at=now,
    )
    store.insert(db, rec)
    logger.info("surplus %s created by canteen %s (expires %s)", rec.id, canteen_id, rec.expiry_time.isoformat())
    return rec


def get_surplus(db: Session, surplus_id: str) -> SurplusRecord:
    return store.read(db, surplus_id)


def _materialize_expiry(db: Session, surplus_id: str, state: SurplusState, now: datetime) -> None:
    transition = lifecycle.expire(state, now=now)
    result = store.conditional_update(db, surplus_id, transition.expected, transition.changes)
    if result is UpdateResult.APPLIED:
        logger.info("surplus %s expired (lazy, at %s)", surplus_id, now.isoformat())


def _apply(
    db: Session,
    surplus_id: str,
    plan: Callable[[SurplusState], Transition],
    *,
    actor_id: str | None,
    now: datetime,
    authorize: Callable[[SurplusRecord], None] | None = None,
) -> SurplusRecord:
    """
    Read the latest persisted record, plan the transition, write it with compare-and-set.

    A lost write is re-validated against the fresh state: if the guard no longer holds the
    caller gets that guard's reason, otherwise a ConflictError. Never retried here.
    """
    record = store.read(db, surplus_id)
    if authorize is not None:
        authorize(record)
    state = SurplusState.of(record)
    try:
        transition = plan(state)
    except GuardViolation as exc:
        if exc.code == Reason.EXPIRED.value and not state.is_terminal:
            _materialize_expiry(db, surplus_id, state, now)
        raise

    result = store.conditional_update(db, surplus_id, transition.expected, transition.changes)
    if result is UpdateResult.NOT_FOUND:
        raise NotFoundError("Surplus item not found", code="SURPLUS_NOT_FOUND")
    if result is UpdateResult.PREDICATE_FAILED:
        logger.warning("surplus %s: %s by %s lost a concurrent write", surplus_id, transition.action.value, actor_id)
        latest = store.read(db, surplus_id)
        plan(SurplusState.of(latest))
        raise ConflictError()

    logger.info("surplus %s: %s by %s", surplus_id, transition.action.value, actor_id)
    return store.read(db, surplus_id)


def claim_surplus(
    db: Session,
    *,
    surplus_id: str,
    recipient_id: str,
    recipient_name: str,
    now: datetime | None = None,
) -> SurplusRecord:
    now = now or utcnow()
    return _apply(
        db,
        surplus_id,
        lambda s: lifecycle.claim(s, recipient_id=recipient_id, recipient_name=recipient_name, now=now),
        actor_id=recipient_id,
        now=now,
    )


def assign_driver(
    db: Session,
    *,
    surplus_id: str,
    driver_id: str,
    now: datetime | None = None,
    code_factory: Callable[[], str] = lifecycle.generate_delivery_code,
) -> SurplusRecord:
    now = now or utcnow()
    code = code_factory()
    return _apply(
        db,
        surplus_id,
        lambda s: lifecycle.assign_driver(s, driver_id=driver_id, now=now, code=code),
        actor_id=driver_id,
        now=now,
    )


def _require_owner(canteen_id: str) -> Callable[[SurplusRecord], None]:
    def _check(record: SurplusRecord) -> None:
        if record.canteen_id != canteen_id:
            raise AuthorizationError("Only the listing canteen can confirm pickup.", code="NOT_OWNER")

    return _check


def _require_claimant(recipient_id: str) -> Callable[[SurplusRecord], None]:
    def _check(record: SurplusRecord) -> None:
        if record.claimed_by != recipient_id:
            raise AuthorizationError("Only the claiming recipient can confirm delivery.", code="NOT_CLAIMANT")

    return _check


def verify_pickup(
    db: Session,
    *,
    surplus_id: str,
    canteen_id: str,
    code: str,
    now: datetime | None = None,
) -> SurplusRecord:
    submitted = lifecycle.normalize_submitted_code(code)
    now = now or utcnow()
    return _apply(
        db,
        surplus_id,
        lambda s: lifecycle.verify_pickup(s, code=submitted, now=now),
        actor_id=canteen_id,
        now=now,
        authorize=_require_owner(canteen_id),
    )


def verify_delivery(
    db: Session,
    *,
    surplus_id: str,
    recipient_id: str,
    code: str,
    now: datetime | None = None,
) -> SurplusRecord:
    submitted = lifecycle.normalize_submitted_code(code)
    now = now or utcnow()
    return _apply(
        db,
        surplus_id,
        lambda s: lifecycle.verify_delivery(s, code=submitted, now=now),
        actor_id=recipient_id,
        now=now,
        authorize=_require_claimant(recipient_id),
    )


def code_from_qr(*, surplus_id: str, payload: str) -> str:
    parsed = parse_handoff_qr_payload(payload)
    if parsed is None or parsed[0] != surplus_id:
        raise ValidationError("QR code is not valid for this item.", code="INVALID_QR")
    return parsed[1]


def expire_surplus(db: Session, *, surplus_id: str, now: datetime | None = None) -> SurplusRecord:
    now = now or utcnow()
    return _apply(db, surplus_id, lambda s: lifecycle.expire(s, now=now), actor_id=None, now=now)


def delete_surplus(db: Session, *, surplus_id: str, canteen_id: str) -> None:
    record = store.read(db, surplus_id)
    if record.canteen_id != canteen_id:
        raise AuthorizationError("Only the listing canteen can delete it.", code="NOT_OWNER")
    if record.status is not SurplusStatus.AVAILABLE:
        raise GuardViolation("Only available items can be deleted.", code="NOT_DELETABLE")
    result = store.conditional_delete(
        db,
        surplus_id,
        {"status": SurplusStatus.AVAILABLE, "canteen_id": canteen_id, "claimed_by": None},
    )
    if result is UpdateResult.NOT_FOUND:
        raise NotFoundError("Surplus item not found", code="SURPLUS_NOT_FOUND")
    if result is UpdateResult.PREDICATE_FAILED:
        logger.warning("surplus %s: delete lost to a concurrent claim", surplus_id)
        raise GuardViolation("Only available items can be deleted.", code="NOT_DELETABLE")
    logger.info("surplus %s deleted by canteen %s", surplus_id, canteen_id)


# Listings (dashboard queries)


def list_for_canteen(db: Session, *, canteen_id: str) -> list[SurplusRecord]:
    return store.query(db, canteen_id=canteen_id, order_by="created_desc")


def list_available(db: Session, *, now: datetime | None = None, limit: int | None = None) -> list[SurplusRecord]:
    now = now or utcnow()
    return store.query(
        db,
        status=SurplusStatus.AVAILABLE,
        expiry_after=now,
        order_by="expiry_asc",
        limit=limit or settings.available_listing_limit,
    )


def list_claimed_by(db: Session, *, recipient_id: str) -> list[SurplusRecord]:
    return store.query(db, claimed_by=recipient_id, order_by="claimed_desc")


def list_needing_driver(db: Session, *, now: datetime | None = None) -> list[SurplusRecord]:
    now = now or utcnow()
    return store.query(
        db,
        status=SurplusStatus.CLAIMED,
        needs_driver=True,
        expiry_after=now,
        order_by="expiry_asc",
    )


def list_assigned_to(db: Session, *, driver_id: str) -> list[SurplusRecord]:
    return store.query(db, assigned_driver_id=driver_id, order_by="updated_desc")


def _day_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def _within(ts: datetime | None, start: datetime, end: datetime) -> bool:
    return ts is not None and start <= ts < end


def today_stats(db: Session, *, principal: Principal, now: datetime | None = None) -> dict:
    now = now or utcnow()
    start, end = _day_bounds(now)

    if principal.role is PartyRole.CANTEEN:
        items = list_for_canteen(db, canteen_id=principal.sub)
        return {
            "role": principal.role.value,
            "created_today": sum(1 for i in items if _within(i.created_at, start, end)),
            "collected_today": sum(
                1 for i in items if i.status is SurplusStatus.COLLECTED and _within(i.updated_at, start, end)
            ),
        }

    if principal.role is PartyRole.NGO:
        claimed = list_claimed_by(db, recipient_id=principal.sub)
        return {
            "role": principal.role.value,
            "available_now": len(list_available(db, now=now)),
            "claimed_today": sum(1 for i in claimed if _within(i.claimed_at, start, end)),
            "collected_total": sum(1 for i in claimed if i.status is SurplusStatus.COLLECTED),
        }

    assigned = list_assigned_to(db, driver_id=principal.sub)
    return {
        "role": principal.role.value,
        "available_deliveries": len(list_needing_driver(db, now=now)),
        "completed_today": sum(1 for i in assigned if _within(i.recipient_delivery_verified_at, start, end)),
    }
