from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from foodlink.core.db import utcnow
from foodlink.core.deps import get_db, get_principal, require_canteen, require_driver, require_ngo
from foodlink.core.errors import ValidationError
from foodlink.core.security import Principal
from foodlink.domains.identity.service import get_user
from foodlink.domains.surplus.lifecycle import SurplusState, effective_status
from foodlink.domains.surplus.models import SurplusRecord
from foodlink.domains.surplus.schemas import (
    CanteenStatsOut,
    DriverStatsOut,
    NgoStatsOut,
    SurplusCreateIn,
    SurplusListOut,
    SurplusOut,
    VerifyCodeIn,
)
from foodlink.domains.surplus.service import (
    assign_driver,
    claim_surplus,
    code_from_qr,
    create_surplus,
    delete_surplus,
    expire_surplus,
    get_surplus,
    list_assigned_to,
    list_available,
    list_claimed_by,
    list_for_canteen,
    list_needing_driver,
    today_stats,
    verify_delivery,
    verify_pickup,
)
from foodlink.utils.qr import build_handoff_qr_payload, qr_png_base64


router = APIRouter(prefix="/surplus")


def _iso(ts) -> str | None:
    return ts.isoformat() if ts else None


def surplus_out(rec: SurplusRecord, principal: Principal, *, with_qr: bool = False) -> SurplusOut:
    now = utcnow()
    is_driver = rec.assigned_driver_id is not None and rec.assigned_driver_id == principal.sub
    code = rec.delivery_code if is_driver else None
    qr_png = None
    if with_qr and code:
        qr_png = qr_png_base64(build_handoff_qr_payload(surplus_id=rec.id, code=code))
    return SurplusOut(
        id=rec.id,
        canteen_id=rec.canteen_id,
        canteen_name=rec.canteen_name,
        food_name=rec.food_name,
        category=rec.category.value,
        quantity=rec.quantity,
        unit=rec.unit,
        created_at=rec.created_at.isoformat(),
        updated_at=rec.updated_at.isoformat(),
        expiry_time=rec.expiry_time.isoformat(),
        pickup_location=rec.pickup_location,
        image_url=rec.image_url,
        additional_info=rec.additional_info,
        status=rec.status.value,
        effective_status=effective_status(SurplusState.of(rec), now).value,
        claimed_by=rec.claimed_by,
        claimer_name=rec.claimer_name,
        claimed_at=_iso(rec.claimed_at),
        assigned_driver_id=rec.assigned_driver_id,
        driver_pickup_verified_at=_iso(rec.driver_pickup_verified_at),
        recipient_delivery_verified_at=_iso(rec.recipient_delivery_verified_at),
        delivery_code=code,
        handoff_qr_png_base64=qr_png,
    )


def _list_out(items: list[SurplusRecord], principal: Principal) -> SurplusListOut:
    return SurplusListOut(items=[surplus_out(r, principal) for r in items])


def _submitted_code(surplus_id: str, payload: VerifyCodeIn) -> str:
    if payload.qr_payload:
        return code_from_qr(surplus_id=surplus_id, payload=payload.qr_payload)
    if payload.code is None:
        raise ValidationError("Please enter the verification code.", code="CODE_REQUIRED")
    return payload.code


@router.post("", response_model=SurplusOut, status_code=status.HTTP_201_CREATED)
def create(
    payload: SurplusCreateIn,
    principal: Principal = Depends(require_canteen),
    db: Session = Depends(get_db),
) -> SurplusOut:
    canteen = get_user(db, principal.sub)
    rec = create_surplus(
        db,
        canteen_id=canteen.id,
        canteen_name=canteen.display_name,
        food_name=payload.food_name,
        category=payload.category,
        quantity=payload.quantity,
        unit=payload.unit,
        pickup_location=payload.pickup_location,
        expiry_time=payload.expiry_time,
        additional_info=payload.additional_info,
        image_url=payload.image_url,
    )
    return surplus_out(rec, principal)


@router.get("/available", response_model=SurplusListOut)
def available(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> SurplusListOut:
    return _list_out(list_available(db), principal)


@router.get("/mine", response_model=SurplusListOut)
def mine(principal: Principal = Depends(require_canteen), db: Session = Depends(get_db)) -> SurplusListOut:
    return _list_out(list_for_canteen(db, canteen_id=principal.sub), principal)


@router.get("/claimed", response_model=SurplusListOut)
def claimed(principal: Principal = Depends(require_ngo), db: Session = Depends(get_db)) -> SurplusListOut:
    return _list_out(list_claimed_by(db, recipient_id=principal.sub), principal)


@router.get("/needing-driver", response_model=SurplusListOut)
def needing_driver(principal: Principal = Depends(require_driver), db: Session = Depends(get_db)) -> SurplusListOut:
    return _list_out(list_needing_driver(db), principal)


@router.get("/assigned", response_model=SurplusListOut)
def assigned(principal: Principal = Depends(require_driver), db: Session = Depends(get_db)) -> SurplusListOut:
    return _list_out(list_assigned_to(db, driver_id=principal.sub), principal)


@router.get("/stats/today", response_model=CanteenStatsOut | NgoStatsOut | DriverStatsOut)
def stats_today(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> dict:
    return today_stats(db, principal=principal)


@router.get("/{surplus_id}", response_model=SurplusOut)
def detail(surplus_id: str, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> SurplusOut:
    return surplus_out(get_surplus(db, surplus_id), principal, with_qr=True)


@router.delete("/{surplus_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete(surplus_id: str, principal: Principal = Depends(require_canteen), db: Session = Depends(get_db)) -> Response:
    delete_surplus(db, surplus_id=surplus_id, canteen_id=principal.sub)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{surplus_id}/claim", response_model=SurplusOut)
def claim(surplus_id: str, principal: Principal = Depends(require_ngo), db: Session = Depends(get_db)) -> SurplusOut:
    recipient = get_user(db, principal.sub)
    rec = claim_surplus(db, surplus_id=surplus_id, recipient_id=recipient.id, recipient_name=recipient.display_name)
    return surplus_out(rec, principal)


@router.post("/{surplus_id}/assign-driver", response_model=SurplusOut)
def assign(surplus_id: str, principal: Principal = Depends(require_driver), db: Session = Depends(get_db)) -> SurplusOut:
    rec = assign_driver(db, surplus_id=surplus_id, driver_id=principal.sub)
    return surplus_out(rec, principal, with_qr=True)


@router.post("/{surplus_id}/verify-pickup", response_model=SurplusOut)
def confirm_pickup(
    surplus_id: str,
    payload: VerifyCodeIn,
    principal: Principal = Depends(require_canteen),
    db: Session = Depends(get_db),
) -> SurplusOut:
    rec = verify_pickup(db, surplus_id=surplus_id, canteen_id=principal.sub, code=_submitted_code(surplus_id, payload))
    return surplus_out(rec, principal)


@router.post("/{surplus_id}/verify-delivery", response_model=SurplusOut)
def confirm_delivery(
    surplus_id: str,
    payload: VerifyCodeIn,
    principal: Principal = Depends(require_ngo),
    db: Session = Depends(get_db),
) -> SurplusOut:
    rec = verify_delivery(db, surplus_id=surplus_id, recipient_id=principal.sub, code=_submitted_code(surplus_id, payload))
    return surplus_out(rec, principal)


@router.post("/{surplus_id}/expire", response_model=SurplusOut)
def expire(surplus_id: str, principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> SurplusOut:
    return surplus_out(expire_surplus(db, surplus_id=surplus_id), principal)
