from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from foodlink.core.config import settings
from foodlink.core.deps import get_db, get_principal
from foodlink.core.roles import normalize_role
from foodlink.core.security import Principal
from foodlink.domains.identity.models import User
from foodlink.domains.identity.schemas import DirectoryOut, OTPRequestIn, OTPRequestOut, OTPVerifyIn, OTPVerifyOut, UserOut
from foodlink.domains.identity.service import get_user, list_directory, request_otp, verify_otp


router = APIRouter()


def _user_out(user: User) -> UserOut:
    return UserOut(id=user.id, name=user.display_name, organization_name=user.organization_name, role=user.role.value)


@router.post("/auth/otp/request", response_model=OTPRequestOut)
def otp_request(payload: OTPRequestIn, db: Session = Depends(get_db)) -> OTPRequestOut:
    challenge, otp = request_otp(db, payload.phone)
    dev_otp = otp if (settings.env == "dev" or settings.otp_dev_mode) else None
    return OTPRequestOut(
        request_id=challenge.id,
        expires_in_seconds=settings.otp_ttl_seconds,
        dev_otp=dev_otp,
    )


@router.post("/auth/otp/verify", response_model=OTPVerifyOut)
def otp_verify(payload: OTPVerifyIn, db: Session = Depends(get_db)) -> OTPVerifyOut:
    user, token = verify_otp(
        db,
        request_id=payload.request_id,
        otp=payload.otp,
        name=payload.name,
        user_type=payload.user_type,
        organization_name=payload.organization_name,
    )
    return OTPVerifyOut(access_token=token, user_id=user.id, role=user.role.value)


@router.get("/me", response_model=UserOut)
def me(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> UserOut:
    return _user_out(get_user(db, principal.sub))


@router.get("/directory", response_model=DirectoryOut)
def directory(
    role: str | None = Query(default=None),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> DirectoryOut:
    users = list_directory(
        db,
        exclude_user_id=principal.sub,
        role=normalize_role(role) if role else None,
    )
    return DirectoryOut(users=[_user_out(u) for u in users])
