import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from foodlink.core.config import settings
from foodlink.core.db import utcnow
from foodlink.core.errors import NotFoundError, ValidationError
from foodlink.core.roles import PartyRole, normalize_role, stored_spellings
from foodlink.core.security import create_access_token, generate_otp, hash_otp, verify_otp_hash
from foodlink.domains.identity.models import OTPChallenge, User

logger = logging.getLogger(__name__)


def request_otp(db: Session, phone: str) -> tuple[OTPChallenge, str]:
    otp = generate_otp()
    challenge = OTPChallenge(
        phone=phone,
        otp_hash=hash_otp(phone, otp),
        expires_at=utcnow() + timedelta(seconds=settings.otp_ttl_seconds),
        verified=False,
    )
    db.add(challenge)
    db.commit()
    db.refresh(challenge)
    logger.info("otp challenge %s issued", challenge.id)
    return challenge, otp


def verify_otp(
    db: Session,
    *,
    request_id: str,
    otp: str,
    name: str | None = None,
    user_type: str | None = None,
    organization_name: str | None = None,
) -> tuple[User, str]:
    challenge = db.get(OTPChallenge, request_id)
    if not challenge:
        raise ValidationError("Invalid request_id", code="INVALID_REQUEST")
    if challenge.verified:
        raise ValidationError("OTP already used", code="OTP_USED")
    if utcnow() > challenge.expires_at:
        raise ValidationError("OTP expired", code="OTP_EXPIRED")
    if not verify_otp_hash(challenge.phone, otp, challenge.otp_hash):
        raise ValidationError("Invalid OTP", code="INVALID_OTP")

    user = db.query(User).filter(User.phone == challenge.phone).one_or_none()
    if user is None:
        # Signup: the first verified login creates the account.
        if not user_type or not (name or organization_name):
            raise ValidationError("name and user_type are required to sign up", code="SIGNUP_INCOMPLETE")
        normalize_role(user_type)
        user = User(
            phone=challenge.phone,
            name=(name or organization_name or "").strip(),
            organization_name=organization_name,
            user_type=user_type.strip().lower(),
        )
        db.add(user)

    challenge.verified = True
    db.commit()
    db.refresh(user)

    token = create_access_token(sub=user.id, role=user.role, name=user.display_name)
    return user, token


def get_user(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found", code="USER_NOT_FOUND")
    return user


def list_directory(
    db: Session,
    *,
    exclude_user_id: str | None = None,
    role: PartyRole | None = None,
    limit: int = 200,
) -> list[User]:
    """Every user is discoverable; messaging them is gated separately."""
    q = db.query(User)
    if exclude_user_id:
        q = q.filter(User.id != exclude_user_id)
    if role is not None:
        q = q.filter(User.user_type.in_(stored_spellings(role)))
    return q.order_by(User.name.asc()).limit(limit).all()
