import uuid
from datetime import datetime

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from foodlink.core.db import Base, UTCDateTime, utcnow
from foodlink.core.roles import PartyRole, normalize_role


class OTPChallenge(Base):
    __tablename__ = "otp_challenges"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    phone: Mapped[str] = mapped_column(String, index=True)
    otp_hash: Mapped[str] = mapped_column(String)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime)
    verified: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    phone: Mapped[str] = mapped_column(String, unique=True, index=True)
    name: Mapped[str] = mapped_column(String)
    organization_name: Mapped[str | None] = mapped_column(String, nullable=True)

    # Raw registered type ("volunteer" is kept as signed up); read through `role`.
    user_type: Mapped[str] = mapped_column(String, index=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    @property
    def role(self) -> PartyRole:
        return normalize_role(self.user_type)

    @property
    def display_name(self) -> str:
        return self.name or self.organization_name or ""
