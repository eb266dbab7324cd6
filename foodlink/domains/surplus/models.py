import enum
import uuid
from datetime import datetime

from sqlalchemy import Enum, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from foodlink.core.db import Base, UTCDateTime, utcnow


class SurplusStatus(str, enum.Enum):
    AVAILABLE = "available"
    CLAIMED = "claimed"
    COLLECTED = "collected"
    EXPIRED = "expired"


TERMINAL_STATUSES = frozenset({SurplusStatus.COLLECTED, SurplusStatus.EXPIRED})


class FoodCategory(str, enum.Enum):
    VEGETARIAN = "vegetarian"
    NON_VEGETARIAN = "non-vegetarian"
    VEGAN = "vegan"
    BEVERAGES = "beverages"
    SNACKS = "snacks"
    DESSERTS = "desserts"


def _enum_values(e: type[enum.Enum]) -> list[str]:
    # Persist the lowercase wire spellings, not the Python member names.
    return [m.value for m in e]


class SurplusRecord(Base):
    __tablename__ = "surplus_records"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    canteen_id: Mapped[str] = mapped_column(String, index=True)
    canteen_name: Mapped[str] = mapped_column(String)

    food_name: Mapped[str] = mapped_column(String)
    category: Mapped[FoodCategory] = mapped_column(
        Enum(FoodCategory, name="food_category", values_callable=_enum_values, native_enum=False, length=32)
    )
    quantity: Mapped[float] = mapped_column(Float)
    unit: Mapped[str] = mapped_column(String)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    # Fixed at creation from the freshness window; never extended.
    expiry_time: Mapped[datetime] = mapped_column(UTCDateTime, index=True)

    pickup_location: Mapped[str] = mapped_column(String)
    image_url: Mapped[str | None] = mapped_column(String, nullable=True)
    additional_info: Mapped[str | None] = mapped_column(String, nullable=True)

    status: Mapped[SurplusStatus] = mapped_column(
        Enum(SurplusStatus, name="surplus_status", values_callable=_enum_values, native_enum=False, length=16),
        default=SurplusStatus.AVAILABLE,
        index=True,
    )

    # Claimant triple: all null or all set.
    claimed_by: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    claimer_name: Mapped[str | None] = mapped_column(String, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Handoff:
    # - assigning a driver issues the 4-digit delivery code
    # - canteen enters the code at pickup, recipient enters it again at delivery
    assigned_driver_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    delivery_code: Mapped[str | None] = mapped_column(String(4), nullable=True)
    driver_pickup_verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    recipient_delivery_verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
