from datetime import datetime

from pydantic import BaseModel, Field

from foodlink.domains.surplus.models import FoodCategory


class SurplusCreateIn(BaseModel):
    food_name: str = Field(min_length=1, max_length=128)
    category: FoodCategory
    quantity: float = Field(allow_inf_nan=False)
    unit: str = Field(min_length=1, max_length=32)
    pickup_location: str = Field(min_length=1, max_length=256)
    # Optional: when omitted the freshness predictor decides.
    expiry_time: datetime | None = None
    additional_info: str | None = Field(default=None, max_length=1024)
    image_url: str | None = Field(default=None, max_length=512)


class VerifyCodeIn(BaseModel):
    # Either the typed 4-digit code or the scanned handoff QR payload.
    code: str | None = Field(default=None, max_length=16)
    qr_payload: str | None = Field(default=None, max_length=512)


class SurplusOut(BaseModel):
    id: str
    canteen_id: str
    canteen_name: str
    food_name: str
    category: str
    quantity: float
    unit: str

    created_at: str
    updated_at: str
    expiry_time: str
    pickup_location: str
    image_url: str | None = None
    additional_info: str | None = None

    status: str
    effective_status: str
    claimed_by: str | None = None
    claimer_name: str | None = None
    claimed_at: str | None = None

    assigned_driver_id: str | None = None
    driver_pickup_verified_at: str | None = None
    recipient_delivery_verified_at: str | None = None

    # Present only for the assigned driver.
    delivery_code: str | None = None
    handoff_qr_png_base64: str | None = None


class SurplusListOut(BaseModel):
    items: list[SurplusOut]


class CanteenStatsOut(BaseModel):
    role: str
    created_today: int
    collected_today: int


class NgoStatsOut(BaseModel):
    role: str
    available_now: int
    claimed_today: int
    collected_total: int


class DriverStatsOut(BaseModel):
    role: str
    available_deliveries: int
    completed_today: int
