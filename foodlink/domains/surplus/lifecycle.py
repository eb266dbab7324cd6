"""
Surplus lifecycle rules.

Pure decision logic: every function takes a `SurplusState` snapshot and the caller's
clock, and either returns a `Transition` (the guard predicate the write must still
satisfy plus the field changes to apply) or raises the specific reason it is not allowed.
Nothing here touches the database; `service.py` re-reads the record, plans the transition
here and applies it with a conditional update.

    available --claim--> claimed --assign_driver--> claimed (+code)
        claimed --verify_pickup--> claimed (+pickup ts)
        claimed --verify_delivery--> collected
    available|claimed --expire--> expired
"""
import enum
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from foodlink.core.errors import GuardViolation, ValidationError
from foodlink.domains.surplus.models import TERMINAL_STATUSES, SurplusStatus

CODE_LENGTH = 4


class Action(str, enum.Enum):
    CLAIM = "claim"
    ASSIGN_DRIVER = "assign_driver"
    VERIFY_PICKUP = "verify_pickup"
    VERIFY_DELIVERY = "verify_delivery"
    EXPIRE = "expire"


class Reason(str, enum.Enum):
    INCORRECT_CODE = "INCORRECT_CODE"
    NOT_READY = "NOT_READY"
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    EXPIRED = "EXPIRED"
    PICKUP_NOT_CONFIRMED = "PICKUP_NOT_CONFIRMED"
    TERMINAL = "TERMINAL"
    NOT_CLAIMED = "NOT_CLAIMED"
    ALREADY_ASSIGNED = "ALREADY_ASSIGNED"
    PICKUP_ALREADY_CONFIRMED = "PICKUP_ALREADY_CONFIRMED"
    NOT_DUE = "NOT_DUE"


REASON_MESSAGES: dict[Reason, str] = {
    Reason.INCORRECT_CODE: "incorrect code",
    Reason.NOT_READY: "not ready: no driver assigned yet",
    Reason.ALREADY_CLAIMED: "already claimed",
    Reason.EXPIRED: "expired",
    Reason.PICKUP_NOT_CONFIRMED: "pickup not yet confirmed",
    Reason.TERMINAL: "record is terminal, no further transitions",
    Reason.NOT_CLAIMED: "not claimed yet",
    Reason.ALREADY_ASSIGNED: "driver already assigned",
    Reason.PICKUP_ALREADY_CONFIRMED: "pickup already confirmed",
    Reason.NOT_DUE: "not expired yet",
}


def violation(reason: Reason) -> GuardViolation:
    return GuardViolation(REASON_MESSAGES[reason], code=reason.value)


class _NotNull:
    def __repr__(self) -> str:
        return "NOT_NULL"


# Predicate marker: "column must be set", for timestamps that are compared by presence only.
NOT_NULL: Any = _NotNull()


@dataclass(frozen=True)
class SurplusState:
    status: SurplusStatus
    expiry_time: datetime
    claimed_by: str | None = None
    assigned_driver_id: str | None = None
    delivery_code: str | None = None
    driver_pickup_verified_at: datetime | None = None
    recipient_delivery_verified_at: datetime | None = None

    @classmethod
    def of(cls, record: Any) -> "SurplusState":
        return cls(
            status=SurplusStatus(record.status),
            expiry_time=record.expiry_time,
            claimed_by=record.claimed_by,
            assigned_driver_id=record.assigned_driver_id,
            delivery_code=record.delivery_code,
            driver_pickup_verified_at=record.driver_pickup_verified_at,
            recipient_delivery_verified_at=record.recipient_delivery_verified_at,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_overdue(self, now: datetime) -> bool:
        return now >= self.expiry_time

    def expected(self) -> dict[str, Any]:
        """Guard predicate matching this snapshot, for the compare-and-set write."""
        return {
            "status": self.status,
            "claimed_by": self.claimed_by,
            "assigned_driver_id": self.assigned_driver_id,
            "driver_pickup_verified_at": NOT_NULL if self.driver_pickup_verified_at else None,
            "recipient_delivery_verified_at": NOT_NULL if self.recipient_delivery_verified_at else None,
        }


@dataclass(frozen=True)
class Transition:
    action: Action
    expected: dict[str, Any]
    changes: dict[str, Any]

    @property
    def status_after(self) -> SurplusStatus | None:
        return self.changes.get("status")


def generate_delivery_code() -> str:
    # Uniform over 0000-9999; only has to resist guessing for one in-person handoff.
    return f"{secrets.randbelow(10**CODE_LENGTH):0{CODE_LENGTH}d}"


def is_well_formed_code(code: str | None) -> bool:
    return code is not None and len(code) == CODE_LENGTH and code.isascii() and code.isdigit()


def normalize_submitted_code(code: str | None) -> str:
    value = (code or "").strip()
    if not value:
        raise ValidationError("Please enter the verification code.", code="CODE_REQUIRED")
    return value


def effective_status(state: SurplusState, now: datetime) -> SurplusStatus:
    """Status as seen by readers: an overdue unclaimed listing reads as expired before anyone writes it."""
    if state.status is SurplusStatus.AVAILABLE and state.is_overdue(now):
        return SurplusStatus.EXPIRED
    return state.status


def _ensure_open(state: SurplusState, action: Action, now: datetime) -> None:
    if state.is_terminal:
        if action is Action.CLAIM and state.status is SurplusStatus.EXPIRED:
            raise violation(Reason.EXPIRED)
        raise violation(Reason.TERMINAL)
    # Only a claim is gated on freshness; a claimed delivery can still be handed over late.
    if action is Action.CLAIM and state.is_overdue(now):
        raise violation(Reason.EXPIRED)


def claim(state: SurplusState, *, recipient_id: str, recipient_name: str, now: datetime) -> Transition:
    if not recipient_id:
        raise ValidationError("recipient id required", code="RECIPIENT_REQUIRED")
    _ensure_open(state, Action.CLAIM, now)
    if state.status is not SurplusStatus.AVAILABLE:
        raise violation(Reason.ALREADY_CLAIMED)
    return Transition(
        action=Action.CLAIM,
        expected=state.expected(),
        changes={
            "status": SurplusStatus.CLAIMED,
            "claimed_by": recipient_id,
            "claimer_name": recipient_name,
            "claimed_at": now,
            "updated_at": now,
        },
    )


def assign_driver(state: SurplusState, *, driver_id: str, now: datetime, code: str | None = None) -> Transition:
    if not driver_id:
        raise ValidationError("driver id required", code="DRIVER_REQUIRED")
    code = code if code is not None else generate_delivery_code()
    if not is_well_formed_code(code):
        raise ValidationError(f"delivery code must be {CODE_LENGTH} digits", code="BAD_CODE_FORMAT")
    _ensure_open(state, Action.ASSIGN_DRIVER, now)
    if state.status is not SurplusStatus.CLAIMED:
        raise violation(Reason.NOT_CLAIMED)
    if state.assigned_driver_id is not None:
        raise violation(Reason.ALREADY_ASSIGNED)
    return Transition(
        action=Action.ASSIGN_DRIVER,
        expected=state.expected(),
        changes={"assigned_driver_id": driver_id, "delivery_code": code, "updated_at": now},
    )


def verify_pickup(state: SurplusState, *, code: str, now: datetime) -> Transition:
    submitted = normalize_submitted_code(code)
    _ensure_open(state, Action.VERIFY_PICKUP, now)
    if state.assigned_driver_id is None or state.delivery_code is None:
        raise violation(Reason.NOT_READY)
    if state.driver_pickup_verified_at is not None:
        raise violation(Reason.PICKUP_ALREADY_CONFIRMED)
    if submitted != state.delivery_code:
        raise violation(Reason.INCORRECT_CODE)
    return Transition(
        action=Action.VERIFY_PICKUP,
        expected=state.expected(),
        changes={"driver_pickup_verified_at": now, "updated_at": now},
    )


def verify_delivery(state: SurplusState, *, code: str, now: datetime) -> Transition:
    submitted = normalize_submitted_code(code)
    _ensure_open(state, Action.VERIFY_DELIVERY, now)
    if state.assigned_driver_id is None or state.delivery_code is None:
        raise violation(Reason.NOT_READY)
    if state.driver_pickup_verified_at is None:
        raise violation(Reason.PICKUP_NOT_CONFIRMED)
    if submitted != state.delivery_code:
        raise violation(Reason.INCORRECT_CODE)
    # Delivery is never stamped before pickup, even if the two clocks disagree.
    stamped = max(now, state.driver_pickup_verified_at)
    return Transition(
        action=Action.VERIFY_DELIVERY,
        expected=state.expected(),
        changes={
            "recipient_delivery_verified_at": stamped,
            "status": SurplusStatus.COLLECTED,
            "updated_at": stamped,
        },
    )


def expire(state: SurplusState, *, now: datetime) -> Transition:
    _ensure_open(state, Action.EXPIRE, now)
    if not state.is_overdue(now):
        raise violation(Reason.NOT_DUE)
    return Transition(
        action=Action.EXPIRE,
        expected=state.expected(),
        changes={"status": SurplusStatus.EXPIRED, "updated_at": now},
    )
