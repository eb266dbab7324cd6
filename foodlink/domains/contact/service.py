from sqlalchemy.orm import Session

from foodlink.core.roles import PartyRole, normalize_role
from foodlink.domains.contact.rules import ROLE_FIELD, is_authorized
from foodlink.domains.surplus.models import SurplusRecord, SurplusStatus


def linking_records(
    db: Session,
    a_id: str,
    a_role: "str | PartyRole",
    b_id: str,
    b_role: "str | PartyRole",
) -> list[SurplusRecord]:
    """Claimed records that could link the two parties (narrowed in SQL, decided by the rule)."""
    a_role = normalize_role(a_role)
    b_role = normalize_role(b_role)
    if a_role is b_role:
        return []
    return (
        db.query(SurplusRecord)
        .populate_existing()
        .filter(
            SurplusRecord.status == SurplusStatus.CLAIMED,
            getattr(SurplusRecord, ROLE_FIELD[a_role]) == a_id,
            getattr(SurplusRecord, ROLE_FIELD[b_role]) == b_id,
        )
        .all()
    )


def contact_allowed(
    db: Session,
    self_id: str,
    self_role: "str | PartyRole",
    target_id: str,
    target_role: "str | PartyRole",
) -> bool:
    # Evaluated fresh on every call: a delivery completing revokes contact immediately.
    records = linking_records(db, self_id, self_role, target_id, target_role)
    return is_authorized(self_id, self_role, target_id, target_role, records)


def active_link_for(
    db: Session,
    a_id: str,
    a_role: "str | PartyRole",
    b_id: str,
    b_role: "str | PartyRole",
) -> SurplusRecord | None:
    records = linking_records(db, a_id, a_role, b_id, b_role)
    if not records:
        return None
    return max(records, key=lambda r: r.updated_at)
