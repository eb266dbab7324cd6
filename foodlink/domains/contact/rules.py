"""
Who may message whom.

Two parties may talk only while a claimed surplus record links them:

    canteen <-> ngo      record.canteen_id / record.claimed_by
    canteen <-> driver   record.canteen_id / record.assigned_driver_id
    ngo     <-> driver   record.claimed_by / record.assigned_driver_id

Available, collected and expired records never link anyone, and two parties of the
same role never may. The rule is keyed by role, not by argument order, so it is symmetric.
"""
from collections.abc import Iterable
from typing import Any

from foodlink.core.roles import PartyRole, normalize_role
from foodlink.domains.surplus.models import SurplusStatus

# Record attribute holding each role's identity.
ROLE_FIELD = {
    PartyRole.CANTEEN: "canteen_id",
    PartyRole.NGO: "claimed_by",
    PartyRole.DRIVER: "assigned_driver_id",
}


def is_active_link(record: Any) -> bool:
    return SurplusStatus(record.status) is SurplusStatus.CLAIMED


def links(record: Any, a_id: str, a_role: PartyRole, b_id: str, b_role: PartyRole) -> bool:
    return (
        is_active_link(record)
        and getattr(record, ROLE_FIELD[a_role]) == a_id
        and getattr(record, ROLE_FIELD[b_role]) == b_id
    )


def is_authorized(
    self_id: str,
    self_role: "str | PartyRole",
    target_id: str,
    target_role: "str | PartyRole",
    records: Iterable[Any],
) -> bool:
    a_role = normalize_role(self_role)
    b_role = normalize_role(target_role)
    if a_role is b_role or not self_id or not target_id or self_id == target_id:
        return False
    return any(links(r, self_id, a_role, target_id, b_role) for r in records)
