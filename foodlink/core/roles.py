import enum

from foodlink.core.errors import ValidationError


class PartyRole(str, enum.Enum):
    CANTEEN = "canteen"
    NGO = "ngo"
    DRIVER = "driver"


# Stored/legacy spellings accepted at ingress. "volunteer" is the same party as a driver.
_ROLE_ALIASES = {
    "canteen": PartyRole.CANTEEN,
    "ngo": PartyRole.NGO,
    "driver": PartyRole.DRIVER,
    "volunteer": PartyRole.DRIVER,
}


def normalize_role(raw: "str | PartyRole | None") -> PartyRole:
    """Canonicalise a role string coming from the database, a token or a request body."""
    if isinstance(raw, PartyRole):
        return raw
    key = (raw or "").strip().lower()
    role = _ROLE_ALIASES.get(key)
    if role is None:
        raise ValidationError(f"unrecognised role: {raw!r}", code="UNKNOWN_ROLE")
    return role


def stored_spellings(role: PartyRole) -> list[str]:
    """Every raw value that normalises to `role`, for filtering stored rows."""
    return sorted(k for k, v in _ROLE_ALIASES.items() if v == role)
