from fastapi import Depends, HTTPException, Request, status

from foodlink.core.db import SessionLocal
from foodlink.core.roles import PartyRole
from foodlink.core.security import Principal, decode_bearer_token


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_principal(request: Request) -> Principal:
    auth = request.headers.get("authorization") or ""
    prefix = "bearer "
    if not auth.lower().startswith(prefix):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    token = auth[len(prefix) :].strip()
    try:
        return decode_bearer_token(token)
    except Exception:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def require_roles(*allowed: PartyRole):
    def _inner(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.role not in allowed:
            names = "/".join(r.value for r in allowed)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"{names} role required")
        return principal

    return _inner


require_canteen = require_roles(PartyRole.CANTEEN)
require_ngo = require_roles(PartyRole.NGO)
require_driver = require_roles(PartyRole.DRIVER)
