import hashlib
import secrets
import time
from dataclasses import dataclass

import jwt

from foodlink.core.config import settings
from foodlink.core.roles import PartyRole, normalize_role


def _now_s() -> int:
    return int(time.time())


def generate_otp() -> str:
    upper = 10**settings.otp_len
    lower = 10 ** (settings.otp_len - 1)
    return str(secrets.randbelow(upper - lower) + lower)


def hash_otp(phone: str, otp: str) -> str:
    raw = f"{settings.jwt_secret}:{phone}:{otp}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def verify_otp_hash(phone: str, otp: str, expected_hash: str) -> bool:
    return secrets.compare_digest(hash_otp(phone, otp), expected_hash)


def create_access_token(*, sub: str, role: PartyRole, name: str | None = None) -> str:
    now = _now_s()
    payload = {
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": now,
        "exp": now + settings.access_token_ttl_seconds,
        "sub": sub,
        "role": normalize_role(role).value,
    }
    if name:
        payload["name"] = name
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


@dataclass(frozen=True)
class Principal:
    sub: str
    role: PartyRole
    name: str | None = None


def decode_bearer_token(token: str) -> Principal:
    payload = jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        audience=settings.jwt_audience,
        issuer=settings.jwt_issuer,
    )
    name = payload.get("name")
    return Principal(
        sub=str(payload["sub"]),
        role=normalize_role(payload.get("role")),
        name=str(name) if name is not None else None,
    )
