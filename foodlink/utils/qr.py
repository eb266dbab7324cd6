import base64
import hashlib
import hmac
import io

import qrcode

from foodlink.core.config import settings


def _b64url(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("utf-8").rstrip("=")


def handoff_signature(*, surplus_id: str, code: str) -> str:
    msg = f"{surplus_id}|{code}".encode("utf-8")
    return _b64url(hmac.new(settings.jwt_secret.encode("utf-8"), msg, hashlib.sha256).digest()[:16])


def build_handoff_qr_payload(*, surplus_id: str, code: str) -> str:
    """
    Payload the driver shows at the canteen and at the recipient.
    Scanning it is equivalent to typing the 4-digit code.
    """
    sig = handoff_signature(surplus_id=surplus_id, code=code)
    return f"FOODLINK|SURPLUS:{surplus_id}|CODE:{code}|SIG:{sig}"


def parse_handoff_qr_payload(payload: str) -> tuple[str, str] | None:
    """Returns (surplus_id, code) when the payload is well formed and correctly signed."""
    parts = (payload or "").strip().split("|")
    if len(parts) != 4 or parts[0] != "FOODLINK":
        return None
    fields = {}
    for part in parts[1:]:
        key, sep, value = part.partition(":")
        if not sep:
            return None
        fields[key] = value
    surplus_id = fields.get("SURPLUS") or ""
    code = fields.get("CODE") or ""
    sig = fields.get("SIG") or ""
    if not surplus_id or not code:
        return None
    if not hmac.compare_digest(sig, handoff_signature(surplus_id=surplus_id, code=code)):
        return None
    return surplus_id, code


def qr_png_base64(data: str, *, box_size: int = 5, border: int = 2) -> str:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("utf-8")
