"""
QR payload codec.

Payload template (already printed on issued codes, so it must not change):
    "Name: {name}, Email: {email}"

Names are written verbatim. A comma in a name cuts the decoded name short, so
names used for QR issuance should not contain commas (see payload_round_trips).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Union

from config import QR_BORDER, QR_BOX_SIZE, QR_PIXEL_SIZE
from utils import is_valid_email

_NAME_RE = re.compile(r"Name:\s*([^,]+)")
_EMAIL_RE = re.compile(r"Email:\s*([^\s,]+)")


@dataclass(frozen=True)
class DecodedPayload:
    name: str
    email: str


@dataclass(frozen=True)
class DecodeFailure:
    reason: str

    def __bool__(self) -> bool:
        return False


def encode_payload(name: str, email: str) -> str:
    return f"Name: {name}, Email: {email}"


def decode_payload(payload: str) -> Union[DecodedPayload, DecodeFailure]:
    """
    Extract name and email from a scanned payload.
    Returns DecodeFailure when either field is missing or the email is malformed.
    """
    text = payload or ""
    name_match = _NAME_RE.search(text)
    email_match = _EMAIL_RE.search(text)
    if not name_match or not email_match:
        return DecodeFailure("Not a member QR code")
    email = email_match.group(1).strip()
    if not is_valid_email(email):
        return DecodeFailure(f"Invalid email in QR code: {email}")
    return DecodedPayload(name=name_match.group(1).strip(), email=email)


def payload_round_trips(name: str) -> bool:
    """True when a name survives encode/decode unchanged (no commas)."""
    return "," not in (name or "")


def render_qr_image(payload: str):
    """Render a payload to a PIL image (black on white, error correction M)."""
    import qrcode

    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=QR_BOX_SIZE,
        border=QR_BORDER,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    return qr.make_image(fill_color="black", back_color="white")


def render_qr_png(payload: str, size: int = QR_PIXEL_SIZE) -> bytes:
    """Render a payload to PNG bytes of size x size pixels."""
    from PIL import Image

    img = render_qr_image(payload).convert("RGB")
    img = img.resize((size, size), Image.Resampling.NEAREST)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def decode_qr_image(image_bytes: bytes) -> Optional[str]:
    """
    Read the text of the first QR code found in an image (PNG/JPEG bytes,
    e.g. a camera snapshot). Returns None when no code can be read.
    """
    import cv2
    import numpy as np
    from PIL import Image

    img = Image.open(BytesIO(image_bytes)).convert("RGB")
    # OpenCV expects BGR channel order
    frame = np.asarray(img)[:, :, ::-1].copy()
    text, points, _ = cv2.QRCodeDetector().detectAndDecode(frame)
    if points is None or not text:
        return None
    return text
