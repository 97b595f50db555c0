import base64
import random
import re
import time
from typing import Optional

_EMAIL_RE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def is_valid_email(email: Optional[str]) -> bool:
    """Loose syntax check: local@domain.tld with no spaces and a single '@' per part."""
    if not email:
        return False
    return _EMAIL_RE.fullmatch(email) is not None


def derive_password(email: str, phone_number: Optional[str] = None) -> str:
    """
    Default account password: email local part + last 4 phone digits.
    - Non-digits are stripped from the phone number
    - Fewer than 4 digits are left-padded with '0'
    - No phone (or no digits) gives '0000'
    """
    local_part = (email or "").split("@")[0]
    digits = re.sub(r"[^0-9]", "", str(phone_number or ""))
    suffix = digits[-4:].rjust(4, "0")
    return f"{local_part}{suffix}"


def _base36(n: int) -> str:
    if n == 0:
        return "0"
    out = []
    while n:
        n, rem = divmod(n, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def generate_unique_id() -> str:
    """Display identifier: HR + base36(epoch ms) + 6 random base36 chars, upper-cased."""
    timestamp = _base36(int(time.time() * 1000))
    random_part = "".join(random.choice(_BASE36) for _ in range(6))
    return f"HR{timestamp}{random_part}".upper()


def safe_filename(name: str, extension: str = "png") -> str:
    """
    Convert a display name into a safe download filename.
    - Uses only letters/numbers/spaces/_/-
    - Collapses whitespace to underscores
    - Falls back to 'member'
    """
    raw = "" if name is None else str(name)
    safe = re.sub(r"[^A-Za-z0-9 _-]+", "", raw).strip()
    safe = re.sub(r"\s+", "_", safe)
    if not safe:
        safe = "member"
    return f"{safe}.{extension}"


def normalize_email(email: Optional[str]) -> str:
    """Stored and looked-up form of an address: trimmed and lower-cased."""
    return (email or "").strip().lower()


def image_data_url(data: bytes, mime: str = "image/png") -> str:
    """Inline an uploaded image as a base64 data URL for storage on a document."""
    return f"data:{mime or 'application/octet-stream'};base64,{base64.b64encode(data).decode('ascii')}"
