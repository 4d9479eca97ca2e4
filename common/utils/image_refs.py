import base64
import binascii
import re
from typing import Optional, Tuple

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[\w-]+=[^;,]*)*(?P<b64>;base64)?,(?P<data>.*)$", re.DOTALL)


def is_data_url(value: Optional[str]) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def is_remote_url(value: Optional[str]) -> bool:
    return isinstance(value, str) and value.lower().startswith(("http://", "https://"))


def parse_data_url(value: str) -> Tuple[str, bytes]:
    """Decode a ``data:`` URL into ``(mime_type, bytes)``."""
    match = _DATA_URL_RE.match(value or "")
    if not match:
        raise ValueError("Invalid data URL")
    mime_type = match.group("mime") or "application/octet-stream"
    payload = match.group("data")
    if not match.group("b64"):
        return mime_type, payload.encode("utf-8")
    try:
        return mime_type, base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Invalid base64 payload: {exc}") from exc


def strip_data_url_prefix(value: str) -> str:
    if is_data_url(value) and "," in value:
        return value.split(",", 1)[1]
    return value
