"""Data carried by printed loyalty QR codes.

Till-counter codes and onboarding codes point at the same landing path
and differ only by ``mode``:

    {PUBLIC_BASE_URL}/loyalty/start/{public_id}?mode=earn&t={earn_token}
    {PUBLIC_BASE_URL}/loyalty/start/{public_id}?mode=join

Rendering the QR image is left to the client.
"""

import enum
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs, quote, urlencode, urlparse

from libs.common.config import get_settings

START_PATH = "/loyalty/start/"


class QrMode(str, enum.Enum):
    EARN = "earn"
    JOIN = "join"


@dataclass(frozen=True)
class QrPayload:
    program_public_id: str
    mode: QrMode
    token: Optional[str] = None


def build_qr_url(
    public_id: str,
    mode: QrMode,
    *,
    token: Optional[str] = None,
    base_url: Optional[str] = None,
) -> str:
    base = (base_url or get_settings().PUBLIC_BASE_URL).rstrip("/")
    params = {"mode": mode.value}
    if mode == QrMode.EARN:
        if not token:
            raise ValueError("earn QR codes require the program's earn token")
        params["t"] = token
    return f"{base}{START_PATH}{quote(public_id, safe='')}?{urlencode(params)}"


def parse_qr_url(url: str) -> QrPayload:
    """Decode a scanned URL. Raises ValueError if it is not a loyalty code."""
    parsed = urlparse(url.strip())
    if START_PATH not in parsed.path:
        raise ValueError("not a loyalty QR url")

    public_id = parsed.path.split(START_PATH, 1)[1].strip("/")
    if not public_id or "/" in public_id:
        raise ValueError("missing program id")

    query = parse_qs(parsed.query)
    # Old join codes were printed without a mode
    raw_mode = (query.get("mode") or ["join"])[0]
    try:
        mode = QrMode(raw_mode)
    except ValueError:
        raise ValueError(f"unknown QR mode: {raw_mode}") from None

    token = (query.get("t") or [None])[0]
    if mode == QrMode.EARN and not token:
        raise ValueError("earn QR url has no token")

    return QrPayload(
        program_public_id=public_id,
        mode=mode,
        token=token if mode == QrMode.EARN else None,
    )
