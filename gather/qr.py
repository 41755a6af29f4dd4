"""QR payload encoding for attendee tickets."""

from __future__ import annotations

import base64
import json
from io import BytesIO
from typing import Any

import qrcode

from .config import settings
from .errors import InvalidPayload

PAYLOAD_KEYS = ("attendeeId", "eventId", "name", "email")


def build_payload(*, attendee_id: str, event_id: str, name: str, email: str) -> str:
    """Return the JSON text scanned at the door."""
    return json.dumps(
        {"attendeeId": attendee_id, "eventId": event_id, "name": name, "email": email},
        separators=(",", ":"),
    )


def parse_payload(raw: str | None) -> dict[str, Any]:
    """Decode a scanned payload, raising ``InvalidPayload`` when unusable."""
    if not raw or not isinstance(raw, str):
        raise InvalidPayload()
    try:
        parsed = json.loads(raw)
    except ValueError as exc:
        raise InvalidPayload() from exc
    if not isinstance(parsed, dict):
        raise InvalidPayload()
    attendee_id = parsed.get("attendeeId")
    if not attendee_id or not isinstance(attendee_id, str):
        raise InvalidPayload("Invalid QR code data.")
    return parsed


def render_data_url(payload: str) -> str:
    """Render ``payload`` as a black-on-white PNG ``data:`` URL."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=settings.qr_box_size,
        border=settings.qr_border,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffered = BytesIO()
    img.save(buffered, "PNG")
    encoded = base64.b64encode(buffered.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
