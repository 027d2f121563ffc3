from __future__ import annotations

import json
import os

from reportlab.graphics import renderSVG
from reportlab.graphics.barcode.qr import QrCodeWidget
from reportlab.graphics.shapes import Drawing

from court_reservations.core.config import settings

QR_SIZE = 256


def qr_payload(*, booking_code: str, user_id: str, court_id: int, date_str: str, start: str) -> str:
    """Payload scanned at the venue. Staff lookup reads ``code`` back out of it."""
    return json.dumps({
        "code": booking_code,
        "userId": user_id,
        "courtId": court_id,
        "date": date_str,
        "time": start,
    }, separators=(",", ":"))


def render_qr_svg(payload: str) -> bytes:
    """Return an SVG QR code for payload. Pure function."""
    widget = QrCodeWidget(payload)
    x1, y1, x2, y2 = widget.getBounds()
    w, h = x2 - x1, y2 - y1
    d = Drawing(QR_SIZE, QR_SIZE, transform=[QR_SIZE / w, 0, 0, QR_SIZE / h, 0, 0])
    d.add(widget)
    return renderSVG.drawToString(d).encode("utf-8")


def store_qr_svg(*, booking_code: str, svg_bytes: bytes) -> tuple[str, str]:
    """Store QR image and return (storage_backend, object_key)."""
    if settings.GCS_BUCKET_NAME and settings.GOOGLE_APPLICATION_CREDENTIALS:
        try:
            from google.cloud import storage  # type: ignore
        except Exception as e:
            raise RuntimeError("google-cloud-storage is not installed. Install the gcs extra and retry") from e

        client = storage.Client()
        bucket = client.bucket(settings.GCS_BUCKET_NAME)
        object_key = f"qr_codes/qr_{booking_code}.svg"
        blob = bucket.blob(object_key)
        blob.upload_from_string(svg_bytes, content_type="image/svg+xml")
        return "gcs", object_key

    # local
    base = settings.QR_LOCAL_DIR or "./data/qr_codes"
    os.makedirs(base, exist_ok=True)
    object_key = os.path.join(base, f"qr_{booking_code}.svg")
    with open(object_key, "wb") as f:
        f.write(svg_bytes)
    return "local", object_key


def encode_qr(payload: str, booking_code: str) -> tuple[str, str]:
    """QR collaborator: encode payload and return a displayable reference (storage, object_key)."""
    return store_qr_svg(booking_code=booking_code, svg_bytes=render_qr_svg(payload))
