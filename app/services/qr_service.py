"""
User Profiles API — QR profile exchange

A profile is shared as a QR code whose text is a JSON object::

    {"fullName": ..., "email": ..., "phoneNumber": ..., "bio": ...,
     "location": ..., "dateOfBirth": ..., "avatarUrl": ...,
     "type": "user_profile"}

Missing optional fields are written as empty strings.  On the way back in,
payloads without ``type == "user_profile"`` or without a ``fullName`` /
``email`` are rejected and unknown keys are ignored.

Rendering uses ``qrcode`` (Pillow backend); decoding loads the image with
Pillow and hands the RGB pixel data to OpenCV's ``QRCodeDetector``.
"""

from __future__ import annotations

import io
import json
from typing import Any

import cv2
import numpy as np
import qrcode
import structlog
from PIL import Image, UnidentifiedImageError
from qrcode.constants import ERROR_CORRECT_M
from qrcode.exceptions import DataOverflowError

from app.errors import AppError, RequestValidationFailed
from app.models.user import User
from app.schemas.qr import PROFILE_QR_TYPE, ScannedProfile
from app.schemas.user import serialize_timestamp

logger = structlog.get_logger("profiles.qr_service")

_PAYLOAD_FIELDS = (
    "fullName",
    "email",
    "phoneNumber",
    "bio",
    "location",
    "dateOfBirth",
    "avatarUrl",
)


class QRPayloadTooLarge(AppError):
    def __init__(self, message: str = "Profile is too large to encode as a QR code") -> None:
        super().__init__(message, status_code=422)


def build_payload(user: User) -> dict[str, str]:
    """Return the QR payload dict for ``user``."""
    return {
        "fullName": user.full_name,
        "email": user.email,
        "phoneNumber": user.phone_number or "",
        "bio": user.bio or "",
        "location": user.location or "",
        "dateOfBirth": serialize_timestamp(user.date_of_birth) or "",
        "avatarUrl": user.avatar_url or "",
        "type": PROFILE_QR_TYPE,
    }


def serialize_payload(payload: dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def encode_qr(text: str, *, box_size: int = 10, border: int = 4) -> bytes:
    """Render ``text`` as a PNG QR code (error correction level M)."""
    qr = qrcode.QRCode(
        error_correction=ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(text)
    try:
        qr.make(fit=True)
    except (DataOverflowError, ValueError):
        # qrcode 8 raises ValueError once fit=True passes version 40.
        logger.warning("qr_payload_overflow", length=len(text))
        raise QRPayloadTooLarge() from None

    image = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def decode_qr(image_bytes: bytes) -> str | None:
    """Return the text of the first QR code in the image, or ``None``."""
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            pixels = np.array(image.convert("RGB"))
    except (UnidentifiedImageError, OSError, ValueError):
        logger.info("qr_decode_unreadable_image", size=len(image_bytes))
        return None

    frame = cv2.cvtColor(pixels, cv2.COLOR_RGB2BGR)
    text, _points, _ = cv2.QRCodeDetector().detectAndDecode(frame)
    return text or None


def parse_payload(text: str) -> ScannedProfile | None:
    """Validate a decoded QR text as a profile payload."""
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        return None

    if not isinstance(parsed, dict) or parsed.get("type") != PROFILE_QR_TYPE:
        return None

    fields = {}
    for key in _PAYLOAD_FIELDS:
        value = parsed.get(key)
        fields[key] = value if isinstance(value, str) else ""
    if not fields["fullName"] or not fields["email"]:
        return None
    return ScannedProfile.model_validate(fields)


def profile_to_qr(user: User, *, box_size: int = 10, border: int = 4) -> bytes:
    """Build, serialise and render the QR code for ``user``."""
    logger.info("profile_qr_render", user_id=user.id)
    return encode_qr(serialize_payload(build_payload(user)), box_size=box_size, border=border)


def scan_profile(image_bytes: bytes) -> ScannedProfile:
    """Decode an uploaded image and return the profile it carries.

    Raises ``RequestValidationFailed`` when the image holds no QR code or the
    code is not a profile payload.
    """
    text = decode_qr(image_bytes)
    if text is None:
        logger.info("profile_qr_scan_no_code")
        raise RequestValidationFailed("No QR code found in the image")

    profile = parse_payload(text)
    if profile is None:
        logger.info("profile_qr_scan_invalid_payload")
        raise RequestValidationFailed(
            "Invalid QR code format. Please scan a user profile QR code."
        )
    return profile
