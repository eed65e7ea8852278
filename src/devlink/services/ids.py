"""Helpers for device identifiers.

A device id is 128 bits of randomness rendered as url-safe base64 without
padding (22 characters).
"""
from __future__ import annotations

import base64
import binascii
import secrets
from typing import NewType

__all__ = ["DeviceId", "DEVICE_ID_BYTES", "generate_device_id", "decode_device_id"]

DeviceId = NewType("DeviceId", str)

DEVICE_ID_BYTES = 16


def generate_device_id() -> DeviceId:
    raw = secrets.token_bytes(DEVICE_ID_BYTES)
    return DeviceId(base64.urlsafe_b64encode(raw).decode("ascii").rstrip("="))


def decode_device_id(value: str) -> bytes:
    """Decode ``value`` and ensure it carries exactly 16 bytes.

    Raises:
        ValueError: if the value is not unpadded url-safe base64 or has the
            wrong length.
    """

    if not isinstance(value, str) or not value:
        raise ValueError("device id must be a non-empty string")
    if "=" in value or "+" in value or "/" in value:
        raise ValueError("device id must be url-safe base64 without padding")
    padded = value + "=" * (-len(value) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError(f"device id is not valid base64: {exc}") from exc
    if len(raw) != DEVICE_ID_BYTES:
        raise ValueError(f"device id must decode to {DEVICE_ID_BYTES} bytes, got {len(raw)}")
    return raw
