"""Sensor device side of the bridge: frame layout and decoding."""

from .protocol import (
    DEVICE_ID,
    FRAME_SIZE,
    PAYLOAD_LENGTH,
    START_SEQUENCE,
    DeviceMessage,
    decode,
    read_frame,
    validate_header,
)

__all__ = [
    "DEVICE_ID",
    "FRAME_SIZE",
    "PAYLOAD_LENGTH",
    "START_SEQUENCE",
    "DeviceMessage",
    "decode",
    "read_frame",
    "validate_header",
]
