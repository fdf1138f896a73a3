"""Sensor frame layout, validation and decoding.

The device emits fixed 27-byte frames:

    offset  len  content
    0       2    start sequence 19 00
    2       6    device identifier D0 CF 5E 82 93 7B
    8       1    payload length, always 0x12
    9       18   payload (point id / value pairs, 16-bit values little-endian)

Frames are read from a blocking byte stream. A frame that fails header
validation leaves the stream desynchronized; callers drop the connection
instead of scanning for the next start sequence.
"""
from __future__ import annotations

import logging
import struct
from dataclasses import asdict, dataclass
from typing import Any, Dict

from smbridge.errors import (
    InvalidPayloadLength,
    StreamClosedError,
    StreamError,
    UnexpectedDeviceId,
    UnrecognisedStartSequence,
)

logger = logging.getLogger("smbridge.protocol")

FRAME_SIZE = 27
START_SEQUENCE = b"\x19\x00"
DEVICE_ID = bytes([0xD0, 0xCF, 0x5E, 0x82, 0x93, 0x7B])
PAYLOAD_LENGTH = 0x12
HEADER_SIZE = len(START_SEQUENCE) + len(DEVICE_ID) + 1

# batt pid/value, temp pid/value, vib pid, vib x/y/z, msg num pid/value,
# version pid/value, rssi pid/value
PAYLOAD_FORMAT = "<BBBBBHHHBHBBBB"


@dataclass(frozen=True)
class DeviceMessage:
    """Typed contents of one sensor frame.

    Each ``*_pid`` is the destination register address for the matching value.
    ``vib_pid`` addresses the first of three consecutive vibration registers.
    """
    batt_pid: int
    batt_value: int
    temp_pid: int
    temp_value: int
    vib_pid: int
    vib_x: int
    vib_y: int
    vib_z: int
    msg_num_pid: int
    msg_num_value: int
    version_pid: int
    version_value: int
    rssi_pid: int
    rssi_value: int

    def to_bytes(self) -> bytes:
        payload = struct.pack(
            PAYLOAD_FORMAT,
            self.batt_pid,
            self.batt_value,
            self.temp_pid,
            self.temp_value,
            self.vib_pid,
            self.vib_x,
            self.vib_y,
            self.vib_z,
            self.msg_num_pid,
            self.msg_num_value,
            self.version_pid,
            self.version_value,
            self.rssi_pid,
            self.rssi_value,
        )
        return START_SEQUENCE + DEVICE_ID + bytes([PAYLOAD_LENGTH]) + payload

    @classmethod
    def from_bytes(cls, frame: bytes) -> "DeviceMessage":
        """Validate the header of a complete frame and decode its payload.

        Raises:
            UnrecognisedStartSequence, UnexpectedDeviceId, InvalidPayloadLength
            (checked in that order).
            ValueError: if ``frame`` is not exactly FRAME_SIZE bytes.
        """
        if len(frame) != FRAME_SIZE:
            raise ValueError(f"Frame must be {FRAME_SIZE} bytes, got {len(frame)}")
        validate_header(frame)
        return cls(*struct.unpack_from(PAYLOAD_FORMAT, frame, HEADER_SIZE))

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def validate_header(frame: bytes) -> None:
    """Check start sequence, device id and payload length, in that order."""
    if frame[0:2] != START_SEQUENCE:
        raise UnrecognisedStartSequence(frame)
    if frame[2:8] != DEVICE_ID:
        raise UnexpectedDeviceId(frame)
    if frame[8] != PAYLOAD_LENGTH:
        raise InvalidPayloadLength(frame)


def _read_some(stream: Any, size: int) -> bytes:
    # sockets expose recv(); files and BytesIO expose read()
    recv = getattr(stream, "recv", None)
    if callable(recv):
        return recv(size)
    return stream.read(size)


def read_frame(stream: Any) -> bytes:
    """Block until exactly one frame's worth of bytes has been read.

    Reads are accumulated, so a stream delivering the frame in pieces is fine.
    Never consumes more than FRAME_SIZE bytes.
    """
    buffer = bytearray(FRAME_SIZE)
    view = memoryview(buffer)
    received = 0
    while received < FRAME_SIZE:
        try:
            chunk = _read_some(stream, FRAME_SIZE - received)
        except OSError as exc:
            raise StreamError(f"Read from device failed: {exc}") from exc
        if not chunk:
            raise StreamClosedError(received, FRAME_SIZE)
        view[received:received + len(chunk)] = chunk
        received += len(chunk)
    return bytes(buffer)


def decode(stream: Any) -> DeviceMessage:
    """Read one frame from ``stream`` and decode it."""
    frame = read_frame(stream)
    logger.debug("Received frame: %s", frame.hex().upper())
    return DeviceMessage.from_bytes(frame)
