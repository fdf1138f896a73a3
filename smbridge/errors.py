"""Error taxonomy for the sensor bridge.

Every failure the bridge can recover from is a ``BridgeError`` tagged with an
``ErrorKind`` so the supervisor can treat them uniformly while logs and stats
can still tell them apart. Also holds the standard Modbus exception code
mapping used to describe downstream write failures.
"""
from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .forwarder import RegisterWrite


class ErrorKind(Enum):
    """Closed set of failure categories."""
    STREAM = "stream"
    UNRECOGNISED_START_SEQUENCE = "unrecognised_start_sequence"
    UNEXPECTED_DEVICE_ID = "unexpected_device_id"
    INVALID_PAYLOAD_LENGTH = "invalid_payload_length"
    FORWARD = "forward"


# Standard Modbus exception codes (Modbus Application Protocol spec)
MODBUS_EXCEPTION_CODES = {
    1: "Illegal Function",
    2: "Illegal Data Address",
    3: "Illegal Data Value",
    4: "Slave Device Failure",
    5: "Acknowledge",
    6: "Slave Device Busy",
    8: "Memory Parity Error",
    10: "Gateway Path Unavailable",
    11: "Gateway Target Device Failed to Respond",
}


def get_modbus_exception_text(code: Optional[int]) -> Optional[str]:
    """Return a human-readable description for a Modbus exception code.

    If `code` is None or unknown, returns None.
    """
    if code is None:
        return None
    try:
        return MODBUS_EXCEPTION_CODES.get(int(code))
    except (TypeError, ValueError):
        return None


class BridgeError(Exception):
    """Base class for every error the supervisor recovers from."""
    kind: ErrorKind = ErrorKind.STREAM


class StreamError(BridgeError):
    """Device byte stream failed (connect, read or closed)."""
    kind = ErrorKind.STREAM


class StreamClosedError(StreamError):
    """The device closed the connection (a read returned no data)."""

    def __init__(self, received: int = 0, expected: int = 0) -> None:
        self.received = received
        self.expected = expected
        super().__init__(
            f"Connection closed by device after {received} of {expected} bytes"
        )


class DecodeError(BridgeError):
    """A frame failed header validation; the stream is desynchronized."""
    message = "Invalid frame"

    def __init__(self, frame: bytes = b"") -> None:
        self.frame = bytes(frame)
        super().__init__(self.message)


class UnrecognisedStartSequence(DecodeError):
    kind = ErrorKind.UNRECOGNISED_START_SEQUENCE
    message = "Unrecognised start sequence"


class UnexpectedDeviceId(DecodeError):
    kind = ErrorKind.UNEXPECTED_DEVICE_ID
    message = "Unexpected device identifier"


class InvalidPayloadLength(DecodeError):
    kind = ErrorKind.INVALID_PAYLOAD_LENGTH
    message = "Length of payload must be 0x12 (18 bytes)"


class ForwardError(BridgeError):
    """A register write to the downstream Modbus server failed."""
    kind = ErrorKind.FORWARD

    def __init__(
        self,
        write: "RegisterWrite",
        reason: str,
        exception_code: Optional[int] = None,
    ) -> None:
        self.write = write
        self.reason = reason
        self.exception_code = exception_code
        text = get_modbus_exception_text(exception_code)
        detail = f"{reason} ({text})" if text else reason
        super().__init__(
            f"Failed to write {write.label} to register {write.address}: {detail}"
        )

