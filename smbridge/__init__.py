"""SMBridge - forwards sensor frames received over TCP to a Modbus server.

The device side decodes the sensor's fixed 27-byte frames, the forwarder
translates each message into register writes and the supervisor keeps the
device connection alive across failures.
"""

from .config import BridgeConfig, load_config
from .device.protocol import DeviceMessage, decode
from .errors import (
    BridgeError,
    DecodeError,
    ErrorKind,
    ForwardError,
    InvalidPayloadLength,
    StreamClosedError,
    StreamError,
    UnexpectedDeviceId,
    UnrecognisedStartSequence,
)
from .forwarder import RegisterForwarder, RegisterWrite, forward, plan_writes
from .supervisor import ConnectionState, ConnectionSupervisor

__version__ = "0.1.0"

__all__ = [
    "BridgeConfig",
    "BridgeError",
    "ConnectionState",
    "ConnectionSupervisor",
    "DecodeError",
    "DeviceMessage",
    "ErrorKind",
    "ForwardError",
    "InvalidPayloadLength",
    "RegisterForwarder",
    "RegisterWrite",
    "StreamClosedError",
    "StreamError",
    "UnexpectedDeviceId",
    "UnrecognisedStartSequence",
    "decode",
    "forward",
    "load_config",
    "plan_writes",
]
