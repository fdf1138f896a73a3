"""Register forwarder - turns a decoded sensor message into Modbus writes.

Every point id in the message is used as the destination register address and
the matching value as the register content. Writes are issued in a fixed order
and the first failure aborts the rest; nothing is retried or rolled back.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Tuple

from pymodbus.exceptions import ModbusException

from .device.protocol import DeviceMessage
from .errors import ForwardError
from .modbus.compat import (
    describe_response,
    exception_code_of,
    is_error_response,
    write_register,
    write_registers,
)

logger = logging.getLogger("smbridge.forwarder")


@dataclass(frozen=True)
class RegisterWrite:
    """One register write operation against the downstream server."""
    label: str
    address: int
    values: Tuple[int, ...]

    @property
    def is_block(self) -> bool:
        return len(self.values) > 1


def plan_writes(msg: DeviceMessage) -> List[RegisterWrite]:
    """Return the ordered register writes for ``msg``."""
    return [
        RegisterWrite("battery", msg.batt_pid, (msg.batt_value,)),
        RegisterWrite("temperature", msg.temp_pid, (msg.temp_value,)),
        RegisterWrite("vibration", msg.vib_pid, (msg.vib_x, msg.vib_y, msg.vib_z)),
        RegisterWrite("message number", msg.msg_num_pid, (msg.msg_num_value,)),
        RegisterWrite("version", msg.version_pid, (msg.version_value,)),
        RegisterWrite("rssi", msg.rssi_pid, (msg.rssi_value,)),
    ]


class RegisterForwarder:
    """Forwards decoded messages to a pymodbus client.

    The client is owned by the caller and stays open across device
    reconnects; the forwarder never connects or closes it.
    """

    def __init__(self, client: Any, unit: int = 1):
        self.client = client
        self.unit = unit
        self.messages_forwarded = 0

    def forward(self, msg: DeviceMessage) -> None:
        """Issue all writes for ``msg``.

        Raises:
            ForwardError: on the first failed write; later writes are skipped.
        """
        for write in plan_writes(msg):
            self._execute(write)
        self.messages_forwarded += 1
        logger.debug("Forwarded message #%d", msg.msg_num_value)

    def _execute(self, write: RegisterWrite) -> None:
        logger.debug(
            "Writing %s to register %d: %s", write.label, write.address, list(write.values)
        )
        try:
            if write.is_block:
                rr = write_registers(self.client, write.address, write.values, self.unit)
            else:
                rr = write_register(self.client, write.address, write.values[0], self.unit)
        except (ModbusException, OSError) as exc:
            raise ForwardError(write, str(exc)) from exc

        if is_error_response(rr):
            raise ForwardError(write, describe_response(rr), exception_code_of(rr))


def forward(msg: DeviceMessage, client: Any, unit: int = 1) -> None:
    """Forward one message with a throwaway RegisterForwarder."""
    RegisterForwarder(client, unit=unit).forward(msg)
