"""Downstream Modbus register client helpers (pymodbus)."""

from .compat import (
    close_client,
    create_client,
    describe_response,
    is_error_response,
    write_register,
    write_registers,
)

__all__ = [
    "close_client",
    "create_client",
    "describe_response",
    "is_error_response",
    "write_register",
    "write_registers",
]
