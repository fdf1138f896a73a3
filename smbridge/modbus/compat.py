"""Helper utilities for invoking pymodbus client methods across API variants."""
from __future__ import annotations

import inspect
from typing import Any, Optional, Sequence

# Keyword used for the unit id, newest pymodbus first
UNIT_KW_OPTIONS = ('device_id', 'slave', 'unit', 'unit_id')


def _invoke_pymodbus_write(fn, address: int, values: Any, unit: int):
    try:
        params = list(inspect.signature(fn).parameters.keys())
    except (TypeError, ValueError):
        params = []

    for kw in UNIT_KW_OPTIONS:
        if kw in params:
            return fn(address, values, **{kw: unit})
    return fn(address, values)


def call_write_method(client: Any, method_name: str, address: int, values: Any, unit: int):
    fn = getattr(client, method_name, None)
    if fn is None:
        raise AttributeError(f"Client does not support {method_name}")
    return _invoke_pymodbus_write(fn, address, values, unit)


def write_register(client: Any, address: int, value: int, unit: int = 1):
    """Write-single-register (FC06)."""
    return call_write_method(client, 'write_register', address, value, unit)


def write_registers(client: Any, address: int, values: Sequence[int], unit: int = 1):
    """Write-multiple-registers (FC16) starting at ``address``."""
    return call_write_method(client, 'write_registers', address, list(values), unit)


def _import_tcp_client():
    """Locate ModbusTcpClient across pymodbus versions."""
    candidates = ('pymodbus.client', 'pymodbus.client.sync', 'pymodbus.client.tcp')
    for module in candidates:
        try:
            mod = __import__(module, fromlist=['ModbusTcpClient'])
        except ImportError:
            continue
        tcp = getattr(mod, 'ModbusTcpClient', None)
        if tcp is not None:
            return tcp
    return None


def create_client(host: str = '127.0.0.1', port: Optional[int] = 502,
                  timeout: Optional[float] = 3.0, **kwargs) -> Any:
    """Create and return a pymodbus TCP client instance in a version-robust way.

    The client is not connected; call ``connect()`` on it.
    """
    ModbusTcpClient = _import_tcp_client()
    if ModbusTcpClient is None:
        raise ImportError('pymodbus ModbusTcpClient not available')
    params = {'host': host, 'port': port, 'timeout': timeout}
    params.update(kwargs)
    return ModbusTcpClient(**{k: v for k, v in params.items() if v is not None})


def close_client(client: Any) -> None:
    """Close a pymodbus client instance, falling back to its raw socket."""
    if client is None:
        return
    close = getattr(client, 'close', None)
    if callable(close):
        close()
        return
    sock = getattr(client, 'socket', None)
    if sock:
        sock.close()


def is_error_response(rr: Any) -> bool:
    """True for a missing response or a pymodbus error/exception response."""
    if rr is None:
        return True
    is_error = getattr(rr, 'isError', None)
    return bool(callable(is_error) and is_error())


def exception_code_of(rr: Any) -> Optional[int]:
    """Extract the Modbus exception code from an error response, if it has one."""
    if rr is None:
        return None
    for attr in ('exception_code', 'exception_code_value'):
        val = getattr(rr, attr, None)
        if isinstance(val, int):
            return val
    getter = getattr(rr, 'getExceptionCode', None)
    if callable(getter):
        try:
            return int(getter())
        except (TypeError, ValueError):
            return None
    return None


def describe_response(rr: Any) -> str:
    """Return a concise description for a Modbus response/error object."""
    if rr is None:
        return "No response (timeout)"
    parts = [rr.__class__.__name__]
    code = exception_code_of(rr)
    if code is not None:
        parts.append(f"exception_code={code}")
    return " ".join(parts)
