from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

DEFAULT_DEVICE_ADDRESS = "192.168.1.87:10001"
DEFAULT_DEVICE_PORT = 10001
DEFAULT_MODBUS_HOST = "127.0.0.1"
DEFAULT_MODBUS_PORT = 502


def parse_address(text: str, default_port: int) -> Tuple[str, int]:
    """Split ``host:port`` (or ``[v6addr]:port``, or bare host) into a tuple."""
    value = (text or "").strip()
    if not value:
        raise ValueError("Address must not be empty")

    if value.startswith("["):
        host, sep, rest = value[1:].partition("]")
        if not sep:
            raise ValueError(f"Unterminated IPv6 address: {text}")
        port_txt = rest[1:] if rest.startswith(":") else ""
    elif value.count(":") == 1:
        host, port_txt = value.split(":", 1)
    else:
        # bare hostname or unbracketed IPv6 literal
        host, port_txt = value, ""

    if not host:
        raise ValueError(f"Missing host in address: {text}")
    if not port_txt:
        return host, default_port
    try:
        port = int(port_txt)
    except ValueError:
        raise ValueError(f"Invalid port in address: {text}") from None
    if not 0 < port < 65536:
        raise ValueError(f"Port out of range in address: {text}")
    return host, port


@dataclass(slots=True)
class DeviceConfig:
    """Sensor connection parameters."""

    host: str = "192.168.1.87"
    port: int = DEFAULT_DEVICE_PORT
    connect_timeout: Optional[float] = None

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(slots=True)
class ModbusConfig:
    """Downstream Modbus TCP server parameters."""

    host: str = DEFAULT_MODBUS_HOST
    port: int = DEFAULT_MODBUS_PORT
    unit: int = 1
    timeout: float = 3.0


@dataclass(slots=True)
class BridgeConfig:
    """Top-level configuration for the bridge."""

    device: DeviceConfig = field(default_factory=DeviceConfig)
    modbus: ModbusConfig = field(default_factory=ModbusConfig)
    reconnect_delay: float = 0.0
    max_reconnect_delay: float = 0.0

    def validate(self) -> None:
        if not 0 < self.device.port < 65536:
            raise ValueError(f"Invalid device port: {self.device.port}")
        if not 0 < self.modbus.port < 65536:
            raise ValueError(f"Invalid Modbus port: {self.modbus.port}")
        if not 0 <= self.modbus.unit <= 255:
            raise ValueError(f"Invalid Modbus unit id: {self.modbus.unit}")
        if self.reconnect_delay < 0 or self.max_reconnect_delay < 0:
            raise ValueError("Reconnect delays must not be negative")


def _to_device(data: Dict[str, Any]) -> DeviceConfig:
    device = DeviceConfig()
    if "address" in data:
        device.host, device.port = parse_address(str(data["address"]), DEFAULT_DEVICE_PORT)
    if "host" in data:
        device.host = str(data["host"])
    if "port" in data:
        device.port = int(data["port"])
    if data.get("connect_timeout") is not None:
        device.connect_timeout = float(data["connect_timeout"])
    return device


def _to_modbus(data: Dict[str, Any]) -> ModbusConfig:
    return ModbusConfig(
        host=str(data.get("host", DEFAULT_MODBUS_HOST)),
        port=int(data.get("port", DEFAULT_MODBUS_PORT)),
        unit=int(data.get("unit", 1)),
        timeout=float(data.get("timeout", 3.0)),
    )


def load_config(path: str | Path) -> BridgeConfig:
    """Parse a YAML/JSON config file into a structured config object."""

    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(file_path)

    text = file_path.read_text(encoding="utf-8")
    if file_path.suffix.lower() in {".yaml", ".yml"}:
        raw = yaml.safe_load(text)
    else:
        raw = json.loads(text)

    if not isinstance(raw, dict):
        raise ValueError("Configuration must be an object/dict")

    config = BridgeConfig(
        device=_to_device(raw.get("device", {}) or {}),
        modbus=_to_modbus(raw.get("modbus", {}) or {}),
        reconnect_delay=float(raw.get("reconnect_delay", 0.0)),
        max_reconnect_delay=float(raw.get("max_reconnect_delay", 0.0)),
    )
    config.validate()
    return config
