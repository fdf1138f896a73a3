#!/usr/bin/env python3
"""SMBridge CLI - forward sensor frames to a Modbus TCP server.

Connects to the sensor's TCP stream, decodes each 27-byte frame and writes the
readings to registers on a Modbus server. Device failures are logged and the
connection is re-established indefinitely.

Examples:
    # Use the default sensor address (192.168.1.87:10001) and local Modbus server
    python bridge_cli.py start

    # Explicit sensor address and Modbus server
    python bridge_cli.py start 10.0.0.5:10001 --modbus-host 10.0.0.10 --unit 3

    # Inspect a captured frame
    python bridge_cli.py decode "19 00 D0 CF 5E 82 93 7B 12 01 00 02 54 03 FE F2 5A 02 7A 07 05 3A 84 0B 02 06 BD"
"""
from __future__ import annotations

import logging
import struct
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

# Ensure the smbridge package is importable
if __name__ == "__main__":
    import os
    sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from smbridge.config import (
    DEFAULT_DEVICE_ADDRESS,
    DEFAULT_DEVICE_PORT,
    BridgeConfig,
    load_config,
    parse_address,
)
from smbridge.device.protocol import FRAME_SIZE, DeviceMessage
from smbridge.errors import DecodeError, StreamError
from smbridge.forwarder import RegisterForwarder, plan_writes
from smbridge.modbus.compat import close_client, create_client
from smbridge.supervisor import ConnectionSupervisor

app = typer.Typer(
    name="smbridge",
    help="SMBridge - forward sensor frames to a Modbus TCP server",
    add_completion=False,
)
console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )


def build_config(
    device_address: Optional[str],
    config_path: Optional[str],
    modbus_host: Optional[str],
    modbus_port: Optional[int],
    unit: Optional[int],
    timeout: Optional[float],
    reconnect_delay: Optional[float],
    max_reconnect_delay: Optional[float],
) -> BridgeConfig:
    """Load the config file (if any) and apply command-line overrides."""
    config = load_config(config_path) if config_path else BridgeConfig()

    if device_address is not None:
        config.device.host, config.device.port = parse_address(
            device_address, DEFAULT_DEVICE_PORT
        )
    elif not config_path:
        config.device.host, config.device.port = parse_address(
            DEFAULT_DEVICE_ADDRESS, DEFAULT_DEVICE_PORT
        )

    if modbus_host is not None:
        config.modbus.host = modbus_host
    if modbus_port is not None:
        config.modbus.port = modbus_port
    if unit is not None:
        config.modbus.unit = unit
    if timeout is not None:
        config.modbus.timeout = timeout
    if reconnect_delay is not None:
        config.reconnect_delay = reconnect_delay
    if max_reconnect_delay is not None:
        config.max_reconnect_delay = max_reconnect_delay

    config.validate()
    return config


def _parse_hex(text: str) -> bytes:
    cleaned = "".join(ch for ch in text if ch not in " \t\n:,-")
    if cleaned.lower().startswith("0x"):
        cleaned = cleaned[2:]
    return bytes.fromhex(cleaned)


def _message_table(msg: DeviceMessage) -> Table:
    table = Table(title="Decoded Message", show_header=True)
    table.add_column("Field", style="cyan")
    table.add_column("Register", style="yellow", justify="right")
    table.add_column("Value(s)", style="green")
    for write in plan_writes(msg):
        if write.is_block:
            addresses = f"{write.address}-{write.address + len(write.values) - 1}"
        else:
            addresses = str(write.address)
        table.add_row(write.label, addresses, ", ".join(str(v) for v in write.values))
    return table


@app.command()
def start(
    device_address: Optional[str] = typer.Argument(
        None,
        help=f"Sensor address as host:port (default: {DEFAULT_DEVICE_ADDRESS})",
    ),
    modbus_host: Optional[str] = typer.Option(
        None,
        "--modbus-host",
        "-mh",
        help="Host of the Modbus TCP server (default: 127.0.0.1)",
    ),
    modbus_port: Optional[int] = typer.Option(
        None,
        "--modbus-port",
        "-mp",
        help="Port of the Modbus TCP server (default: 502)",
    ),
    unit: Optional[int] = typer.Option(
        None,
        "--unit",
        "-u",
        help="Modbus unit id for register writes (default: 1)",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        "-t",
        help="Modbus response timeout in seconds (default: 3.0)",
    ),
    reconnect_delay: Optional[float] = typer.Option(
        None,
        "--reconnect-delay",
        help="Initial delay in seconds before reconnecting to the sensor (default: 0)",
    ),
    max_reconnect_delay: Optional[float] = typer.Option(
        None,
        "--max-reconnect-delay",
        help="Upper bound for the doubling reconnect delay (default: 0)",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="JSON or YAML configuration file",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging",
    ),
) -> None:
    """Start forwarding sensor frames to the Modbus server.

    Runs until interrupted. Decode or write failures drop the sensor
    connection and reconnect; failing to connect to the sensor exits.
    """
    setup_logging(verbose)

    try:
        config = build_config(
            device_address,
            config_path,
            modbus_host,
            modbus_port,
            unit,
            timeout,
            reconnect_delay,
            max_reconnect_delay,
        )
    except (OSError, ValueError) as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)

    table = Table(title="Bridge Configuration", show_header=True)
    table.add_column("Side", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Connection", style="yellow")
    table.add_row("Sensor (Upstream)", "TCP stream", config.device.address)
    table.add_row(
        "Modbus (Downstream)",
        f"TCP unit {config.modbus.unit}",
        f"{config.modbus.host}:{config.modbus.port}",
    )
    console.print(table)
    console.print()

    client = create_client(
        host=config.modbus.host,
        port=config.modbus.port,
        timeout=config.modbus.timeout,
    )
    if not client.connect():
        console.print(
            f"[red]Error: Unable to connect to Modbus server "
            f"{config.modbus.host}:{config.modbus.port}[/red]"
        )
        raise typer.Exit(1)

    supervisor = ConnectionSupervisor(
        config.device.host,
        config.device.port,
        RegisterForwarder(client, unit=config.modbus.unit),
        connect_timeout=config.device.connect_timeout,
        reconnect_delay=config.reconnect_delay,
        max_reconnect_delay=config.max_reconnect_delay,
    )

    console.print(Panel.fit("[bold green]Starting bridge...[/bold green]"))
    try:
        supervisor.run_forever()
    except StreamError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
    finally:
        close_client(client)
        stats = supervisor.get_stats()
        console.print(
            f"[dim]Stats: {stats['messages_forwarded']} messages forwarded, "
            f"{stats['connections']} connections[/dim]"
        )


@app.command()
def decode(
    frame_hex: str = typer.Argument(..., help="Frame bytes as hex (spaces allowed)"),
) -> None:
    """Decode one captured frame and show the register writes it produces."""
    try:
        frame = _parse_hex(frame_hex)
    except ValueError as exc:
        console.print(f"[red]Invalid hex: {exc}[/red]")
        raise typer.Exit(1)

    if len(frame) != FRAME_SIZE:
        console.print(f"[red]Frame must be {FRAME_SIZE} bytes, got {len(frame)}[/red]")
        raise typer.Exit(1)

    try:
        msg = DeviceMessage.from_bytes(frame)
    except DecodeError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(1)

    console.print(_message_table(msg))


@app.command()
def encode(
    batt_pid: int = typer.Option(1, help="Battery register"),
    batt_value: int = typer.Option(0, help="Battery value (0-255)"),
    temp_pid: int = typer.Option(2, help="Temperature register"),
    temp_value: int = typer.Option(84, help="Temperature value (0-255)"),
    vib_pid: int = typer.Option(3, help="First vibration register"),
    vib_x: int = typer.Option(0, help="Vibration X (0-65535)"),
    vib_y: int = typer.Option(0, help="Vibration Y (0-65535)"),
    vib_z: int = typer.Option(0, help="Vibration Z (0-65535)"),
    msg_num_pid: int = typer.Option(5, help="Message number register"),
    msg_num_value: int = typer.Option(0, help="Message number (0-65535)"),
    version_pid: int = typer.Option(11, help="Firmware version register"),
    version_value: int = typer.Option(2, help="Firmware version (0-255)"),
    rssi_pid: int = typer.Option(6, help="RSSI register"),
    rssi_value: int = typer.Option(0, help="RSSI value (0-255)"),
) -> None:
    """Build a valid frame from field values and print it as hex."""
    msg = DeviceMessage(
        batt_pid=batt_pid,
        batt_value=batt_value,
        temp_pid=temp_pid,
        temp_value=temp_value,
        vib_pid=vib_pid,
        vib_x=vib_x,
        vib_y=vib_y,
        vib_z=vib_z,
        msg_num_pid=msg_num_pid,
        msg_num_value=msg_num_value,
        version_pid=version_pid,
        version_value=version_value,
        rssi_pid=rssi_pid,
        rssi_value=rssi_value,
    )
    try:
        frame = msg.to_bytes()
    except struct.error as exc:
        console.print(f"[red]Cannot encode frame: {exc}[/red]")
        raise typer.Exit(1)
    console.print(frame.hex(" ").upper(), soft_wrap=True)


@app.command()
def info() -> None:
    """Display the frame layout and register mapping."""
    console.print(
        Panel.fit(
            "[bold]SMBridge - Sensor to Modbus Bridge[/bold]\n\n"
            "Reads 27-byte frames from the sensor over TCP and writes the\n"
            "readings to a Modbus TCP server.\n\n"
            "[bold]Frame layout:[/bold]\n"
            "  0-1    start sequence 19 00\n"
            "  2-7    device id D0 CF 5E 82 93 7B\n"
            "  8      payload length 0x12\n"
            "  9-12   battery pid/value, temperature pid/value\n"
            "  13-19  vibration pid, X/Y/Z (uint16 little-endian)\n"
            "  20-22  message number pid/value (uint16 little-endian)\n"
            "  23-26  version pid/value, RSSI pid/value\n\n"
            "[bold]Register writes (in order):[/bold]\n"
            "  • FC06 battery, FC06 temperature\n"
            "  • FC16 vibration X/Y/Z starting at the vibration pid\n"
            "  • FC06 message number, FC06 version, FC06 RSSI\n\n"
            "[bold]Failure handling:[/bold]\n"
            "  Any decode or write error drops the sensor connection and\n"
            "  reconnects. The Modbus connection is kept open.\n",
            title="About",
        )
    )


if __name__ == "__main__":
    app()
