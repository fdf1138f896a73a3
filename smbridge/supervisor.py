"""Connection supervisor - owns the device connection lifecycle.

The supervisor connects to the sensor, decodes frames one at a time and hands
each message to the register forwarder. Any decode, stream or forward error
drops the device connection and a fresh one is opened; this repeats forever.
A failure to connect is fatal and propagates to the caller.

The downstream Modbus client lives in the forwarder and is left untouched
across reconnects. A forward failure still tears down the *device*
connection even though the downstream link is the one that failed.
"""
from __future__ import annotations

import logging
import socket
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .device.protocol import decode
from .errors import BridgeError, DecodeError, ForwardError, StreamError
from .forwarder import RegisterForwarder

logger = logging.getLogger("smbridge.supervisor")

ConnectFn = Callable[..., Any]
Observer = Callable[[Dict[str, Any]], None]


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionSupervisor:
    """Runs the connect / decode / forward loop for one sensor.

    Example:
        client = create_client("127.0.0.1", 502)
        client.connect()
        supervisor = ConnectionSupervisor(
            "192.168.1.87", 10001, RegisterForwarder(client)
        )
        supervisor.run_forever()
    """

    def __init__(
        self,
        device_host: str,
        device_port: int,
        forwarder: RegisterForwarder,
        *,
        connect: ConnectFn = socket.create_connection,
        connect_timeout: Optional[float] = None,
        reconnect_delay: float = 0.0,
        max_reconnect_delay: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.device_host = device_host
        self.device_port = device_port
        self.forwarder = forwarder
        self.connect_timeout = connect_timeout
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max(max_reconnect_delay, reconnect_delay)

        self._connect = connect
        self._sleep = sleep
        self._observers: List[Observer] = []
        self._state = ConnectionState.DISCONNECTED
        self._stats: Dict[str, Any] = {
            "connections": 0,
            "messages_decoded": 0,
            "messages_forwarded": 0,
            "decode_errors": 0,
            "stream_errors": 0,
            "forward_errors": 0,
            "last_error": None,
        }

    # --- Observers ---

    def add_observer(self, callback: Observer) -> None:
        self._observers.append(callback)

    def _notify(self, event: str, **payload: Any) -> None:
        entry = {"event": event, **payload}
        for observer in self._observers:
            try:
                observer(entry)
            except Exception:
                logger.exception("Observer failed for %s event", event)

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug("State %s -> %s", self._state.name, state.name)
            self._state = state
            self._notify("state", state=state)

    # --- Lifecycle ---

    @property
    def address(self) -> Tuple[str, int]:
        return (self.device_host, self.device_port)

    def connect_device(self) -> Any:
        """Open a new device connection.

        Raises:
            StreamError: if the connection cannot be established.
        """
        self._set_state(ConnectionState.CONNECTING)
        logger.info("Connecting to %s:%d ...", self.device_host, self.device_port)
        try:
            if self.connect_timeout is not None:
                conn = self._connect(self.address, self.connect_timeout)
            else:
                conn = self._connect(self.address)
        except OSError as exc:
            self._set_state(ConnectionState.DISCONNECTED)
            raise StreamError(
                f"Unable to connect to {self.device_host}:{self.device_port}: {exc}"
            ) from exc
        # the timeout only bounds the connect; frames may arrive arbitrarily late
        settimeout = getattr(conn, "settimeout", None)
        if callable(settimeout):
            settimeout(None)
        self._stats["connections"] += 1
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Connected")
        return conn

    def serve(self, conn: Any) -> BridgeError:
        """Decode and forward frames until something fails.

        Returns the error that ended the session; it has already been logged.
        """
        while True:
            try:
                msg = decode(conn)
            except DecodeError as exc:
                self._record_error("decode_errors", exc)
                logger.error("Error reading message from device: %s", exc)
                logger.debug("Rejected frame: %s", exc.frame.hex().upper())
                return exc
            except StreamError as exc:
                self._record_error("stream_errors", exc)
                logger.error("Error reading message from device: %s", exc)
                return exc

            self._stats["messages_decoded"] += 1
            logger.info("Received message #%d: %s", msg.msg_num_value, msg)
            self._notify("message", message=msg)

            try:
                self.forwarder.forward(msg)
            except ForwardError as exc:
                self._record_error("forward_errors", exc)
                logger.error("Error sending message to modbus: %s", exc)
                return exc

            self._stats["messages_forwarded"] += 1
            logger.info("Successfully sent message to modbus")
            self._notify("forwarded", message=msg)

    def drop(self, conn: Any) -> None:
        """Abandon the connection without any protocol-level goodbye."""
        close = getattr(conn, "close", None)
        if callable(close):
            try:
                close()
            except OSError as exc:
                logger.debug("Error closing device connection: %s", exc)
        self._set_state(ConnectionState.DISCONNECTED)

    def run_forever(self) -> None:
        """Reconnect and serve indefinitely.

        Only returns by raising: a failed connect attempt raises StreamError.
        """
        delay = self.reconnect_delay
        while True:
            conn = self.connect_device()
            forwarded_before = self._stats["messages_forwarded"]
            try:
                error = self.serve(conn)
            finally:
                self.drop(conn)
            self._notify("error", kind=error.kind, error=error)

            if self._stats["messages_forwarded"] > forwarded_before:
                delay = self.reconnect_delay
            if delay > 0:
                logger.info("Reconnecting in %.1f s", delay)
                self._sleep(delay)
                delay = min(delay * 2, self.max_reconnect_delay)

    def _record_error(self, counter: str, exc: BridgeError) -> None:
        self._stats[counter] += 1
        self._stats["last_error"] = str(exc)

    # --- Properties ---

    @property
    def state(self) -> ConnectionState:
        return self._state

    def get_stats(self) -> Dict[str, Any]:
        return {"state": self._state.value, **self._stats}
