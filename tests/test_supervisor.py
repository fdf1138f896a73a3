import socket
import threading
import time

import pytest

from smbridge.device.protocol import DeviceMessage
from smbridge.errors import ErrorKind, StreamClosedError, StreamError
from smbridge.forwarder import RegisterForwarder
from smbridge.supervisor import ConnectionState, ConnectionSupervisor

from fakes import ExceptionResponse, FakeClient, FakeConnector

SAMPLE = bytes.fromhex(
    "19 00 D0 CF 5E 82 93 7B 12 01 00 02 54 03 FE F2 5A 02 7A 07 05 3A 84 0B 02 06 BD"
)
BAD_START = b"\xFF" + SAMPLE[1:]


def make_supervisor(payloads, client=None, **kwargs):
    connector = FakeConnector(payloads)
    client = client or FakeClient()
    supervisor = ConnectionSupervisor(
        "sensor.local", 10001, RegisterForwarder(client), connect=connector, **kwargs
    )
    return supervisor, connector, client


def test_connect_failure_is_fatal():
    supervisor, connector, _ = make_supervisor([])
    with pytest.raises(StreamError) as info:
        supervisor.run_forever()
    assert "sensor.local:10001" in str(info.value)
    assert isinstance(info.value.__cause__, ConnectionRefusedError)
    assert supervisor.state is ConnectionState.DISCONNECTED
    assert connector.addresses == [(("sensor.local", 10001), None)]


def test_connect_timeout_is_passed_through():
    supervisor, connector, _ = make_supervisor([], connect_timeout=2.5)
    with pytest.raises(StreamError):
        supervisor.run_forever()
    assert connector.addresses == [(("sensor.local", 10001), 2.5)]


def test_connect_timeout_does_not_limit_reads():
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    port = listener.getsockname()[1]

    def slow_sensor():
        peer, _ = listener.accept()
        with peer:
            time.sleep(0.6)
            peer.sendall(SAMPLE)

    thread = threading.Thread(target=slow_sensor, daemon=True)
    thread.start()
    client = FakeClient()
    supervisor = ConnectionSupervisor(
        "127.0.0.1", port, RegisterForwarder(client), connect_timeout=0.2
    )
    try:
        conn = supervisor.connect_device()
        assert conn.gettimeout() is None
        error = supervisor.serve(conn)
        supervisor.drop(conn)
    finally:
        thread.join(timeout=5)
        listener.close()

    assert isinstance(error, StreamClosedError)
    assert len(client.calls) == 6
    assert supervisor.get_stats()["messages_forwarded"] == 1


def test_serve_forwards_until_end_of_stream():
    supervisor, _, client = make_supervisor([SAMPLE * 3])
    conn = supervisor.connect_device()
    assert supervisor.state is ConnectionState.CONNECTED

    error = supervisor.serve(conn)

    assert error.kind is ErrorKind.STREAM
    assert len(client.calls) == 18
    stats = supervisor.get_stats()
    assert stats["messages_decoded"] == 3
    assert stats["messages_forwarded"] == 3
    assert stats["stream_errors"] == 1


def test_reconnects_after_every_failure():
    payloads = [SAMPLE * 2, BAD_START + SAMPLE, SAMPLE]
    supervisor, connector, client = make_supervisor(payloads)

    with pytest.raises(StreamError):
        supervisor.run_forever()

    assert len(connector.opened) == 3
    assert all(conn.closed for conn in connector.opened)
    # the frame after the bad one is never read from the abandoned connection
    assert connector.opened[1].consumed == len(BAD_START)
    stats = supervisor.get_stats()
    assert stats["connections"] == 3
    assert stats["messages_forwarded"] == 3
    assert stats["decode_errors"] == 1
    assert stats["stream_errors"] == 2
    assert stats["state"] == "disconnected"
    # the Modbus connection survives every device reconnect
    assert client.closed is False


def test_forward_failure_drops_device_connection():
    errors = []
    client = FakeClient(fail_on=4, failure=ExceptionResponse(4))
    supervisor, connector, _ = make_supervisor([SAMPLE * 2, SAMPLE], client=client)
    supervisor.add_observer(lambda e: errors.append(e) if e["event"] == "error" else None)

    with pytest.raises(StreamError):
        supervisor.run_forever()

    # first session stops after the 4th write; its second frame is never read
    assert connector.opened[0].consumed == len(SAMPLE)
    assert connector.opened[0].closed
    assert [e["kind"] for e in errors] == [ErrorKind.FORWARD, ErrorKind.STREAM]
    assert "Slave Device Failure" in str(errors[0]["error"])
    assert supervisor.get_stats()["forward_errors"] == 1
    assert supervisor.get_stats()["connections"] == 2
    # second session forwards its frame completely
    assert len(client.calls) == 4 + 6
    assert client.closed is False


def test_observers_receive_events():
    events = []
    supervisor, _, _ = make_supervisor([SAMPLE])
    supervisor.add_observer(events.append)

    with pytest.raises(StreamError):
        supervisor.run_forever()

    names = [e["event"] for e in events]
    assert names[:4] == ["state", "state", "message", "forwarded"]
    assert isinstance(events[2]["message"], DeviceMessage)
    error_event = next(e for e in events if e["event"] == "error")
    assert error_event["kind"] is ErrorKind.STREAM
    states = [e["state"] for e in events if e["event"] == "state"]
    assert states == [
        ConnectionState.CONNECTING,
        ConnectionState.CONNECTED,
        ConnectionState.DISCONNECTED,
        ConnectionState.CONNECTING,
        ConnectionState.DISCONNECTED,
    ]


def test_failing_observer_does_not_stop_bridge():
    def broken(entry):
        raise RuntimeError("observer bug")

    supervisor, _, client = make_supervisor([SAMPLE * 2])
    supervisor.add_observer(broken)

    with pytest.raises(StreamError):
        supervisor.run_forever()
    assert len(client.calls) == 12


def test_no_delay_by_default():
    sleeps = []
    supervisor, _, _ = make_supervisor([BAD_START, BAD_START], sleep=sleeps.append)
    with pytest.raises(StreamError):
        supervisor.run_forever()
    assert sleeps == []


def test_backoff_doubles_up_to_limit():
    sleeps = []
    supervisor, _, _ = make_supervisor(
        [BAD_START] * 4,
        reconnect_delay=0.5,
        max_reconnect_delay=2.0,
        sleep=sleeps.append,
    )
    with pytest.raises(StreamError):
        supervisor.run_forever()
    assert sleeps == [0.5, 1.0, 2.0, 2.0]


def test_backoff_resets_after_forwarding():
    sleeps = []
    supervisor, _, _ = make_supervisor(
        [BAD_START, BAD_START, SAMPLE, BAD_START],
        reconnect_delay=1.0,
        max_reconnect_delay=8.0,
        sleep=sleeps.append,
    )
    with pytest.raises(StreamError):
        supervisor.run_forever()
    assert sleeps == [1.0, 2.0, 1.0, 2.0]
