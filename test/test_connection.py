from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock

import pytest
import serial

from conftest import SerialFactory, wait_until
from hardware.connection import (
    ConnectionEventKind,
    ConnectionHandle,
    ConnectionManager,
    LinkState,
)
from hardware.errors import ConnectError, NoDeviceFound, NotConnected, WriteError


def _manager(factory, **overrides):
    options = dict(
        serial_factory=factory,
        port_detector=lambda: None,
        settle_delay=0.0,
        reconnect_delay=0.05,
        read_timeout=0.01,
    )
    options.update(overrides)
    return ConnectionManager(**options)


def _kinds(events):
    return [event.kind for event in events]


@pytest.fixture
def manager(serial_factory):
    mgr = _manager(serial_factory)
    yield mgr
    mgr.disconnect()


def _reconnect_timers():
    return [t for t in threading.enumerate() if t.name == "SilarReconnect" and t.is_alive()]


def test_connect_opens_8n1_and_delivers_lines(manager, serial_factory):
    lines = []
    events = []
    manager.set_line_handler(lines.append)
    manager.add_listener(events.append)

    handle = manager.connect("/dev/ttyFAKE0", 9600)

    assert handle == ConnectionHandle("/dev/ttyFAKE0", 9600, True)
    assert manager.state is LinkState.CONNECTED
    assert manager.handle_info() == handle
    call = serial_factory.calls[0]
    assert call["port"] == "/dev/ttyFAKE0"
    assert call["baudrate"] == 9600
    assert call["bytesize"] == serial.EIGHTBITS
    assert call["parity"] == serial.PARITY_NONE
    assert call["stopbits"] == serial.STOPBITS_ONE

    serial_factory.last.feed("Modo Manual\r\n\r\nY: ")
    serial_factory.last.feed("12\r\n")
    assert wait_until(lambda: lines == ["Modo Manual", "Y: 12"])
    assert _kinds(events) == [ConnectionEventKind.CONNECTED]


def test_settle_delay_runs_before_reading(serial_factory):
    sleep = MagicMock()
    mgr = _manager(serial_factory, settle_delay=2.0, sleep=sleep)
    try:
        mgr.connect("COM3")
    finally:
        mgr.disconnect()
    sleep.assert_called_once_with(2.0)


def test_connect_auto_detects_port(serial_factory):
    mgr = _manager(serial_factory, port_detector=lambda: "COM9")
    try:
        handle = mgr.connect()
    finally:
        mgr.disconnect()
    assert handle.port == "COM9"
    assert serial_factory.calls[0]["port"] == "COM9"


def test_connect_without_any_port_raises(manager, serial_factory):
    events = []
    manager.add_listener(events.append)
    with pytest.raises(NoDeviceFound) as excinfo:
        manager.connect()
    assert excinfo.value.code == "E001"
    assert serial_factory.calls == []
    assert _kinds(events) == [ConnectionEventKind.ERROR]
    assert manager.state is LinkState.DISCONNECTED


def test_connect_failure_is_wrapped():
    factory = SerialFactory(fail=serial.SerialException("could not open port COM4"))
    mgr = _manager(factory)
    with pytest.raises(ConnectError) as excinfo:
        mgr.connect("COM4")
    assert "COM4" in str(excinfo.value)
    assert not mgr.is_connected()
    assert not mgr.reconnect_pending


def test_write_line_appends_terminator(manager, serial_factory):
    manager.connect("COM3")
    manager.write_line("STATUS")
    assert serial_factory.last.writes == [b"STATUS\n"]


def test_write_without_link_raises(manager):
    with pytest.raises(NotConnected):
        manager.write_line("STATUS")


def test_disconnect_is_idempotent(manager):
    events = []
    manager.add_listener(events.append)
    manager.disconnect()
    manager.connect("COM3")
    manager.disconnect()
    manager.disconnect()
    assert _kinds(events) == [ConnectionEventKind.CONNECTED, ConnectionEventKind.DISCONNECTED]
    assert manager.state is LinkState.DISCONNECTED
    assert manager.handle_info() is None


def test_connected_hook_runs_and_failures_are_contained(manager):
    hook = MagicMock(side_effect=RuntimeError("status failed"))
    manager.set_connected_hook(hook)
    manager.connect("COM3")
    hook.assert_called_once_with()
    assert manager.is_connected()


def test_lost_link_reconnects_automatically(manager, serial_factory):
    events = []
    hook = MagicMock()
    manager.add_listener(events.append)
    manager.set_connected_hook(hook)
    manager.connect("COM3")

    serial_factory.last.fail_reads()

    assert wait_until(lambda: len(serial_factory.opened) == 2 and manager.is_connected())
    assert serial_factory.calls[1]["port"] == "COM3"
    kinds = _kinds(events)
    assert kinds[:4] == [
        ConnectionEventKind.CONNECTED,
        ConnectionEventKind.DISCONNECTED,
        ConnectionEventKind.RECONNECTING,
        ConnectionEventKind.CONNECTED,
    ]
    assert wait_until(lambda: hook.call_count == 2)


def test_reconnect_retries_until_port_returns(serial_factory):
    mgr = _manager(serial_factory)
    events = []
    mgr.add_listener(events.append)
    try:
        mgr.connect("COM3")
        serial_factory.fail = serial.SerialException("port gone")
        serial_factory.last.fail_reads()

        assert wait_until(lambda: len(serial_factory.calls) >= 3)
        assert not mgr.is_connected()
        assert ConnectionEventKind.ERROR in _kinds(events)

        serial_factory.fail = None
        assert wait_until(mgr.is_connected)
    finally:
        mgr.disconnect()


def test_failed_manual_connect_keeps_recovering_lost_link(serial_factory):
    mgr = _manager(serial_factory, reconnect_delay=0.1)
    try:
        mgr.connect("COM3")
        serial_factory.fail = serial.SerialException("port gone")
        serial_factory.last.fail_reads()
        assert wait_until(lambda: mgr.reconnect_pending)

        with pytest.raises(ConnectError):
            mgr.connect("COM3")
        assert wait_until(lambda: mgr.reconnect_pending)

        serial_factory.fail = None
        assert wait_until(mgr.is_connected)
        assert mgr.port == "COM3"
    finally:
        mgr.disconnect()


def test_first_connect_failure_does_not_retry():
    factory = SerialFactory(fail=serial.SerialException("no such port"))
    mgr = _manager(factory, reconnect_delay=0.05)
    with pytest.raises(ConnectError):
        mgr.connect("COM3")
    time.sleep(0.15)
    assert not mgr.reconnect_pending
    assert len(factory.calls) == 1


def test_double_failure_schedules_single_reconnect(serial_factory):
    mgr = _manager(serial_factory, reconnect_delay=0.3)
    events = []
    mgr.add_listener(events.append)
    try:
        mgr.connect("COM3")
        handle = serial_factory.last
        handle.write_error = OSError("device disconnected")
        handle.fail_reads()
        assert wait_until(lambda: ConnectionEventKind.DISCONNECTED in _kinds(events))

        with pytest.raises(NotConnected):
            mgr.write_line("STATUS")

        assert mgr.reconnect_pending
        assert wait_until(lambda: len(_reconnect_timers()) == 1)
        assert _kinds(events).count(ConnectionEventKind.DISCONNECTED) == 1

        assert wait_until(mgr.is_connected)
        time.sleep(0.1)
        assert len(serial_factory.opened) == 2
    finally:
        mgr.disconnect()


def test_write_failure_drops_link_and_schedules_reconnect(serial_factory):
    mgr = _manager(serial_factory, reconnect_delay=5.0)
    events = []
    mgr.add_listener(events.append)
    try:
        mgr.connect("COM3")
        serial_factory.last.write_error = OSError("write failed")
        with pytest.raises(WriteError):
            mgr.write_line("Y100")
        assert not mgr.is_connected()
        assert mgr.reconnect_pending
        assert _kinds(events)[-1] is ConnectionEventKind.DISCONNECTED
    finally:
        mgr.disconnect()
    assert not mgr.reconnect_pending


def test_write_timeout_keeps_link_open(manager, serial_factory):
    manager.connect("COM3")
    serial_factory.last.write_error = serial.SerialTimeoutException("Write timeout")
    with pytest.raises(WriteError):
        manager.write_line("STATUS")
    assert manager.is_connected()
    assert not manager.reconnect_pending


def test_disconnect_cancels_pending_reconnect(serial_factory):
    mgr = _manager(serial_factory, reconnect_delay=0.2)
    mgr.connect("COM3")
    serial_factory.last.fail_reads()
    assert wait_until(lambda: mgr.reconnect_pending)

    mgr.disconnect()
    assert not mgr.reconnect_pending
    time.sleep(0.3)
    assert len(serial_factory.opened) == 1
    assert not mgr.is_connected()


def test_line_handler_errors_do_not_stop_reader(manager, serial_factory):
    seen = []

    def _handler(line):
        seen.append(line)
        if line == "bad":
            raise ValueError("handler bug")

    manager.set_line_handler(_handler)
    manager.connect("COM3")
    serial_factory.last.feed("bad\ngood\n")
    assert wait_until(lambda: seen == ["bad", "good"])
    assert manager.is_connected()
