"""Serial link ownership: open/close, line reading, reconnection."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import serial

from config.controller import DEFAULT_BAUD_RATE

from .errors import ConnectError, DeviceError, NoDeviceFound, NotConnected, WriteError
from .listeners import ListenerSet, Unsubscribe
from .port_discovery import detect_port
from .protocol import ENCODING, LINE_TERMINATOR, LineFramer

LOGGER = logging.getLogger("silar.connection")

SerialFactory = Callable[..., Any]
LineHandler = Callable[[str], None]


class LinkState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


class ConnectionEventKind(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionEvent:
    kind: ConnectionEventKind
    port: Optional[str]
    detail: Optional[str] = None


@dataclass(frozen=True)
class ConnectionHandle:
    port: str
    baud_rate: int
    is_open: bool


class ConnectionManager:
    """Owns the one serial handle shared by the reader thread and writers.

    Lost links (read/write failure while not closing on purpose) are retried
    every ``reconnect_delay`` seconds until one attempt succeeds or
    :meth:`disconnect` is called. Only one attempt is ever scheduled or
    running at a time.
    """

    def __init__(
        self,
        *,
        serial_factory: Optional[SerialFactory] = None,
        port_detector: Callable[[], Optional[str]] = detect_port,
        settle_delay: float = 2.0,
        reconnect_delay: float = 10.0,
        read_timeout: float = 0.05,
        write_timeout: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._logger = logger or LOGGER
        self._serial_factory: SerialFactory = serial_factory or serial.Serial
        self._port_detector = port_detector
        self._settle_delay = max(0.0, settle_delay)
        self._reconnect_delay = reconnect_delay
        self._read_timeout = read_timeout
        self._write_timeout = write_timeout
        self._sleep = sleep

        self._lock = threading.RLock()
        self._connect_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._attempt_lock = threading.Lock()

        self._state = LinkState.DISCONNECTED
        self._handle: Optional[Any] = None
        self._reader_thread: Optional[threading.Thread] = None
        self._reader_stop = threading.Event()
        self._port: Optional[str] = None
        self._baud_rate = DEFAULT_BAUD_RATE
        self._reconnect_enabled = False
        self._reconnect_timer: Optional[threading.Timer] = None

        self._line_handler: Optional[LineHandler] = None
        self._connected_hook: Optional[Callable[[], None]] = None
        self._listeners: ListenerSet[ConnectionEvent] = ListenerSet("connection", self._logger)

    # ------------------------------------------------------------------ #
    # Properties                                                         #
    # ------------------------------------------------------------------ #
    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def port(self) -> Optional[str]:
        return self._port

    @property
    def baud_rate(self) -> int:
        return self._baud_rate

    @property
    def reconnect_pending(self) -> bool:
        with self._lock:
            return self._reconnect_timer is not None

    def is_connected(self) -> bool:
        return self._state is LinkState.CONNECTED

    def handle_info(self) -> Optional[ConnectionHandle]:
        with self._lock:
            if self._handle is None or self._port is None:
                return None
            return ConnectionHandle(self._port, self._baud_rate, self._state is LinkState.CONNECTED)

    # ------------------------------------------------------------------ #
    # Wiring                                                             #
    # ------------------------------------------------------------------ #
    def set_line_handler(self, handler: Optional[LineHandler]) -> None:
        """Receive every framed line, on the reader thread, in arrival order."""

        self._line_handler = handler

    def set_connected_hook(self, hook: Optional[Callable[[], None]]) -> None:
        """Run ``hook`` after each successful open; failures are only logged."""

        self._connected_hook = hook

    def add_listener(self, callback: Callable[[ConnectionEvent], None]) -> Unsubscribe:
        return self._listeners.add(callback)

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #
    def connect(self, port: Optional[str] = None, baud_rate: int = DEFAULT_BAUD_RATE) -> ConnectionHandle:
        """Open ``port`` (auto-detected when omitted) and start reading."""

        self._cancel_reconnect()
        try:
            handle = self._open_link(port, baud_rate)
        except DeviceError as exc:
            self._listeners.notify(ConnectionEvent(ConnectionEventKind.ERROR, port or self._port, str(exc)))
            # A link lost earlier keeps being retried until disconnect().
            self._schedule_reconnect()
            raise
        self._run_connected_hook()
        return handle

    def disconnect(self) -> None:
        """Close the link and cancel any scheduled reconnection. Idempotent."""

        with self._lock:
            self._reconnect_enabled = False
        self._cancel_reconnect()
        with self._connect_lock:
            was_open = self._close_link()
        if was_open:
            self._logger.info("Disconnected from %s", self._port)
            self._listeners.notify(ConnectionEvent(ConnectionEventKind.DISCONNECTED, self._port))

    def write_line(self, text: str) -> None:
        """Write one command line; physical writes never interleave."""

        payload = f"{text}{LINE_TERMINATOR}".encode(ENCODING)
        with self._write_lock:
            handle = self._handle
            if handle is None or self._state is not LinkState.CONNECTED:
                raise NotConnected("Controller is not connected.")
            try:
                handle.write(payload)
                handle.flush()
            except serial.SerialTimeoutException as exc:
                raise WriteError(f"Timed out sending {text!r}: {exc}") from exc
            except Exception as exc:
                failure = exc
            else:
                self._logger.debug("-> %s", text)
                return
        self._handle_link_lost(handle, failure)
        raise WriteError(f"Failed to send {text!r}: {failure}") from failure

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #
    def _open_link(
        self,
        port: Optional[str],
        baud_rate: int,
        *,
        reconnecting: bool = False,
    ) -> ConnectionHandle:
        with self._connect_lock:
            if reconnecting and not self._reconnect_enabled:
                raise NotConnected("Reconnection cancelled.")
            if self._handle is not None:
                self._close_link()

            if not port:
                port = self._port_detector()
            if not port:
                raise NoDeviceFound("No serial port available for the controller.")

            with self._lock:
                self._state = LinkState.CONNECTING
                self._port = port
                self._baud_rate = baud_rate
            self._logger.info("Connecting to %s at %s baud", port, baud_rate)

            try:
                handle = self._serial_factory(
                    port=port,
                    baudrate=baud_rate,
                    bytesize=serial.EIGHTBITS,
                    parity=serial.PARITY_NONE,
                    stopbits=serial.STOPBITS_ONE,
                    timeout=self._read_timeout,
                    write_timeout=self._write_timeout,
                )
            except Exception as exc:
                with self._lock:
                    self._state = LinkState.DISCONNECTED
                raise ConnectError(f"Could not open port {port}: {exc}") from exc

            # Opening the port toggles DTR, which reboots the board.
            if self._settle_delay:
                self._sleep(self._settle_delay)
            try:
                handle.reset_input_buffer()
            except Exception:
                self._logger.debug("Failed to reset input buffer", exc_info=True)

            stop = threading.Event()
            reader = threading.Thread(
                target=self._reader_loop,
                args=(handle, stop),
                name="SilarSerialReader",
                daemon=True,
            )
            with self._lock:
                self._handle = handle
                self._reader_stop = stop
                self._reader_thread = reader
                self._state = LinkState.CONNECTED
                self._reconnect_enabled = True
            reader.start()

        self._logger.info("Connected to %s (baud=%s)", port, baud_rate)
        self._listeners.notify(ConnectionEvent(ConnectionEventKind.CONNECTED, port))
        return ConnectionHandle(port, baud_rate, True)

    def _close_link(self) -> bool:
        """Tear down the current handle; caller holds ``_connect_lock``."""

        with self._lock:
            handle = self._handle
            reader = self._reader_thread
            stop = self._reader_stop
            if handle is None:
                self._state = LinkState.DISCONNECTED
                return False
            self._state = LinkState.CLOSING
            self._handle = None
            self._reader_thread = None
        stop.set()
        try:
            handle.close()
        except Exception:
            self._logger.exception("Error while closing serial handle")
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=1.0)
        with self._lock:
            self._state = LinkState.DISCONNECTED
        return True

    def _run_connected_hook(self) -> None:
        hook = self._connected_hook
        if hook is None:
            return
        try:
            hook()
        except Exception as exc:
            self._logger.warning("Post-connect hook failed: %s", exc)

    def _reader_loop(self, handle: Any, stop: threading.Event) -> None:
        framer = LineFramer()
        while not stop.is_set():
            try:
                data = handle.read(handle.in_waiting or 1)
            except Exception as exc:
                if not stop.is_set():
                    self._handle_link_lost(handle, exc)
                break
            if not data:
                if not handle.is_open and not stop.is_set():
                    self._handle_link_lost(handle, ConnectionError("port closed"))
                    break
                time.sleep(0.01)
                continue
            for line in framer.feed(data):
                if stop.is_set():
                    break
                self._logger.debug("<- %s", line)
                handler = self._line_handler
                if handler is None:
                    continue
                try:
                    handler(line)
                except Exception:
                    self._logger.exception("Line handler failed for %r", line)

    def _handle_link_lost(self, handle: Any, exc: BaseException) -> None:
        with self._lock:
            if self._handle is not handle:
                return
            self._handle = None
            self._reader_thread = None
            self._reader_stop.set()
            self._state = LinkState.DISCONNECTED
            port = self._port
        try:
            handle.close()
        except Exception:
            self._logger.debug("Closing lost handle failed", exc_info=True)
        self._logger.warning("Serial link to %s lost: %s", port, exc)
        self._listeners.notify(ConnectionEvent(ConnectionEventKind.DISCONNECTED, port, str(exc)))
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        with self._lock:
            if not self._reconnect_enabled:
                return
            if self._reconnect_timer is not None:
                self._reconnect_timer.cancel()
            timer = threading.Timer(self._reconnect_delay, self._attempt_reconnect)
            timer.name = "SilarReconnect"
            timer.daemon = True
            self._reconnect_timer = timer
        self._logger.info("Reconnection scheduled in %.1fs", self._reconnect_delay)
        timer.start()

    def _cancel_reconnect(self) -> None:
        with self._lock:
            timer = self._reconnect_timer
            self._reconnect_timer = None
        if timer is not None:
            timer.cancel()

    def _attempt_reconnect(self) -> None:
        if not self._attempt_lock.acquire(blocking=False):
            self._logger.debug("Reconnection attempt already running")
            return
        try:
            with self._lock:
                if self._reconnect_timer is threading.current_thread():
                    self._reconnect_timer = None
                if not self._reconnect_enabled or self._state is LinkState.CONNECTED:
                    return
                port, baud_rate = self._port, self._baud_rate
            self._logger.info("Attempting to reconnect to %s", port)
            self._listeners.notify(ConnectionEvent(ConnectionEventKind.RECONNECTING, port))
            try:
                self._open_link(port, baud_rate, reconnecting=True)
            except DeviceError as exc:
                self._logger.error("Reconnection to %s failed: %s", port, exc)
                self._listeners.notify(ConnectionEvent(ConnectionEventKind.ERROR, port, str(exc)))
                self._schedule_reconnect()
                return
        finally:
            self._attempt_lock.release()
        self._run_connected_hook()


__all__ = [
    "ConnectionEvent",
    "ConnectionEventKind",
    "ConnectionHandle",
    "ConnectionManager",
    "LinkState",
]
