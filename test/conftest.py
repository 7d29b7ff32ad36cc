"""Shared fixtures: an in-memory stand-in for ``serial.Serial``."""

from __future__ import annotations

import threading
import time
from typing import Callable, List, Optional

import pytest
import serial

from config.controller import ControllerConfig


class FakeSerial:
    """Records writes and serves scripted reads to the reader thread."""

    def __init__(self, port: Optional[str] = None, baudrate: int = 9600, timeout: float = 0.01, **settings: object):
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.settings = settings
        self.is_open = True
        self.writes: List[bytes] = []
        self.read_error: Optional[BaseException] = None
        self.write_error: Optional[BaseException] = None
        self.on_write: Optional[Callable[["FakeSerial", bytes], None]] = None
        self._incoming = bytearray()
        self._cond = threading.Condition()

    @property
    def in_waiting(self) -> int:
        with self._cond:
            return len(self._incoming)

    def feed(self, text: str) -> None:
        with self._cond:
            self._incoming.extend(text.encode("utf-8"))
            self._cond.notify_all()

    def read(self, size: int = 1) -> bytes:
        with self._cond:
            if self.read_error is not None:
                raise self.read_error
            if not self._incoming:
                self._cond.wait(self.timeout or 0.01)
            if self.read_error is not None:
                raise self.read_error
            data = bytes(self._incoming[:size])
            del self._incoming[:size]
            return data

    def write(self, data: bytes) -> int:
        if self.write_error is not None:
            raise self.write_error
        self.writes.append(bytes(data))
        if self.on_write is not None:
            self.on_write(self, bytes(data))
        return len(data)

    def flush(self) -> None:
        return None

    def reset_input_buffer(self) -> None:
        with self._cond:
            self._incoming.clear()

    def close(self) -> None:
        with self._cond:
            self.is_open = False
            self._cond.notify_all()

    def fail_reads(self, exc: Optional[BaseException] = None) -> None:
        with self._cond:
            self.read_error = exc or serial.SerialException("device reports readiness to read but returned no data")
            self.is_open = False
            self._cond.notify_all()

    @property
    def written_lines(self) -> List[str]:
        return [chunk.decode("utf-8").rstrip("\n") for chunk in self.writes]


class SerialFactory:
    """Callable factory that remembers every handle it opened."""

    def __init__(self, *, fail: Optional[BaseException] = None) -> None:
        self.fail = fail
        self.opened: List[FakeSerial] = []
        self.calls: List[dict] = []
        self.on_write: Optional[Callable[[FakeSerial, bytes], None]] = None

    def __call__(self, **kwargs: object) -> FakeSerial:
        self.calls.append(kwargs)
        if self.fail is not None:
            raise self.fail
        handle = FakeSerial(**kwargs)
        handle.on_write = self.on_write
        self.opened.append(handle)
        return handle

    @property
    def last(self) -> FakeSerial:
        return self.opened[-1]


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def serial_factory() -> SerialFactory:
    return SerialFactory()


@pytest.fixture
def fast_config() -> ControllerConfig:
    return ControllerConfig(
        port="/dev/ttyFAKE0",
        settle_delay_s=0.0,
        reconnect_delay_s=0.1,
        command_timeout_s=0.5,
        home_timeout_s=0.5,
        status_timeout_s=0.2,
        read_timeout_s=0.01,
    )
