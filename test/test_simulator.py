from __future__ import annotations

import json

import pytest
import serial

from hardware.protocol import LineFramer, decode, encode_start_recipe
from hardware.simulator import FIRMWARE_VERSION, SimulatedDevice
from models.device_state import Axis, Mode
from models.events import StatusEvent


def _exchange(device, command):
    device.write(f"{command}\n".encode("utf-8"))
    framer = LineFramer()
    lines = []
    while device.in_waiting:
        lines.extend(framer.feed(device.read(device.in_waiting)))
    return lines


@pytest.fixture
def device():
    dev = SimulatedDevice("SIM", timeout=0.01)
    yield dev
    dev.close()


def test_mode_and_version_replies(device):
    assert _exchange(device, "2") == ["Modo Automatico"]
    assert device.mode is Mode.AUTOMATIC
    assert _exchange(device, "1") == ["Modo Manual"]
    assert _exchange(device, "VERSION") == [FIRMWARE_VERSION]
    assert _exchange(device, "BOGUS") == ["Error: Comando desconocido"]
    assert device.received == ["2", "1", "VERSION", "BOGUS"]


def test_move_is_clamped_to_travel(device):
    assert _exchange(device, "Z-50") == ["Moviendo Eje Z", "Limite Z Min alcanzado", "Z: 0"]
    assert _exchange(device, "Y1200") == ["Moviendo Eje Y", "Y: 1200"]
    assert device.positions[Axis.Y] == 1200


def test_home_reports_each_axis(device):
    device.positions[Axis.Z] = 300
    lines = _exchange(device, "3")
    assert lines[-1] == "Secuencia HOME completada"
    assert "Home Z encontrado" in lines
    assert device.positions[Axis.Z] == 0
    assert all(device.homed.values())


def test_emergency_latch_blocks_motion(device):
    assert _exchange(device, "STOP") == ["PARO DE EMERGENCIA ACTIVADO"]
    assert _exchange(device, "Y10") == ["Error: Paro de emergencia activo"]
    assert _exchange(device, "RESET") == ["Paro de emergencia desactivado"]
    assert not device.emergency


def test_recipe_lifecycle(device):
    assert _exchange(device, "PAUSE") == ["Error: Sin proceso activo"]
    assert _exchange(device, encode_start_recipe({"cycles": 2})) == ["PARAMETROS_RECIBIDOS", "PROCESO_INICIADO"]
    assert device.last_recipe["cycles"] == 2
    assert _exchange(device, "PAUSE") == ["PROCESO_PAUSADO"]
    assert _exchange(device, "RESUME") == ["PROCESO_REANUDADO"]
    assert _exchange(device, "START_RECIPE:{oops") == ["Error: Parametros invalidos"]


def test_status_line_decodes(device):
    device.positions[Axis.Y] = 20000
    (line,) = _exchange(device, "STATUS")
    event = decode(line)
    assert isinstance(event, StatusEvent)
    assert event.mode is Mode.MANUAL
    assert event.position_y == 20000
    assert event.limit_max_y is True
    assert event.limit_min_z is True


def test_partial_writes_are_buffered(device):
    device.write(b"VER")
    assert device.in_waiting == 0
    device.write(b"SION\r\n")
    assert device.read(100).decode("utf-8").strip() == FIRMWARE_VERSION


def test_closed_device_raises_like_pyserial(device):
    device.close()
    with pytest.raises(serial.SerialException):
        device.read(1)
    with pytest.raises(serial.SerialException):
        device.write(b"STATUS\n")


def test_recipe_payload_is_json(device):
    _exchange(device, encode_start_recipe())
    assert json.loads(json.dumps(device.last_recipe))["dippingLength"] == 10000
