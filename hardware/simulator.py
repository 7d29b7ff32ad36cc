"""Serial handle that answers like the SILAR firmware, without hardware."""

from __future__ import annotations

import json
import logging
import threading
from typing import Dict, List, Optional, Tuple

import serial

from models.device_state import Axis, Mode

LOGGER = logging.getLogger("silar.simulator")

SIMULATED_PORT = "Simulated SILAR"
FIRMWARE_VERSION = "SILAR Firmware v2.0 (simulated)"
DEFAULT_TRAVEL: Dict[Axis, Tuple[int, int]] = {Axis.Y: (0, 20000), Axis.Z: (0, 20000)}


class SimulatedDevice:
    """Drop-in for ``serial.Serial`` used by the connection manager.

    Commands written to it are answered immediately with the same lines the
    firmware prints, and motion is clamped to a fixed travel per axis so the
    limit reports can be exercised.
    """

    def __init__(
        self,
        port: Optional[str] = None,
        baudrate: int = 9600,
        *,
        timeout: Optional[float] = 0.05,
        travel: Optional[Dict[Axis, Tuple[int, int]]] = None,
        logger: Optional[logging.Logger] = None,
        **_settings: object,
    ) -> None:
        self.port = port or SIMULATED_PORT
        self.baudrate = baudrate
        self.timeout = timeout
        self.is_open = True
        self._logger = logger or LOGGER
        self._travel = dict(travel or DEFAULT_TRAVEL)
        self._pending_input = bytearray()
        self._output = bytearray()
        self._ready = threading.Condition()

        self.mode = Mode.MANUAL
        self.positions: Dict[Axis, int] = {axis: 0 for axis in Axis}
        self.homed: Dict[Axis, bool] = {axis: False for axis in Axis}
        self.emergency = False
        self.running = False
        self.paused = False
        self.last_recipe: Optional[dict] = None
        self.received: List[str] = []
        self._logger.info("Simulated controller opened (port=%s)", self.port)

    # ------------------------------------------------------------------ #
    # pyserial surface                                                   #
    # ------------------------------------------------------------------ #
    @property
    def in_waiting(self) -> int:
        with self._ready:
            return len(self._output)

    def read(self, size: int = 1) -> bytes:
        with self._ready:
            self._ensure_open()
            if not self._output:
                self._ready.wait(self.timeout)
                self._ensure_open()
            data = bytes(self._output[:size])
            del self._output[:size]
            return data

    def write(self, data: bytes) -> int:
        with self._ready:
            self._ensure_open()
            self._pending_input.extend(data)
            while b"\n" in self._pending_input:
                line, _, rest = bytes(self._pending_input).partition(b"\n")
                self._pending_input = bytearray(rest)
                command = line.decode("utf-8", errors="replace").strip()
                if command:
                    self._handle(command)
        return len(data)

    def flush(self) -> None:
        return None

    def reset_input_buffer(self) -> None:
        with self._ready:
            self._output.clear()

    def close(self) -> None:
        with self._ready:
            self.is_open = False
            self._ready.notify_all()
        self._logger.info("Simulated controller closed")

    # ------------------------------------------------------------------ #
    # Firmware behaviour                                                 #
    # ------------------------------------------------------------------ #
    def inject(self, *lines: str) -> None:
        """Queue unsolicited lines as if the firmware printed them."""

        with self._ready:
            self._emit(*lines)

    def status_line(self) -> str:
        flags = []
        for axis in Axis:
            low, high = self._travel[axis]
            flags.append(f"LimitMin{axis.value}={int(self.positions[axis] <= low)}")
            flags.append(f"LimitMax{axis.value}={int(self.positions[axis] >= high)}")
        return (
            f"STATUS:Mode={self.mode.value},Emergency={int(self.emergency)},"
            f"Y={self.positions[Axis.Y]},Z={self.positions[Axis.Z]},"
            f"HomeY={int(self.homed[Axis.Y])},HomeZ={int(self.homed[Axis.Z])},"
            + ",".join(flags)
        )

    def _ensure_open(self) -> None:
        if not self.is_open:
            raise serial.SerialException("Attempting to use a port that is not open")

    def _emit(self, *lines: str) -> None:
        for line in lines:
            self._output.extend(f"{line}\r\n".encode("utf-8"))
        self._ready.notify_all()

    def _handle(self, command: str) -> None:
        self._logger.debug("[sim] <- %s", command)
        self.received.append(command)
        if command == "1":
            self.mode = Mode.MANUAL
            self._emit("Modo Manual")
        elif command == "2":
            self.mode = Mode.AUTOMATIC
            self._emit("Modo Automatico")
        elif command == "3":
            self._home()
        elif command[:1] in ("Y", "Z") and command[1:].lstrip("-").isdigit():
            self._move(Axis(command[0]), int(command[1:]))
        elif command.startswith("START_RECIPE:"):
            self._start_recipe(command[len("START_RECIPE:"):])
        elif command == "PAUSE":
            self._emit("PROCESO_PAUSADO" if self.running else "Error: Sin proceso activo")
            self.paused = self.running
        elif command == "RESUME":
            self._emit("PROCESO_REANUDADO" if self.paused else "Error: Sin proceso pausado")
            self.paused = False
        elif command == "STOP":
            self.emergency = True
            self.running = self.paused = False
            self._emit("PARO DE EMERGENCIA ACTIVADO")
        elif command == "RESET":
            self.emergency = False
            self._emit("Paro de emergencia desactivado")
        elif command == "STATUS":
            self._emit(self.status_line())
        elif command == "VERSION":
            self._emit(FIRMWARE_VERSION)
        else:
            self._emit("Error: Comando desconocido")

    def _home(self) -> None:
        if self.emergency:
            self._emit("Error: Paro de emergencia activo")
            return
        for axis in Axis:
            self.positions[axis] = 0
            self.homed[axis] = True
            self._emit(f"Buscando Home {axis.value}", f"Home {axis.value} encontrado")
        self._emit("Secuencia HOME completada")

    def _move(self, axis: Axis, steps: int) -> None:
        if self.emergency:
            self._emit("Error: Paro de emergencia activo")
            return
        low, high = self._travel[axis]
        target = self.positions[axis] + steps
        self._emit(f"Moviendo Eje {axis.value}")
        if target > high:
            self.positions[axis] = high
            self._emit(f"Limite {axis.value} Max alcanzado")
        elif target < low:
            self.positions[axis] = low
            self._emit(f"Limite {axis.value} Min alcanzado")
        else:
            self.positions[axis] = target
        self.homed[axis] = self.positions[axis] == 0 and self.homed[axis]
        self._emit(f"{axis.value}: {self.positions[axis]}")

    def _start_recipe(self, payload: str) -> None:
        if self.emergency:
            self._emit("Error: Paro de emergencia activo")
            return
        try:
            recipe = json.loads(payload)
        except ValueError:
            self._emit("Error: Parametros invalidos")
            return
        self.last_recipe = recipe
        self.mode = Mode.AUTOMATIC
        self.running = True
        self.paused = False
        self._emit("PARAMETROS_RECIBIDOS", "PROCESO_INICIADO")


__all__ = ["DEFAULT_TRAVEL", "FIRMWARE_VERSION", "SIMULATED_PORT", "SimulatedDevice"]
