"""High-level SILAR controller built on top of the serial link."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional, Union

from config.controller import ControllerConfig, load_controller_config
from models.device_state import Axis, DeviceSnapshot, DeviceState
from models.events import ParsedEvent

from .connection import ConnectionEvent, ConnectionHandle, ConnectionManager, SerialFactory
from .dispatcher import CommandDispatcher, ResponseFilter
from .errors import DeviceError, EmergencyActive, InvalidArgument, LimitReached, NotConnected
from .listeners import ListenerSet, Unsubscribe
from .port_discovery import detect_port
from .protocol import (
    CMD_HOME,
    CMD_MODE_AUTOMATIC,
    CMD_MODE_MANUAL,
    CMD_PAUSE,
    CMD_RESET,
    CMD_RESUME,
    CMD_STATUS,
    CMD_STOP,
    CMD_VERSION,
    RecipeParameters,
    decode,
    encode_move,
    encode_start_recipe,
)
from .simulator import SIMULATED_PORT, SimulatedDevice
from .state_machine import DeviceStateMachine

LOGGER = logging.getLogger("silar.controller")


class SilarController:
    """Operation API for the dip coater: one instance per serial device.

    Safety checks (emergency latch, limit switches, argument types) run
    before anything is written, so a rejected call never reaches the wire.
    """

    def __init__(
        self,
        config: Optional[ControllerConfig] = None,
        *,
        serial_factory: Optional[SerialFactory] = None,
        port_detector: Optional[Callable[[], Optional[str]]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._config = config or load_controller_config()
        self._logger = logger or LOGGER
        if self._config.simulate:
            serial_factory = serial_factory or SimulatedDevice
            port_detector = port_detector or (lambda: SIMULATED_PORT)

        self._link = ConnectionManager(
            serial_factory=serial_factory,
            port_detector=port_detector or detect_port,
            settle_delay=self._config.settle_delay_s,
            reconnect_delay=self._config.reconnect_delay_s,
            read_timeout=self._config.read_timeout_s,
            write_timeout=self._config.write_timeout_s,
        )
        self._dispatcher = CommandDispatcher(self._link)
        self._machine = DeviceStateMachine()
        self._events: ListenerSet[ParsedEvent] = ListenerSet("event", self._logger)
        self._raw_lines: ListenerSet[str] = ListenerSet("raw", self._logger)

        self._link.set_line_handler(self._handle_line)
        self._link.set_connected_hook(self._after_connect)

        mode = "simulation" if self._config.simulate else "hardware"
        self._logger.info("SilarController initialised in %s mode", mode)

    def __enter__(self) -> "SilarController":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.disconnect()

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #
    @property
    def config(self) -> ControllerConfig:
        return self._config

    def connect(self, port: Optional[str] = None, baud_rate: Optional[int] = None) -> ConnectionHandle:
        """Open the controller port, auto-detecting it when none is configured."""

        return self._link.connect(port or self._config.port or None, baud_rate or self._config.baud_rate)

    def disconnect(self) -> None:
        """Close the link and stop any reconnection attempts."""

        self._link.disconnect()

    def is_connected(self) -> bool:
        return self._link.is_connected()

    # ------------------------------------------------------------------ #
    # Raw helpers                                                        #
    # ------------------------------------------------------------------ #
    def send_line(
        self,
        command: str,
        *,
        wait_for_response: bool = False,
        timeout: Optional[float] = None,
        accept: Optional[ResponseFilter] = None,
    ) -> Optional[ParsedEvent]:
        """Send an arbitrary protocol line, bypassing the safety checks."""

        if not command:
            raise InvalidArgument("Command must not be empty.")
        return self._dispatcher.send(
            command,
            wait_for_response=wait_for_response,
            timeout=self._config.command_timeout_s if timeout is None else timeout,
            accept=accept,
        )

    # ------------------------------------------------------------------ #
    # Operations                                                         #
    # ------------------------------------------------------------------ #
    def set_mode_manual(self) -> None:
        self._logger.info("Switching to MANUAL mode")
        self._dispatcher.send(CMD_MODE_MANUAL)

    def set_mode_automatic(self) -> None:
        self._logger.info("Switching to AUTOMATIC mode")
        self._dispatcher.send(CMD_MODE_AUTOMATIC)

    def execute_home(self) -> Optional[ParsedEvent]:
        """Run the homing sequence on both axes and wait for the first report."""

        self._ensure_connected()
        if self._machine.state.emergency_stop:
            raise EmergencyActive("Cannot home while the emergency stop is active.")
        self._logger.info("Starting HOME sequence")
        self._machine.set_moving(tuple(Axis), True)
        try:
            return self._dispatcher.send(CMD_HOME, wait_for_response=True, timeout=self._config.home_timeout_s)
        except DeviceError:
            self._machine.set_moving(tuple(Axis), False)
            raise

    def move_axis(self, axis: Union[Axis, str], steps: int) -> None:
        """Move ``axis`` by ``steps`` (negative values move towards the minimum)."""

        if isinstance(steps, bool) or not isinstance(steps, int):
            raise InvalidArgument(f"Steps must be an integer, got {steps!r}")
        try:
            axis = Axis.parse(axis)
        except ValueError as exc:
            raise InvalidArgument(str(exc)) from exc
        self._ensure_connected()

        state = self._machine.state
        if state.emergency_stop:
            raise EmergencyActive(f"Cannot move axis {axis.value} while the emergency stop is active.")
        axis_state = state.axis(axis)
        if steps > 0 and axis_state.limit_max:
            raise LimitReached(f"Axis {axis.value} is at its maximum limit.")
        if steps < 0 and axis_state.limit_min:
            raise LimitReached(f"Axis {axis.value} is at its minimum limit.")

        command = encode_move(axis, steps)
        self._logger.info("Moving axis %s by %d steps", axis.value, steps)
        self._machine.set_moving((axis,), True)
        try:
            self._dispatcher.send(command)
        except DeviceError:
            self._machine.set_moving((axis,), False)
            raise

    def move_axis_y(self, steps: int) -> None:
        self.move_axis(Axis.Y, steps)

    def move_axis_z(self, steps: int) -> None:
        self.move_axis(Axis.Z, steps)

    def emergency_stop(self) -> None:
        """Latch the emergency stop; never blocked by local state."""

        self._logger.warning("EMERGENCY STOP requested")
        self._dispatcher.send(CMD_STOP)

    def reset(self) -> None:
        """Ask the firmware to clear the emergency latch and reinitialise."""

        self._logger.info("Sending RESET")
        self._dispatcher.send(CMD_RESET)

    def start_recipe(self, params: Union[RecipeParameters, Mapping[str, Any], None] = None) -> RecipeParameters:
        """Upload a recipe (merged over the defaults) and start the automatic run."""

        self._ensure_connected()
        recipe = RecipeParameters.merge(params)
        self._logger.info("Starting recipe: %d cycle(s)", recipe.cycles)
        self._dispatcher.send(encode_start_recipe(recipe))
        return recipe

    def pause_process(self) -> None:
        self._logger.info("Pausing automatic process")
        self._dispatcher.send(CMD_PAUSE)

    def resume_process(self) -> None:
        self._logger.info("Resuming automatic process")
        self._dispatcher.send(CMD_RESUME)

    def request_status(self) -> Optional[ParsedEvent]:
        """Ask for a STATUS report and return the next event that arrives."""

        return self._dispatcher.send(CMD_STATUS, wait_for_response=True, timeout=self._config.status_timeout_s)

    def request_version(self) -> Optional[ParsedEvent]:
        return self._dispatcher.send(CMD_VERSION, wait_for_response=True, timeout=self._config.status_timeout_s)

    # ------------------------------------------------------------------ #
    # State query helpers                                                #
    # ------------------------------------------------------------------ #
    def get_state(self) -> DeviceSnapshot:
        """Return the mirrored device state plus link status."""

        return self._snapshot(self._machine.state)

    def subscribe_events(self, callback: Callable[[ParsedEvent], None]) -> Unsubscribe:
        """Receive every decoded event, on the reader thread."""

        return self._events.add(callback)

    def subscribe_state(self, callback: Callable[[DeviceSnapshot], None]) -> Unsubscribe:
        """Receive a snapshot for every new device state, in the order events arrived."""

        return self._machine.subscribe(lambda state: callback(self._snapshot(state)))

    def subscribe_connection(self, callback: Callable[[ConnectionEvent], None]) -> Unsubscribe:
        return self._link.add_listener(callback)

    def subscribe_raw(self, callback: Callable[[str], None]) -> Unsubscribe:
        """Receive each raw line before decoding (diagnostics)."""

        return self._raw_lines.add(callback)

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #
    def _handle_line(self, line: str) -> None:
        self._raw_lines.notify(line)
        event = decode(line)
        if event is None:
            return
        self._machine.apply(event)
        self._dispatcher.on_event(event)
        self._events.notify(event)

    def _after_connect(self) -> None:
        try:
            self.request_status()
        except DeviceError as exc:
            self._logger.warning("Initial status request failed: %s", exc)

    def _snapshot(self, state: DeviceState) -> DeviceSnapshot:
        return DeviceSnapshot(state=state, connected=self._link.is_connected(), port=self._link.port)

    def _ensure_connected(self) -> None:
        if not self._link.is_connected():
            raise NotConnected("Controller is not connected.")


__all__ = ["SilarController"]
