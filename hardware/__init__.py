"""Hardware abstraction helpers."""

from .connection import ConnectionEvent, ConnectionEventKind, ConnectionHandle, ConnectionManager, LinkState
from .controller import SilarController
from .dispatcher import CommandDispatcher
from .errors import (
    ConnectError,
    DeviceError,
    EmergencyActive,
    InvalidArgument,
    LimitReached,
    NoDeviceFound,
    NotConnected,
    ResponseTimeout,
    WriteError,
)
from .port_discovery import PortInfo, detect_port, list_ports, port_labels
from .protocol import LineFramer, RecipeParameters, decode, encode_move, encode_start_recipe
from .simulator import SIMULATED_PORT, SimulatedDevice
from .state_machine import DeviceStateMachine, apply_event

__all__ = [
    "CommandDispatcher",
    "ConnectError",
    "ConnectionEvent",
    "ConnectionEventKind",
    "ConnectionHandle",
    "ConnectionManager",
    "DeviceError",
    "DeviceStateMachine",
    "EmergencyActive",
    "InvalidArgument",
    "LimitReached",
    "LineFramer",
    "LinkState",
    "NoDeviceFound",
    "NotConnected",
    "PortInfo",
    "RecipeParameters",
    "ResponseTimeout",
    "SIMULATED_PORT",
    "SilarController",
    "SimulatedDevice",
    "WriteError",
    "apply_event",
    "decode",
    "detect_port",
    "encode_move",
    "encode_start_recipe",
    "list_ports",
    "port_labels",
]
