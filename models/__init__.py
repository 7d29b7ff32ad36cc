"""Data models for the mirrored device and decoded events."""

from .device_state import Axis, AxisState, DeviceSnapshot, DeviceState, Mode
from .events import (
    EmergencyEvent,
    ErrorEvent,
    EventKind,
    HomeEvent,
    HomeStatus,
    LimitEvent,
    LimitSide,
    MessageEvent,
    ModeEvent,
    MovementEvent,
    ParsedEvent,
    PositionEvent,
    StatusEvent,
)

__all__ = [
    "Axis",
    "AxisState",
    "DeviceSnapshot",
    "DeviceState",
    "EmergencyEvent",
    "ErrorEvent",
    "EventKind",
    "HomeEvent",
    "HomeStatus",
    "LimitEvent",
    "LimitSide",
    "MessageEvent",
    "Mode",
    "ModeEvent",
    "MovementEvent",
    "ParsedEvent",
    "PositionEvent",
    "StatusEvent",
]
