"""Mirrored state of the SILAR motion controller."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class Mode(str, Enum):
    """Operating mode reported by the firmware."""

    UNKNOWN = "UNKNOWN"
    MANUAL = "MANUAL"
    AUTOMATIC = "AUTOMATIC"
    HOMING = "HOMING"


class Axis(str, Enum):
    """Stepper axes driven by the controller."""

    Y = "Y"
    Z = "Z"

    @classmethod
    def parse(cls, value: Any) -> "Axis":
        """Return the axis for ``value`` (case-insensitive), raising ValueError otherwise."""

        if isinstance(value, cls):
            return value
        label = str(value or "").strip().upper()
        try:
            return cls(label)
        except ValueError:
            raise ValueError(f"Unsupported axis '{value}'. Expected one of {[a.value for a in cls]}.") from None


@dataclass(frozen=True, slots=True)
class AxisState:
    """Per-axis position and sensor flags.

    ``at_limit`` is derived from the two limit flags so it can never disagree
    with them.
    """

    position: int = 0
    moving: bool = False
    at_home: bool = False
    limit_min: bool = False
    limit_max: bool = False

    @property
    def at_limit(self) -> bool:
        return self.limit_min or self.limit_max

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "moving": self.moving,
            "atHome": self.at_home,
            "atLimit": self.at_limit,
            "limitMin": self.limit_min,
            "limitMax": self.limit_max,
        }


@dataclass(frozen=True, slots=True)
class DeviceState:
    """Immutable snapshot of the mirrored device."""

    mode: Mode = Mode.UNKNOWN
    axis_y: AxisState = field(default_factory=AxisState)
    axis_z: AxisState = field(default_factory=AxisState)
    emergency_stop: bool = False
    last_update: Optional[datetime] = None

    def axis(self, axis: Axis) -> AxisState:
        return self.axis_y if axis is Axis.Y else self.axis_z

    def with_axis(self, axis: Axis, **changes: Any) -> "DeviceState":
        """Return a copy with ``changes`` applied to one axis."""

        if axis is Axis.Y:
            return replace(self, axis_y=replace(self.axis_y, **changes))
        return replace(self, axis_z=replace(self.axis_z, **changes))

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "axisY": self.axis_y.to_mapping(),
            "axisZ": self.axis_z.to_mapping(),
            "emergencyStop": self.emergency_stop,
            "lastUpdate": self.last_update.isoformat() if self.last_update else None,
        }


@dataclass(frozen=True, slots=True)
class DeviceSnapshot:
    """Device state plus the link status, as returned by ``get_state()``."""

    state: DeviceState
    connected: bool
    port: Optional[str]

    def to_mapping(self) -> Dict[str, Any]:
        data = self.state.to_mapping()
        data["isConnected"] = self.connected
        data["port"] = self.port
        return data


__all__ = ["Axis", "AxisState", "DeviceSnapshot", "DeviceState", "Mode"]
