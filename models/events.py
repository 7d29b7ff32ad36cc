"""Typed events decoded from firmware lines."""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, Optional

from .device_state import Axis, Mode


class EventKind(str, Enum):
    MODE = "mode"
    HOME = "home"
    LIMIT = "limit"
    POSITION = "position"
    MOVEMENT = "movement"
    EMERGENCY = "emergency"
    STATUS = "status"
    ERROR = "error"
    MESSAGE = "message"


class LimitSide(str, Enum):
    MIN = "MIN"
    MAX = "MAX"


class HomeStatus(str, Enum):
    FOUND = "found"
    SEARCHING = "searching"
    COMPLETE = "complete"


@dataclass(frozen=True, slots=True)
class ParsedEvent:
    """Base of every decoded line: the trimmed text and when it arrived."""

    kind: ClassVar[EventKind] = EventKind.MESSAGE

    raw: str
    received_at: datetime

    def to_mapping(self) -> Dict[str, Any]:
        """Return a JSON-ready dict (``type``, event fields, ``raw``, ``timestamp``)."""

        data: Dict[str, Any] = {"type": self.kind.value}
        for item in fields(self):
            if item.name in ("raw", "received_at"):
                continue
            value = getattr(self, item.name)
            data[item.name] = value.value if isinstance(value, Enum) else value
        data["raw"] = self.raw
        data["timestamp"] = self.received_at.isoformat()
        return data


@dataclass(frozen=True, slots=True)
class ModeEvent(ParsedEvent):
    kind: ClassVar[EventKind] = EventKind.MODE

    mode: Mode


@dataclass(frozen=True, slots=True)
class HomeEvent(ParsedEvent):
    """Homing progress; ``axis`` is None for the end of the whole sequence."""

    kind: ClassVar[EventKind] = EventKind.HOME

    axis: Optional[Axis]
    status: HomeStatus
    complete: bool


@dataclass(frozen=True, slots=True)
class LimitEvent(ParsedEvent):
    kind: ClassVar[EventKind] = EventKind.LIMIT

    axis: Axis
    side: LimitSide


@dataclass(frozen=True, slots=True)
class PositionEvent(ParsedEvent):
    kind: ClassVar[EventKind] = EventKind.POSITION

    axis: Axis
    position: int


@dataclass(frozen=True, slots=True)
class MovementEvent(ParsedEvent):
    kind: ClassVar[EventKind] = EventKind.MOVEMENT

    axis: Axis
    interrupted: bool
    direction: Optional[int] = None
    steps: Optional[int] = None


@dataclass(frozen=True, slots=True)
class EmergencyEvent(ParsedEvent):
    kind: ClassVar[EventKind] = EventKind.EMERGENCY

    active: bool


@dataclass(frozen=True, slots=True)
class StatusEvent(ParsedEvent):
    """Full status report; fields the firmware did not send stay ``None``."""

    kind: ClassVar[EventKind] = EventKind.STATUS

    mode: Optional[Mode] = None
    emergency_stop: Optional[bool] = None
    position_y: Optional[int] = None
    position_z: Optional[int] = None
    home_y: Optional[bool] = None
    home_z: Optional[bool] = None
    limit_min_y: Optional[bool] = None
    limit_max_y: Optional[bool] = None
    limit_min_z: Optional[bool] = None
    limit_max_z: Optional[bool] = None


@dataclass(frozen=True, slots=True)
class ErrorEvent(ParsedEvent):
    kind: ClassVar[EventKind] = EventKind.ERROR

    error_code: str


@dataclass(frozen=True, slots=True)
class MessageEvent(ParsedEvent):
    """Informational line that matched no other category."""

    kind: ClassVar[EventKind] = EventKind.MESSAGE


__all__ = [
    "EmergencyEvent",
    "ErrorEvent",
    "EventKind",
    "HomeEvent",
    "HomeStatus",
    "LimitEvent",
    "LimitSide",
    "MessageEvent",
    "ModeEvent",
    "MovementEvent",
    "ParsedEvent",
    "PositionEvent",
    "StatusEvent",
]
