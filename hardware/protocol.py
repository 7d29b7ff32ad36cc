"""Line protocol spoken by the SILAR motion firmware.

Commands are short ASCII tokens (``1``, ``Y-500``, ``STATUS`` ...) and the
recipe upload carries a JSON object. Replies and unsolicited reports are
Spanish text lines; :func:`decode` turns each one into a typed event by
trying the matchers in a fixed priority order, falling back to a plain
message. Nothing in this module touches the serial port.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from models.device_state import Axis, Mode
from models.events import (
    EmergencyEvent,
    ErrorEvent,
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

from .errors import InvalidArgument, ProtocolDecodeAnomaly

LOGGER = logging.getLogger("silar.protocol")

LINE_TERMINATOR = "\n"
ENCODING = "utf-8"
MAX_LINE_BYTES = 4096

CMD_MODE_MANUAL = "1"
CMD_MODE_AUTOMATIC = "2"
CMD_HOME = "3"
CMD_START_RECIPE = "START_RECIPE:"
CMD_PAUSE = "PAUSE"
CMD_RESUME = "RESUME"
CMD_STOP = "STOP"
CMD_RESET = "RESET"
CMD_STATUS = "STATUS"
CMD_VERSION = "VERSION"

ERROR_INVALID_COMMAND = "E005"
ERROR_LIMIT_REACHED = "E003"
ERROR_EMERGENCY_STOP = "E004"
ERROR_UNKNOWN = "E999"


# ---------------------------------------------------------------------- #
# Encoding                                                               #
# ---------------------------------------------------------------------- #
def encode_move(axis: Union[Axis, str], steps: int) -> str:
    """Return the relative move command, e.g. ``Y1000`` or ``Z-500``."""

    if isinstance(steps, bool) or not isinstance(steps, int):
        raise InvalidArgument(f"Steps must be an integer, got {steps!r}")
    try:
        axis = Axis.parse(axis)
    except ValueError as exc:
        raise InvalidArgument(str(exc)) from exc
    return f"{axis.value}{steps}"


@dataclass(frozen=True)
class RecipeParameters:
    """Parameter set of an automatic dipping run.

    Field order is the key order of the ``START_RECIPE`` payload.
    """

    cycles: int = 1
    dipping_wait0: int = 5000
    dipping_wait1: int = 5000
    dipping_wait2: int = 5000
    dipping_wait3: int = 5000
    transfer_wait: int = 2000
    except_dripping1: bool = False
    except_dripping2: bool = False
    except_dripping3: bool = False
    except_dripping4: bool = False
    dip_start_position: int = 0
    dipping_length: int = 10000
    transfer_speed: int = 1000
    dip_speed: int = 1000
    fan: bool = False

    @classmethod
    def merge(cls, params: Optional[Mapping[str, Any]] = None) -> "RecipeParameters":
        """Overlay caller values (camelCase or snake_case keys) on the defaults."""

        if params is None:
            return cls()
        if isinstance(params, cls):
            return params
        values: Dict[str, Any] = {}
        for key, value in params.items():
            attr = _RECIPE_ALIASES.get(str(key))
            if attr is None:
                raise InvalidArgument(f"Unknown recipe parameter '{key}'")
            values[attr] = _coerce_recipe_value(attr, value)
        return cls(**values)

    def to_wire_mapping(self) -> Dict[str, Union[int, bool]]:
        return {_to_camel(f.name): getattr(self, f.name) for f in fields(self)}


def _to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


_RECIPE_BOOL_FIELDS = frozenset(
    f.name for f in fields(RecipeParameters) if isinstance(f.default, bool)
)
_RECIPE_ALIASES: Dict[str, str] = {}
for _field in fields(RecipeParameters):
    _RECIPE_ALIASES[_field.name] = _field.name
    _RECIPE_ALIASES[_to_camel(_field.name)] = _field.name

# Lower bounds per integer field; dip_start_position may be negative.
_RECIPE_MINIMUMS = {
    "cycles": 1,
    "dipping_wait0": 0,
    "dipping_wait1": 0,
    "dipping_wait2": 0,
    "dipping_wait3": 0,
    "transfer_wait": 0,
    "dipping_length": 0,
    "transfer_speed": 1,
    "dip_speed": 1,
}


def _coerce_recipe_value(attr: str, value: Any) -> Union[int, bool]:
    if attr in _RECIPE_BOOL_FIELDS:
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        raise InvalidArgument(f"Recipe parameter '{_to_camel(attr)}' must be a boolean, got {value!r}")

    if isinstance(value, bool):
        raise InvalidArgument(f"Recipe parameter '{_to_camel(attr)}' must be an integer, got {value!r}")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        raise InvalidArgument(f"Recipe parameter '{_to_camel(attr)}' must be an integer, got {value!r}")
    minimum = _RECIPE_MINIMUMS.get(attr)
    if minimum is not None and value < minimum:
        raise InvalidArgument(f"Recipe parameter '{_to_camel(attr)}' must be >= {minimum}, got {value}")
    return value


def encode_start_recipe(params: Union[RecipeParameters, Mapping[str, Any], None] = None) -> str:
    """Return ``START_RECIPE:{...}`` with the merged parameter set."""

    recipe = RecipeParameters.merge(params)
    payload = json.dumps(recipe.to_wire_mapping(), separators=(",", ":"))
    return f"{CMD_START_RECIPE}{payload}"


# ---------------------------------------------------------------------- #
# Line framing                                                           #
# ---------------------------------------------------------------------- #
class LineFramer:
    """Split an incoming byte stream into trimmed, non-empty text lines."""

    def __init__(self, max_line_bytes: int = MAX_LINE_BYTES) -> None:
        self._buffer = bytearray()
        self._max_line_bytes = max_line_bytes

    def feed(self, data: bytes) -> List[str]:
        if not data:
            return []
        self._buffer.extend(data)
        lines: List[str] = []
        while True:
            index = self._buffer.find(b"\n")
            if index < 0:
                break
            chunk = bytes(self._buffer[:index])
            del self._buffer[: index + 1]
            self._append(lines, chunk)
        if len(self._buffer) > self._max_line_bytes:
            LOGGER.warning("Discarding unterminated line of %d bytes", len(self._buffer))
            self._append(lines, bytes(self._buffer))
            self._buffer.clear()
        return lines

    def reset(self) -> None:
        self._buffer.clear()

    @staticmethod
    def _append(lines: List[str], chunk: bytes) -> None:
        text = chunk.decode(ENCODING, errors="replace").strip()
        if text:
            lines.append(text)


# ---------------------------------------------------------------------- #
# Decoding                                                               #
# ---------------------------------------------------------------------- #
_MODE_RE = re.compile(r"Modo\s+(Manual|Autom[aá]tico)", re.IGNORECASE)
_HOME_RE = re.compile(r"Home\s+([YZ])\s+(encontrado|buscando)", re.IGNORECASE)
_HOME_SEARCH_RE = re.compile(r"Buscando\s+Home\s+([YZ])", re.IGNORECASE)
_HOME_COMPLETE_RE = re.compile(r"Secuencia\s+HOME\s+completada", re.IGNORECASE)
_LIMIT_RE = re.compile(r"Limite\s+([YZ])\s+(Min|Max)", re.IGNORECASE)
_POSITION_RES = tuple((axis, re.compile(rf"{axis.value}:\s*(-?\d+)")) for axis in Axis)
_EMERGENCY_RE = re.compile(r"PARO\s+DE\s+EMERGENCIA\s+(ACTIVADO|DESACTIVADO)", re.IGNORECASE)
_MOVING_RE = re.compile(r"Moviendo\s+(?:Eje\s+)?([YZ])(?:\s*:\s*([+-])(\d+))?", re.IGNORECASE)
_INTERRUPTED_RE = re.compile(r"Movimiento\s+([YZ])\s+interrumpido", re.IGNORECASE)
_ERROR_RE = re.compile(r"Error:", re.IGNORECASE)
_STATUS_PREFIX = "STATUS:"
_STATUS_LIMIT_RE = re.compile(r"Limit(Min|Max)([YZ])")

_MODE_NAMES = {
    "MANUAL": Mode.MANUAL,
    "AUTOMATIC": Mode.AUTOMATIC,
    "AUTOMATICO": Mode.AUTOMATIC,
    "AUTO": Mode.AUTOMATIC,
    "HOME": Mode.HOMING,
    "HOMING": Mode.HOMING,
    "UNKNOWN": Mode.UNKNOWN,
}

Matcher = Callable[[str, datetime], Optional[ParsedEvent]]


def _match_mode(line: str, ts: datetime) -> Optional[ParsedEvent]:
    match = _MODE_RE.search(line)
    if not match:
        return None
    mode = Mode.MANUAL if match.group(1).lower() == "manual" else Mode.AUTOMATIC
    return ModeEvent(raw=line, received_at=ts, mode=mode)


def _match_home(line: str, ts: datetime) -> Optional[ParsedEvent]:
    match = _HOME_RE.search(line)
    if match:
        found = match.group(2).lower() == "encontrado"
        return HomeEvent(
            raw=line,
            received_at=ts,
            axis=Axis(match.group(1).upper()),
            status=HomeStatus.FOUND if found else HomeStatus.SEARCHING,
            complete=found,
        )
    match = _HOME_SEARCH_RE.search(line)
    if match:
        return HomeEvent(
            raw=line,
            received_at=ts,
            axis=Axis(match.group(1).upper()),
            status=HomeStatus.SEARCHING,
            complete=False,
        )
    if _HOME_COMPLETE_RE.search(line):
        return HomeEvent(raw=line, received_at=ts, axis=None, status=HomeStatus.COMPLETE, complete=True)
    return None


def _match_limit(line: str, ts: datetime) -> Optional[ParsedEvent]:
    match = _LIMIT_RE.search(line)
    if not match:
        return None
    side = LimitSide.MIN if match.group(2).lower() == "min" else LimitSide.MAX
    return LimitEvent(raw=line, received_at=ts, axis=Axis(match.group(1).upper()), side=side)


def _match_position(line: str, ts: datetime) -> Optional[ParsedEvent]:
    for axis, pattern in _POSITION_RES:
        match = pattern.search(line)
        if match:
            return PositionEvent(raw=line, received_at=ts, axis=axis, position=int(match.group(1)))
    return None


def _match_emergency(line: str, ts: datetime) -> Optional[ParsedEvent]:
    match = _EMERGENCY_RE.search(line)
    if not match:
        return None
    return EmergencyEvent(raw=line, received_at=ts, active=match.group(1).upper() == "ACTIVADO")


def _parse_status_int(key: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ProtocolDecodeAnomaly(f"Non-integer {key} in status report: {value!r}") from None


def _match_status(line: str, ts: datetime) -> Optional[ParsedEvent]:
    if not line.startswith(_STATUS_PREFIX):
        return None
    values: Dict[str, Any] = {}
    for part in line[len(_STATUS_PREFIX):].split(","):
        key, sep, value = part.partition("=")
        key = key.strip()
        value = value.strip()
        if not key or not sep:
            continue
        if key == "Mode":
            mode = _MODE_NAMES.get(value.upper())
            if mode is None:
                LOGGER.debug("Ignoring unknown mode %r in status report", value)
            else:
                values["mode"] = mode
        elif key == "Emergency":
            values["emergency_stop"] = value == "1"
        elif key in ("Y", "Z"):
            values[f"position_{key.lower()}"] = _parse_status_int(key, value)
        elif key in ("HomeY", "HomeZ"):
            values[f"home_{key[-1].lower()}"] = value == "1"
        else:
            match = _STATUS_LIMIT_RE.fullmatch(key)
            if match:
                values[f"limit_{match.group(1).lower()}_{match.group(2).lower()}"] = value == "1"
    return StatusEvent(raw=line, received_at=ts, **values)


def _match_movement(line: str, ts: datetime) -> Optional[ParsedEvent]:
    match = _MOVING_RE.search(line)
    if match:
        sign, steps = match.group(2), match.group(3)
        return MovementEvent(
            raw=line,
            received_at=ts,
            axis=Axis(match.group(1).upper()),
            interrupted=False,
            direction=(1 if sign == "+" else -1) if sign else None,
            steps=int(steps) if steps else None,
        )
    match = _INTERRUPTED_RE.search(line)
    if match:
        return MovementEvent(raw=line, received_at=ts, axis=Axis(match.group(1).upper()), interrupted=True)
    return None


def _error_code(line: str) -> str:
    if "Modo no valido" in line or "Comando desconocido" in line:
        return ERROR_INVALID_COMMAND
    if "Limite alcanzado" in line or "Paro de emergencia activo" in line:
        return ERROR_LIMIT_REACHED
    if "Paro de emergencia" in line:
        return ERROR_EMERGENCY_STOP
    return ERROR_UNKNOWN


def _match_error(line: str, ts: datetime) -> Optional[ParsedEvent]:
    if not _ERROR_RE.search(line):
        return None
    return ErrorEvent(raw=line, received_at=ts, error_code=_error_code(line))


MATCHERS: Tuple[Tuple[str, Matcher], ...] = (
    ("mode", _match_mode),
    ("home", _match_home),
    ("limit", _match_limit),
    ("position", _match_position),
    ("emergency", _match_emergency),
    ("status", _match_status),
    ("movement", _match_movement),
    ("error", _match_error),
)


def decode(line: str, received_at: Optional[datetime] = None) -> Optional[ParsedEvent]:
    """Classify one firmware line; returns ``None`` only for blank input.

    The first matcher that accepts the line wins. Lines no matcher accepts,
    or whose payload turns out malformed, become a :class:`MessageEvent`.
    """

    if not isinstance(line, str):
        return None
    text = line.strip()
    if not text:
        return None
    ts = received_at or datetime.now()
    for name, matcher in MATCHERS:
        try:
            event = matcher(text, ts)
        except ProtocolDecodeAnomaly as exc:
            LOGGER.warning("Malformed %s line %r: %s", name, text, exc)
            break
        if event is not None:
            return event
    return MessageEvent(raw=text, received_at=ts)


def is_success(event: Optional[ParsedEvent]) -> bool:
    """Return whether a reply reads as success (anything but error/emergency)."""

    return event is not None and not isinstance(event, (ErrorEvent, EmergencyEvent))


__all__ = [
    "CMD_HOME",
    "CMD_MODE_AUTOMATIC",
    "CMD_MODE_MANUAL",
    "CMD_PAUSE",
    "CMD_RESET",
    "CMD_RESUME",
    "CMD_START_RECIPE",
    "CMD_STATUS",
    "CMD_STOP",
    "CMD_VERSION",
    "ENCODING",
    "LINE_TERMINATOR",
    "LineFramer",
    "MATCHERS",
    "RecipeParameters",
    "decode",
    "encode_move",
    "encode_start_recipe",
    "is_success",
]
