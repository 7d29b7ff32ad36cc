"""Serial port enumeration and controller-board detection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

import serial.tools.list_ports

LOGGER = logging.getLogger("silar.discovery")

KNOWN_NAME_FRAGMENTS = ("arduino", "ch340", "ftdi", "silicon labs", "mega", "uno", "nano")

# USB (vid, pid) pairs of boards and USB-serial bridges seen on SILAR rigs.
KNOWN_USB_IDS = frozenset(
    {
        (0x2341, 0x0043),  # Arduino Uno
        (0x2341, 0x0001),  # Arduino Uno (old)
        (0x2341, 0x0010),  # Arduino Mega 2560
        (0x2341, 0x0042),  # Arduino Mega 2560 R3
        (0x2341, 0x0058),  # Arduino Nano Every
        (0x2A03, 0x0043),  # Arduino.org Uno
        (0x1A86, 0x7523),  # CH340
        (0x0403, 0x6001),  # FTDI FT232R
        (0x10C4, 0xEA60),  # Silicon Labs CP210x
    }
)
KNOWN_VENDOR_IDS = frozenset({0x2341, 0x2A03})


@dataclass(frozen=True)
class PortInfo:
    """Whatever identifying metadata the platform reports for a port."""

    device: str
    description: Optional[str] = None
    manufacturer: Optional[str] = None
    serial_number: Optional[str] = None
    vid: Optional[int] = None
    pid: Optional[int] = None

    @classmethod
    def from_list_ports(cls, port: object) -> "PortInfo":
        return cls(
            device=str(getattr(port, "device", "") or ""),
            description=getattr(port, "description", None),
            manufacturer=getattr(port, "manufacturer", None),
            serial_number=getattr(port, "serial_number", None),
            vid=getattr(port, "vid", None),
            pid=getattr(port, "pid", None),
        )

    @property
    def has_usb_id(self) -> bool:
        return self.vid is not None or self.pid is not None

    @property
    def label(self) -> str:
        if self.description and self.description != self.device:
            return f"{self.device} - {self.description}"
        return self.device


def list_ports() -> List[PortInfo]:
    """Return every visible serial port, sorted by device name."""

    ports = [PortInfo.from_list_ports(port) for port in serial.tools.list_ports.comports()]
    ports.sort(key=lambda info: info.device)
    return ports


def port_labels(ports: Optional[Iterable[PortInfo]] = None) -> List[str]:
    """Return display labels with duplicates removed, order preserved."""

    seen: set[str] = set()
    labels: List[str] = []
    for info in list_ports() if ports is None else ports:
        if info.label not in seen:
            seen.add(info.label)
            labels.append(info.label)
    return labels


def is_known_device(info: PortInfo) -> bool:
    """Return whether a port looks like a supported controller board."""

    names = " ".join(part for part in (info.manufacturer, info.description) if part).lower()
    if any(fragment in names for fragment in KNOWN_NAME_FRAGMENTS):
        return True
    if info.vid is not None and info.pid is not None and (info.vid, info.pid) in KNOWN_USB_IDS:
        return True
    return info.vid in KNOWN_VENDOR_IDS


def detect_port(ports: Optional[Sequence[PortInfo]] = None) -> Optional[str]:
    """Pick the most likely controller port; ``None`` only when no port exists."""

    candidates = list_ports() if ports is None else list(ports)
    if not candidates:
        LOGGER.warning("No serial ports available")
        return None

    for info in candidates:
        if is_known_device(info):
            LOGGER.info("Controller board detected on %s", info.device)
            return info.device

    fallback = next((info for info in candidates if info.has_usb_id), candidates[0])
    LOGGER.warning("No known controller board found; falling back to %s", fallback.device)
    return fallback.device


__all__ = [
    "KNOWN_NAME_FRAGMENTS",
    "KNOWN_USB_IDS",
    "PortInfo",
    "detect_port",
    "is_known_device",
    "list_ports",
    "port_labels",
]
