"""Errors raised by the SILAR controller.

Each class carries the short code the lab software reports to operators.
"""

from __future__ import annotations


class DeviceError(RuntimeError):
    """Raised when a controller operation cannot be completed."""

    code = "E999"


class ConnectError(DeviceError):
    """The serial port could not be opened."""

    code = "E001"


class NoDeviceFound(ConnectError):
    """Port discovery found no candidate serial port."""


class NotConnected(DeviceError):
    """An operation needs an open link and there is none."""

    code = "E001"


class WriteError(DeviceError):
    """The transport rejected a write."""

    code = "E001"


class ResponseTimeout(DeviceError):
    """No line arrived before the command timeout."""

    code = "E002"


class LimitReached(DeviceError):
    """The axis already sits on the limit switch in the requested direction."""

    code = "E003"


class EmergencyActive(DeviceError):
    """Motion refused while the emergency stop is latched."""

    code = "E004"


class InvalidArgument(DeviceError, ValueError):
    code = "E005"


class ProtocolDecodeAnomaly(DeviceError):
    """A line matched a category but its payload was malformed (never escapes decode)."""


__all__ = [
    "ConnectError",
    "DeviceError",
    "EmergencyActive",
    "InvalidArgument",
    "LimitReached",
    "NoDeviceFound",
    "NotConnected",
    "ProtocolDecodeAnomaly",
    "ResponseTimeout",
    "WriteError",
]
