"""Mirrored device state: pure event reducer plus a publishing holder."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Callable, Iterable, Optional

from models.device_state import Axis, DeviceState
from models.events import (
    EmergencyEvent,
    HomeEvent,
    HomeStatus,
    LimitEvent,
    LimitSide,
    ModeEvent,
    MovementEvent,
    ParsedEvent,
    PositionEvent,
    StatusEvent,
)

from .listeners import ListenerSet, Unsubscribe

LOGGER = logging.getLogger("silar.state")


def _apply_status(state: DeviceState, event: StatusEvent) -> DeviceState:
    if event.mode is not None:
        state = replace(state, mode=event.mode)
    if event.emergency_stop is not None:
        state = replace(state, emergency_stop=event.emergency_stop)
    for axis, position, home, limit_min, limit_max in (
        (Axis.Y, event.position_y, event.home_y, event.limit_min_y, event.limit_max_y),
        (Axis.Z, event.position_z, event.home_z, event.limit_min_z, event.limit_max_z),
    ):
        changes = {
            name: value
            for name, value in (
                ("position", position),
                ("at_home", home),
                ("limit_min", limit_min),
                ("limit_max", limit_max),
            )
            if value is not None
        }
        if changes:
            state = state.with_axis(axis, **changes)
    if state.emergency_stop:
        state = _halt_all(state)
    return state


def _halt_all(state: DeviceState) -> DeviceState:
    return replace(
        state,
        axis_y=replace(state.axis_y, moving=False),
        axis_z=replace(state.axis_z, moving=False),
    )


def _home(state: DeviceState, axis: Axis, event: HomeEvent) -> DeviceState:
    if event.status is HomeStatus.SEARCHING:
        return state.with_axis(axis, moving=True)
    return state.with_axis(axis, at_home=True, position=0, moving=False)


def apply_event(state: DeviceState, event: ParsedEvent) -> DeviceState:
    """Return the state that results from ``event``; ``state`` is untouched.

    Deterministic: ``last_update`` is taken from the event's receipt time.
    Error and message events only advance ``last_update``.
    """

    if isinstance(event, ModeEvent):
        state = replace(state, mode=event.mode)
    elif isinstance(event, PositionEvent):
        state = state.with_axis(event.axis, position=event.position, moving=False)
    elif isinstance(event, MovementEvent):
        state = state.with_axis(event.axis, moving=not event.interrupted)
    elif isinstance(event, LimitEvent):
        flag = "limit_min" if event.side is LimitSide.MIN else "limit_max"
        state = state.with_axis(event.axis, moving=False, **{flag: True})
    elif isinstance(event, HomeEvent):
        for axis in (event.axis,) if event.axis is not None else tuple(Axis):
            state = _home(state, axis, event)
    elif isinstance(event, EmergencyEvent):
        state = replace(state, emergency_stop=event.active)
        if event.active:
            state = _halt_all(state)
    elif isinstance(event, StatusEvent):
        state = _apply_status(state, event)
    return replace(state, last_update=event.received_at)


class DeviceStateMachine:
    """Holds the current :class:`DeviceState` and publishes every change.

    Events are applied one at a time under a re-entrant lock and subscribers
    are called while it is held, so every subscriber sees each state exactly
    once and in arrival order. Subscribers may read :attr:`state` but must not
    block waiting on the device.
    """

    def __init__(self, initial: Optional[DeviceState] = None, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or LOGGER
        self._lock = threading.RLock()
        self._state = initial or DeviceState()
        self._subscribers: ListenerSet[DeviceState] = ListenerSet("state", self._logger)

    @property
    def state(self) -> DeviceState:
        with self._lock:
            return self._state

    def subscribe(self, callback: Callable[[DeviceState], None]) -> Unsubscribe:
        return self._subscribers.add(callback)

    def apply(self, event: ParsedEvent) -> DeviceState:
        with self._lock:
            self._state = apply_event(self._state, event)
            self._subscribers.notify(self._state)
            return self._state

    def set_moving(self, axes: Iterable[Axis], moving: bool) -> DeviceState:
        """Optimistically flag axes as moving (or not) ahead of device reports."""

        with self._lock:
            state = self._state
            for axis in axes:
                state = state.with_axis(axis, moving=moving)
            if state == self._state:
                return state
            self._state = state
            self._subscribers.notify(state)
            return state


__all__ = ["DeviceStateMachine", "apply_event"]
