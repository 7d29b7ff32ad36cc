"""Outbound command serialisation and response waiting."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from models.events import ParsedEvent

from .connection import ConnectionManager
from .errors import NotConnected, ResponseTimeout

LOGGER = logging.getLogger("silar.dispatcher")

DEFAULT_TIMEOUT_S = 5.0

ResponseFilter = Callable[[ParsedEvent], bool]


@dataclass
class PendingCommand:
    """The one request currently waiting for a reply."""

    command_text: str
    submitted_at: float
    timeout: float
    accept: Optional[ResponseFilter] = None
    response: Optional[ParsedEvent] = None
    done: threading.Event = field(default_factory=threading.Event)


class CommandDispatcher:
    """Writes commands and optionally blocks for the next decoded event.

    The firmware tags nothing with a request id, so a waiting command is
    satisfied by whatever event arrives next, unless the caller narrows it
    with ``accept``. One waiter at a time: a second waiting send blocks on
    the slot until the first completes.
    """

    def __init__(self, link: ConnectionManager, logger: Optional[logging.Logger] = None) -> None:
        self._link = link
        self._logger = logger or LOGGER
        self._wait_slot = threading.Lock()
        self._pending_lock = threading.Lock()
        self._pending: Optional[PendingCommand] = None

    @property
    def pending(self) -> Optional[PendingCommand]:
        with self._pending_lock:
            return self._pending

    def send(
        self,
        command: str,
        *,
        wait_for_response: bool = False,
        timeout: float = DEFAULT_TIMEOUT_S,
        accept: Optional[ResponseFilter] = None,
    ) -> Optional[ParsedEvent]:
        """Write ``command``; when waiting, return the event that answered it."""

        if not self._link.is_connected():
            raise NotConnected("Controller is not connected.")
        if not wait_for_response:
            self._link.write_line(command)
            return None

        deadline = time.monotonic() + timeout
        if not self._wait_slot.acquire(timeout=max(0.0, timeout)):
            raise ResponseTimeout(f"Timed out queueing {command!r} behind another request")
        try:
            pending = PendingCommand(command, time.monotonic(), timeout, accept)
            with self._pending_lock:
                self._pending = pending
            try:
                self._link.write_line(command)
                remaining = max(0.0, deadline - time.monotonic())
                if not pending.done.wait(remaining):
                    raise ResponseTimeout(f"Timeout waiting for response to {command!r}")
            finally:
                with self._pending_lock:
                    if self._pending is pending:
                        self._pending = None
        finally:
            self._wait_slot.release()

        self._logger.debug("%s answered by %s", command, pending.response)
        return pending.response

    def on_event(self, event: ParsedEvent) -> None:
        """Offer a decoded event to the waiting command, if any."""

        with self._pending_lock:
            pending = self._pending
            if pending is None or pending.done.is_set():
                return
            if pending.accept is not None and not pending.accept(event):
                return
            pending.response = event
            self._pending = None
        pending.done.set()


__all__ = ["CommandDispatcher", "DEFAULT_TIMEOUT_S", "PendingCommand", "ResponseFilter"]
