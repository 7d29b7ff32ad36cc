"""Thread-safe callback registry with unregister handles."""

from __future__ import annotations

import logging
import threading
from itertools import count
from typing import Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")

Unsubscribe = Callable[[], None]


class ListenerSet(Generic[T]):
    """Fan a value out to every registered callback.

    Callbacks run on the notifying thread in registration order. A callback
    that raises is logged and does not stop delivery to the others.
    """

    def __init__(self, name: str, logger: Optional[logging.Logger] = None) -> None:
        self._name = name
        self._logger = logger or logging.getLogger("silar.listeners")
        self._counter = count(1)
        self._listeners: Dict[int, Callable[[T], None]] = {}
        self._lock = threading.Lock()

    def add(self, callback: Callable[[T], None]) -> Unsubscribe:
        if callback is None:
            raise ValueError("callback must not be None")
        token = next(self._counter)
        with self._lock:
            self._listeners[token] = callback

        def _unregister() -> None:
            with self._lock:
                self._listeners.pop(token, None)

        return _unregister

    def notify(self, value: T) -> None:
        with self._lock:
            listeners = list(self._listeners.values())
        for listener in listeners:
            try:
                listener(value)
            except Exception:
                self._logger.exception("%s listener raised", self._name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)


__all__ = ["ListenerSet", "Unsubscribe"]
