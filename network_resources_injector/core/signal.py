"""
Lifecycle signal shared between a background task and its supervisor.

A signal starts idle, is opened once the task is ready and closed once the task
has finished. Waits are always bounded.
"""

from __future__ import annotations

import enum
import threading
from typing import Callable, List, Optional

from ..exceptions import SignalTimeoutError


class ServiceState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class LifecycleSignal:
    """Broadcastable open/closed flag with bounded waits and close callbacks."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._state = ServiceState.IDLE
        self._close_callbacks: List[Callable[[], None]] = []

    @property
    def state(self) -> ServiceState:
        with self._cond:
            return self._state

    def is_open(self) -> bool:
        return self.state is ServiceState.RUNNING

    def is_closed(self) -> bool:
        return self.state is ServiceState.STOPPED

    def open(self) -> None:
        with self._cond:
            if self._state is not ServiceState.IDLE:
                return
            self._state = ServiceState.RUNNING
            self._cond.notify_all()

    def close(self) -> None:
        with self._cond:
            if self._state is ServiceState.STOPPED:
                return
            self._state = ServiceState.STOPPED
            callbacks, self._close_callbacks = self._close_callbacks, []
            self._cond.notify_all()
        for callback in callbacks:
            callback()

    def wait_until_opened(self, timeout: float) -> bool:
        """Block until the signal leaves the idle state.

        Returns True when it opened, False when the task closed it without ever
        becoming ready. Raises SignalTimeoutError if neither happens in time.
        """
        with self._cond:
            if not self._cond.wait_for(lambda: self._state is not ServiceState.IDLE, timeout):
                raise SignalTimeoutError(f"timed out after {timeout}s waiting for signal to open")
            return self._state is ServiceState.RUNNING

    def wait_until_closed(self, timeout: float) -> None:
        with self._cond:
            if self._state is ServiceState.IDLE:
                return
            if not self._cond.wait_for(lambda: self._state is ServiceState.STOPPED, timeout):
                raise SignalTimeoutError(f"timed out after {timeout}s waiting for signal to close")

    def add_close_callback(self, callback: Callable[[], None]) -> None:
        """Run callback when the signal closes, immediately if it already has."""
        with self._cond:
            if self._state is not ServiceState.STOPPED:
                self._close_callbacks.append(callback)
                return
        callback()

    def remove_close_callback(self, callback: Callable[[], None]) -> Optional[Callable[[], None]]:
        with self._cond:
            try:
                self._close_callbacks.remove(callback)
            except ValueError:
                return None
            return callback
