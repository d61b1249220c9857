"""
Background service contract shared by every long running subsystem.

A service is started with ``run()``, which validates its preconditions, launches
the monitor loop on a dedicated thread and waits (bounded) for the loop to
report readiness. ``quit()`` asks the loop to finish and waits (bounded) for it
to report termination. ``status_signal()`` lets a supervisor notice a loop that
ended on its own.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from ..exceptions import (
    ServiceAlreadyRunningError,
    ServiceError,
    ServiceStartError,
    ServiceTimeoutError,
    SignalTimeoutError,
    combine_errors,
)
from .logging import get_logger
from .signal import LifecycleSignal, ServiceState


logger = get_logger(__name__)


class BackgroundService(ABC):
    """Idle -> Running -> Stopped -> Running ... state machine around one monitor thread."""

    def __init__(self, name: str, timeout: float) -> None:
        self._name = name
        self.timeout = timeout
        self._status = LifecycleSignal()
        self._quit = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._error: Optional[BaseException] = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> ServiceState:
        return self._status.state

    @property
    def error(self) -> Optional[BaseException]:
        """Error that ended the most recent monitor loop, if any."""
        return self._error

    def status_signal(self) -> LifecycleSignal:
        return self._status

    def preflight(self) -> None:
        """Synchronous checks performed before the monitor loop is launched."""

    @abstractmethod
    def monitor(self, status: LifecycleSignal, quit_event: threading.Event) -> None:
        """Monitor loop. Must call ``status.open()`` once ready and return when ``quit_event`` is set."""

    def request_stop(self) -> None:
        """Hook to interrupt a loop blocked on something other than ``quit_event``."""

    def is_alive(self) -> bool:
        """Whether the monitor thread of the most recent run is still executing."""
        return self._thread is not None and self._thread.is_alive()

    def run(self) -> None:
        if self._status.is_open():
            raise ServiceAlreadyRunningError(self.name)
        if self.is_alive():
            # a closed signal may precede the thread's return by a moment
            self._thread.join(self.timeout)  # type: ignore[union-attr]
            if self.is_alive():
                raise ServiceAlreadyRunningError(self.name)

        self.preflight()

        # fresh signals per run so nothing from a previous run leaks into this one
        status = LifecycleSignal()
        quit_event = threading.Event()
        self._status = status
        self._quit = quit_event
        self._error = None

        logger.info("starting %s", self.name)
        self._thread = threading.Thread(
            target=self._run_monitor,
            args=(status, quit_event),
            daemon=True,
            name=self.name.replace(" ", "-"),
        )
        self._thread.start()

        try:
            opened = status.wait_until_opened(self.timeout)
        except SignalTimeoutError as exc:
            quit_event.set()
            self.request_stop()
            self._thread.join(self.timeout)
            if self._thread.is_alive():
                logger.error("%s did not exit after failing to start", self.name)
            raise ServiceStartError(self.name, f"not ready within {self.timeout}s") from exc

        if not opened:
            raise ServiceStartError(self.name, f"exited during startup: {self._error}") from self._error

    def quit(self) -> None:
        """Stop the monitor loop; must follow a successful ``run()``."""
        if self._status.state is ServiceState.IDLE:
            if self.is_alive():
                # left behind by a run() that timed out before the loop was ready
                self._quit.set()
                self.request_stop()
                self._thread.join(self.timeout)  # type: ignore[union-attr]
                if self.is_alive():
                    raise ServiceTimeoutError(self.name, f"did not stop within {self.timeout}s")
                return
            logger.warning("%s was never started, nothing to terminate", self.name)
            return

        logger.info("terminating %s", self.name)
        self._quit.set()
        self.request_stop()
        try:
            self._status.wait_until_closed(self.timeout)
        except SignalTimeoutError as exc:
            raise ServiceTimeoutError(self.name, f"did not stop within {self.timeout}s") from exc
        if self._thread is not None:
            self._thread.join(self.timeout)

    def _run_monitor(self, status: LifecycleSignal, quit_event: threading.Event) -> None:
        try:
            self.monitor(status, quit_event)
        except Exception as exc:
            self._error = exc
            logger.error("%s exited with error: %s", self.name, exc)
        finally:
            status.close()
            logger.info("%s finished", self.name)


def start_services(services: Sequence[BackgroundService]) -> None:
    """Run services in order; on failure quit the ones already started and raise the combined error."""
    started: list[BackgroundService] = []
    for service in services:
        try:
            service.run()
        except Exception as exc:
            errors: list[Optional[BaseException]] = [exc]
            for running in reversed(started):
                try:
                    running.quit()
                except ServiceError as quit_exc:
                    errors.append(quit_exc)
            raise combine_errors(*errors) from exc  # type: ignore[misc]
        started.append(service)


def watch(
    services: Sequence[BackgroundService],
    trigger: Optional[threading.Event] = None,
    wake_interval: float = 1.0,
) -> Optional[BaseException]:
    """Block until one service stops on its own or ``trigger`` is set, then quit every other service.

    Returns the combined error of the failed service and of any service that did
    not stop cleanly, or None.
    """
    trigger = trigger or threading.Event()
    stopped: list[BackgroundService] = []
    lock = threading.Lock()

    def _on_close(service: BackgroundService):
        def _callback() -> None:
            with lock:
                stopped.append(service)
            trigger.set()

        return _callback

    for service in services:
        service.status_signal().add_close_callback(_on_close(service))

    while not trigger.wait(wake_interval):
        pass

    with lock:
        source = stopped[0] if stopped else None

    errors: list[Optional[BaseException]] = []
    if source is not None:
        logger.error("%s stopped unexpectedly", source.name)
        if source.error is not None:
            errors.append(ServiceError(source.name, str(source.error)))
        else:
            errors.append(ServiceError(source.name, "stopped unexpectedly"))
    else:
        logger.info("termination requested")

    for service in services:
        if service is source:
            continue
        try:
            service.quit()
        except ServiceError as exc:
            errors.append(exc)

    return combine_errors(*errors)
