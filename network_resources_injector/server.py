"""
HTTPS listener service.

uvicorn serves the FastAPI application on a dedicated thread. The listener's
SSLContext comes from the TLS identity, whose handshake callback switches every
new connection to the most recently loaded certificate.
"""

import math
import threading
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI

from .core.logging import get_logger
from .core.service import BackgroundService
from .core.signal import LifecycleSignal
from .exceptions import ServiceError, ServicePreflightError, ServiceStartError
from .services.keycert import KeyCertIdentity


logger = get_logger(__name__)

SERVICE_NAME = "mutate server"
# largest request head (request line plus headers) accepted from a client
MAX_HEADER_BYTES = 1 << 20


class MutateServer(BackgroundService):
    def __init__(
        self,
        app: FastAPI,
        identity: KeyCertIdentity,
        address: str,
        port: int,
        timeout: float,
        startup_interval: float = 0.05,
        keep_alive_timeout: int = 5,
        limit_concurrency: Optional[int] = None,
        backlog: int = 2048,
    ) -> None:
        super().__init__(SERVICE_NAME, timeout)
        self.app = app
        self.identity = identity
        self.address = address
        self.port = port
        self.startup_interval = startup_interval
        self.keep_alive_timeout = keep_alive_timeout
        self.limit_concurrency = limit_concurrency
        self.backlog = backlog
        self._server: Optional[uvicorn.Server] = None

    def build_server(self) -> uvicorn.Server:
        config = uvicorn.Config(
            self.app,
            host=self.address,
            port=self.port,
            log_config=None,
            lifespan="off",
            access_log=False,
            # h11 enforces the request head limit
            http="h11",
            h11_max_incomplete_event_size=MAX_HEADER_BYTES,
            timeout_keep_alive=self.keep_alive_timeout,
            limit_concurrency=self.limit_concurrency,
            backlog=self.backlog,
            # leave room inside the quit timeout for the loop to notice should_exit
            timeout_graceful_shutdown=max(1, math.floor(self.timeout / 2)),
        )
        config.load()
        config.ssl = self.identity.get_context()
        return uvicorn.Server(config)

    def preflight(self) -> None:
        if not self.address:
            raise ServicePreflightError(self.name, "listen address must be set")
        if self.port < 1 or self.port > 65535:
            raise ServicePreflightError(self.name, f"invalid port {self.port}")

    def run(self) -> None:
        """Start listening; bind errors that surface within the startup interval are raised here."""
        super().run()
        time.sleep(self.startup_interval)
        if self.status_signal().is_closed() and self.error is not None:
            raise ServiceStartError(self.name, str(self.error)) from self.error

    def monitor(self, status: LifecycleSignal, quit_event: threading.Event) -> None:
        server = self.build_server()
        self._server = server
        logger.info("starting HTTPS listener on %s:%d", self.address, self.port)
        status.open()
        try:
            server.run()
        except SystemExit as exc:
            # uvicorn exits the process when it cannot bind
            raise ServiceError(self.name, f"listener failed to start (exit code {exc.code})") from exc
        finally:
            self._server = None

        if not quit_event.is_set():
            raise ServiceError(self.name, "listener stopped unexpectedly")
        logger.info("HTTPS listener on %s:%d is stopped", self.address, self.port)

    def request_stop(self) -> None:
        server = self._server
        if server is not None:
            server.should_exit = True
