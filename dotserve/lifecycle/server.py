"""HTTP server ownership: binding, serving and graceful shutdown."""

import logging
import threading
import time
from typing import Optional

from dotserve.bootstrap.config import DEFAULT_SHUTDOWN_GRACE_SECONDS, DEFAULT_SOCKET_TIMEOUT
from dotserve.bootstrap.socket_factory import (
    ACCEPT_POLL_SECONDS,
    bound_address,
    create_server_socket,
)
from dotserve.domain.correlation_id import CorrelationLoggerAdapter
from dotserve.domain.http_types import Handler
from dotserve.lifecycle.state import ServerLifecycle, ServerState
from dotserve.lifecycle.waitgroup import WaitGroup
from dotserve.transport.accept_loop import run_server
from dotserve.transport.context import WorkerContext

SERVER_LOGGER = CorrelationLoggerAdapter(logging.getLogger("dotserve.server"), {})

FORCE_CLOSE_JOIN_SECONDS = 1.0


class HttpServer:
    """Serve one handler on one listener for the lifetime of the process."""

    def __init__(
        self,
        handler: Handler,
        host: str = "0.0.0.0",
        port: int = 0,
        socket_timeout: float = DEFAULT_SOCKET_TIMEOUT,
    ) -> None:
        self.handler = handler
        self.host = host
        self.port = port
        self.socket_timeout = socket_timeout
        self.lifecycle = ServerLifecycle()
        self._lock = threading.Lock()
        self._state = ServerState.NOT_STARTED
        self._serving = WaitGroup()
        self._address: Optional[tuple[str, int]] = None

    @property
    def state(self) -> ServerState:
        with self._lock:
            return self._state

    @property
    def address(self) -> Optional[tuple[str, int]]:
        return self._address

    @property
    def url(self) -> Optional[str]:
        if self._address is None:
            return None
        return f"http://{self._address[0]}:{self._address[1]}"

    def start(self) -> tuple[str, int]:
        """Bind the listener and start accepting on a background thread.

        Returns the address actually bound, which differs from the configured
        one when port 0 was requested.
        """
        with self._lock:
            if self._state is not ServerState.NOT_STARTED:
                raise RuntimeError(f"server cannot start from state {self._state.value}")
            server_socket = create_server_socket(self.host, self.port)
            self._address = bound_address(server_socket)
            context = WorkerContext(self.handler, self.lifecycle, self.socket_timeout)
            self._serving.add(1)
            thread = threading.Thread(
                target=self._serve,
                args=(server_socket, context),
                name="dotserve-accept",
                daemon=True,
            )
            thread.start()
            self._state = ServerState.SERVING

        SERVER_LOGGER.info(
            "Serving internally at %s",
            self.url,
            extra={
                "event": "server_listening",
                "host": self._address[0],
                "port": self._address[1],
                "url": self.url,
            },
        )
        return self._address

    def _serve(self, server_socket, context: WorkerContext) -> None:
        try:
            run_server(server_socket, context, self.lifecycle)
        finally:
            self._serving.done()

    def shutdown(self, deadline: Optional[float] = None) -> bool:
        """Drain connections until ``deadline`` (a ``time.monotonic`` value).

        Returns True when every connection finished on its own. Calls made
        while already shutting down or stopped are no-ops returning False.
        """
        with self._lock:
            if self._state is not ServerState.SERVING:
                SERVER_LOGGER.info(
                    "Shutdown ignored",
                    extra={"event": "shutdown_ignored", "state": self._state.value},
                )
                return False
            self._state = ServerState.SHUTTING_DOWN

        if deadline is None:
            deadline = time.monotonic() + DEFAULT_SHUTDOWN_GRACE_SECONDS

        self.lifecycle.begin_draining()
        SERVER_LOGGER.info(
            "Waiting for active connections to complete",
            extra={
                "event": "shutdown_waiting",
                "grace_seconds": round(max(0.0, deadline - time.monotonic()), 3),
            },
        )
        drained = self.lifecycle.wait_for_workers(max(0.0, deadline - time.monotonic()))
        if not drained:
            closed = self.lifecycle.force_close_connections()
            SERVER_LOGGER.warning(
                "Closing connections still open after the grace period",
                extra={"event": "connections_force_closed", "closed_connections": closed},
            )
            self.lifecycle.wait_for_workers(FORCE_CLOSE_JOIN_SECONDS)

        # The accept loop notices the stop flag within one poll interval.
        if not self._serving.wait(
            max(deadline - time.monotonic(), 2 * ACCEPT_POLL_SECONDS)
        ):
            SERVER_LOGGER.error(
                "Accept loop did not exit", extra={"event": "accept_loop_stuck"}
            )

        with self._lock:
            self._state = ServerState.STOPPED
        SERVER_LOGGER.info(
            "Server shutdown complete",
            extra={
                "event": "server_stopped",
                "drained": drained,
                "remaining_workers": self.lifecycle.active_worker_count(),
            },
        )
        return drained
