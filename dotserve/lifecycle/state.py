"""Server lifecycle state management."""

import enum
import logging
import socket
import threading
import time
from dataclasses import dataclass

from dotserve.domain.correlation_id import CorrelationLoggerAdapter

LIFECYCLE_LOGGER = CorrelationLoggerAdapter(logging.getLogger("dotserve.lifecycle"), {})


class ServerState(enum.Enum):
    """Phases of a single server run."""

    NOT_STARTED = "not_started"
    SERVING = "serving"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


@dataclass
class _Connection:
    sock: socket.socket
    busy: bool = False
    closed: bool = False


def _shutdown_socket(sock: socket.socket) -> None:
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        # Peer already gone.
        pass


class ServerLifecycle:
    """Manages draining state and tracks the connection owned by each worker thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._draining_event = threading.Event()
        self._connections: dict[threading.Thread, _Connection] = {}

    def should_stop(self) -> bool:
        """Check if the server should stop accepting new connections."""
        return self._stop_event.is_set()

    def is_draining(self) -> bool:
        """Check if the server is in draining mode."""
        return self._draining_event.is_set()

    def register_connection(self, thread: threading.Thread, sock: socket.socket) -> None:
        """Track a worker thread and the client socket it serves."""
        with self._lock:
            self._connections[thread] = _Connection(sock)

    def cleanup_connection(self, thread: threading.Thread) -> None:
        """Remove a worker thread from tracking."""
        with self._lock:
            self._connections.pop(thread, None)

    def has_worker(self, thread: threading.Thread) -> bool:
        """Return True when the worker is currently tracked."""
        with self._lock:
            return thread in self._connections

    def active_worker_count(self) -> int:
        """Return the number of currently tracked worker threads."""
        with self._lock:
            return len(self._connections)

    def mark_busy(self, thread: threading.Thread) -> bool:
        """Flag the worker as handling a request.

        Returns False when its connection was already closed as idle by a
        drain, in which case the request must not be processed.
        """
        with self._lock:
            record = self._connections.get(thread)
            if record is None:
                return True
            if record.closed:
                return False
            record.busy = True
            return True

    def mark_idle(self, thread: threading.Thread) -> None:
        """Flag the worker as waiting for the next request on its connection."""
        with self._lock:
            record = self._connections.get(thread)
            if record is not None:
                record.busy = False

    def begin_draining(self) -> bool:
        """Stop accepting, close idle connections and let busy ones finish.

        Returns False when draining had already begun.
        """
        with self._lock:
            if self._draining_event.is_set():
                return False
            self._draining_event.set()
            self._stop_event.set()
            idle = [
                record
                for record in self._connections.values()
                if not record.busy and not record.closed
            ]
            for record in idle:
                record.closed = True

        for record in idle:
            _shutdown_socket(record.sock)
        LIFECYCLE_LOGGER.info(
            "Beginning graceful shutdown",
            extra={"event": "draining_started", "closed_connections": len(idle)},
        )
        return True

    def force_close_connections(self) -> int:
        """Shut down every connection still open and return how many there were."""
        with self._lock:
            remaining = [
                record for record in self._connections.values() if not record.closed
            ]
            for record in remaining:
                record.closed = True

        for record in remaining:
            _shutdown_socket(record.sock)
        return len(remaining)

    def wait_for_workers(self, timeout: float) -> bool:
        """Wait for all worker threads to complete within the timeout."""
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                self._connections = {
                    w: record for w, record in self._connections.items() if w.is_alive()
                }
                active_workers = list(self._connections)
            if not active_workers:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                LIFECYCLE_LOGGER.warning(
                    "Shutdown timeout exceeded",
                    extra={
                        "event": "shutdown_timeout",
                        "remaining_workers": len(active_workers),
                    },
                )
                return False
            for worker in active_workers:
                worker.join(timeout=min(0.1, remaining))
                if time.monotonic() >= deadline:
                    break
