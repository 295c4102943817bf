"""Lifecycle of the optional public tunnel in front of the listener."""

import enum
import logging
import threading
import time
from typing import Callable, Optional, Protocol

from dotserve.domain.correlation_id import CorrelationLoggerAdapter

TUNNEL_LOGGER = CorrelationLoggerAdapter(logging.getLogger("dotserve.tunnel"), {})


class TunnelError(Exception):
    """Raised when a tunnel session cannot be opened or closed."""


class TunnelState(enum.Enum):
    ABSENT = "absent"
    ACTIVE = "active"
    STOPPING = "stopping"
    RESTARTING = "restarting"


class RelaySession(Protocol):
    url: str

    def close(self) -> None: ...


class Relay(Protocol):
    def open(
        self,
        target: str,
        on_stop: Callable[..., None],
        on_restart: Callable[..., None],
    ) -> RelaySession: ...

    def shutdown(self) -> None: ...


class TunnelManager:
    """Own the single tunnel session and react to relay stop/restart commands.

    ``_lock`` guards the session handle and state; ``_transition_lock``
    serializes open and close so a stop and a restart never interleave.
    Relay callbacks only spawn a thread and return.
    """

    def __init__(self, relay: Relay, target: str) -> None:
        self.relay = relay
        self.target = target
        self._lock = threading.Lock()
        self._transition_lock = threading.Lock()
        self._session: Optional[RelaySession] = None
        self._state = TunnelState.ABSENT
        self._closed = False
        self._tasks: list[threading.Thread] = []

    @property
    def state(self) -> TunnelState:
        with self._lock:
            return self._state

    @property
    def url(self) -> Optional[str]:
        with self._lock:
            return self._session.url if self._session is not None else None

    def start(self) -> str:
        """Open the tunnel and return its public URL; raises TunnelError."""
        with self._transition_lock:
            return self._open()

    def _open(self) -> str:
        with self._lock:
            if self._closed:
                raise TunnelError("tunnel manager is closed")
        session = self.relay.open(self.target, self._handle_stop, self._handle_restart)
        with self._lock:
            opened_after_close = self._closed
            if not opened_after_close:
                self._session = session
                self._state = TunnelState.ACTIVE
        if opened_after_close:
            TUNNEL_LOGGER.info(
                "Discarding tunnel opened after close",
                extra={"event": "tunnel_discarded", "url": session.url},
            )
            self._close_session(session)
            raise TunnelError("tunnel manager closed while opening")
        TUNNEL_LOGGER.info(
            "Serving externally at %s",
            session.url,
            extra={"event": "tunnel_started", "url": session.url, "target": self.target},
        )
        return session.url

    def _take_session(self, state: TunnelState) -> Optional[RelaySession]:
        with self._lock:
            session = self._session
            self._session = None
            self._state = state if session is not None else TunnelState.ABSENT
            return session

    def _close_session(self, session: RelaySession) -> bool:
        try:
            session.close()
        except TunnelError as error:
            TUNNEL_LOGGER.error(
                "Error closing tunnel: %s",
                error,
                extra={"event": "tunnel_close_failed", "error_type": type(error).__name__},
            )
            return False
        return True

    def _spawn(self, target: Callable[[], None], name: str) -> None:
        thread = threading.Thread(target=target, name=name, daemon=True)
        with self._lock:
            self._tasks = [task for task in self._tasks if task.is_alive()]
            self._tasks.append(thread)
        thread.start()

    def _handle_stop(self, *_args) -> None:
        self._spawn(self._stop, "dotserve-tunnel-stop")

    def _handle_restart(self, *_args) -> None:
        self._spawn(self._restart, "dotserve-tunnel-restart")

    def _stop(self) -> None:
        with self._transition_lock:
            session = self._take_session(TunnelState.STOPPING)
            if session is None:
                return
            TUNNEL_LOGGER.info("Stopping tunnel", extra={"event": "tunnel_stopping"})
            self._close_session(session)
            with self._lock:
                self._state = TunnelState.ABSENT
            TUNNEL_LOGGER.info("Tunnel stopped", extra={"event": "tunnel_stopped"})

    def _restart(self) -> None:
        with self._transition_lock:
            with self._lock:
                if self._closed:
                    return
            session = self._take_session(TunnelState.RESTARTING)
            with self._lock:
                self._state = TunnelState.RESTARTING
            TUNNEL_LOGGER.info("Restarting tunnel", extra={"event": "tunnel_restarting"})
            if session is not None:
                self._close_session(session)
            try:
                self._open()
            except TunnelError as error:
                with self._lock:
                    self._state = TunnelState.ABSENT
                TUNNEL_LOGGER.error(
                    "Error restarting tunnel: %s",
                    error,
                    extra={
                        "event": "tunnel_restart_failed",
                        "error_type": type(error).__name__,
                    },
                )

    def close(self, timeout: Optional[float] = None) -> bool:
        """Close the active session and refuse any later reopen.

        Returns False when a pending transition kept the lock past ``timeout``.
        """
        with self._lock:
            self._closed = True
        acquired = self._transition_lock.acquire(
            timeout=-1 if timeout is None else max(0.0, timeout)
        )
        if not acquired:
            TUNNEL_LOGGER.warning(
                "Tunnel close timed out", extra={"event": "tunnel_close_timeout"}
            )
            return False
        try:
            session = self._take_session(TunnelState.STOPPING)
            if session is None:
                return True
            closed = self._close_session(session)
            with self._lock:
                self._state = TunnelState.ABSENT
            TUNNEL_LOGGER.info("Tunnel closed", extra={"event": "tunnel_closed"})
            return closed
        finally:
            self._transition_lock.release()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Join outstanding stop/restart threads; True if all of them finished."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._lock:
            tasks = list(self._tasks)
        for task in tasks:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            task.join(remaining)
        return not any(task.is_alive() for task in tasks)
