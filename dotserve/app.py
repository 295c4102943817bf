"""Application wiring: pipeline, server, tunnel and signal driven shutdown."""

import logging
import signal
import threading
import time
from typing import Callable, Optional

from dotserve.bootstrap.config import ServeConfig
from dotserve.domain.correlation_id import CorrelationLoggerAdapter
from dotserve.handlers.file_handler import FileHandler
from dotserve.lifecycle.server import HttpServer
from dotserve.lifecycle.tunnel import Relay, TunnelManager
from dotserve.pipeline.composer import build_pipeline

APP_LOGGER = CorrelationLoggerAdapter(logging.getLogger("dotserve.app"), {})

SHUTDOWN_SIGNALS = tuple(
    getattr(signal, name)
    for name in ("SIGINT", "SIGTERM", "SIGHUP", "SIGQUIT")
    if hasattr(signal, name)
)
SIGNAL_POLL_SECONDS = 0.5


def tunnel_target(host: str, port: int) -> str:
    """Address the relay forwards to; wildcard binds are reached via loopback."""
    if host in ("", "0.0.0.0"):
        host = "127.0.0.1"
    return f"{host}:{port}"


def _default_relay_factory() -> Relay:
    # Imported lazily so runs without --ngrok never load the SDK.
    from dotserve.relay.ngrok_relay import (  # pylint: disable=import-outside-toplevel
        NgrokRelay,
    )

    return NgrokRelay()


class Application:
    """Own the server and the optional tunnel for one process run."""

    def __init__(
        self,
        config: ServeConfig,
        relay_factory: Callable[[], Relay] = _default_relay_factory,
    ) -> None:
        self.config = config
        self.relay_factory = relay_factory
        self.server = HttpServer(
            build_pipeline(config, FileHandler(config.directory)),
            host=config.host,
            port=config.port,
            socket_timeout=config.socket_timeout,
        )
        self.relay: Optional[Relay] = None
        self.tunnel: Optional[TunnelManager] = None
        self.stop_requested = threading.Event()
        self._shutdown_lock = threading.Lock()
        self._shut_down = False

    def start(self) -> None:
        """Start serving, then open the tunnel when enabled.

        Raises OSError when the listener cannot be bound and TunnelError when
        the tunnel cannot be established.
        """
        APP_LOGGER.info(
            "Serving directory \"%s\"",
            self.config.directory,
            extra={
                "event": "app_starting",
                "directory": self.config.directory,
                "auth_enabled": self.config.auth_enabled,
                "tunnel_enabled": self.config.enable_tunnel,
            },
        )
        host, port = self.server.start()
        if self.config.enable_tunnel:
            self.relay = self.relay_factory()
            self.tunnel = TunnelManager(self.relay, tunnel_target(host, port))
            self.tunnel.start()

    def _handle_signal(self, signum: int, _frame) -> None:
        if self.stop_requested.is_set():
            APP_LOGGER.info(
                "Shutdown already in progress",
                extra={"event": "signal_ignored", "signal": signum},
            )
            return
        APP_LOGGER.info(
            "Received shutdown signal",
            extra={"event": "signal_received", "signal": signum},
        )
        self.stop_requested.set()

    def install_signal_handlers(self) -> None:
        for signum in SHUTDOWN_SIGNALS:
            signal.signal(signum, self._handle_signal)

    def wait_for_shutdown_signal(self) -> None:
        # Short waits keep the main thread responsive to signal delivery.
        while not self.stop_requested.wait(SIGNAL_POLL_SECONDS):
            pass

    def shutdown(self) -> bool:
        """Close the tunnel, then drain the server, both within one grace deadline."""
        with self._shutdown_lock:
            if self._shut_down:
                return False
            self._shut_down = True

        grace = self.config.shutdown_grace_seconds
        deadline = time.monotonic() + grace
        APP_LOGGER.info(
            "Shutting down", extra={"event": "shutdown_started", "grace_seconds": grace}
        )

        if self.tunnel is not None:
            self.tunnel.close(timeout=max(0.0, deadline - time.monotonic()))
        drained = self.server.shutdown(deadline)
        if self.relay is not None:
            self.relay.shutdown()
        return drained
