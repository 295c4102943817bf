"""Listening socket creation."""

import logging
import socket

from dotserve.domain.correlation_id import CorrelationLoggerAdapter

SOCKET_LOGGER = CorrelationLoggerAdapter(logging.getLogger("dotserve.socket"), {})

ACCEPT_POLL_SECONDS = 0.5


def create_server_socket(host: str, port: int) -> socket.socket:
    """Bind and listen on host:port; port 0 lets the OS pick an ephemeral port."""
    try:
        server_socket = socket.create_server((host, port))
    except OSError as error:
        SOCKET_LOGGER.critical(
            "Failed to bind listener",
            extra={"event": "bind_failed", "host": host, "port": port, "errno": error.errno},
        )
        raise
    server_socket.settimeout(ACCEPT_POLL_SECONDS)
    return server_socket


def bound_address(server_socket: socket.socket) -> tuple[str, int]:
    """Return the (host, port) the listener actually bound to."""
    host, port = server_socket.getsockname()[:2]
    return host, port


def probe_port(host: str, port: int) -> None:
    """Bind and immediately release host:port, raising OSError when unavailable."""
    with socket.create_server((host, port)):
        pass
