"""Main connection acceptance loop."""

import logging
import socket
import struct
import threading

from dotserve.domain.correlation_id import CorrelationLoggerAdapter
from dotserve.lifecycle.state import ServerLifecycle
from dotserve.transport.context import WorkerContext
from dotserve.transport.worker import handle_client

ACCEPT_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("dotserve.transport.accept"), {}
)

# l_onoff=1, l_linger=0: close() sends RST instead of FIN.
_RESET_ON_CLOSE = struct.pack("ii", 1, 0)


def _reject_connection(client_socket: socket.socket, client_addr_str: str) -> None:
    """Reset a connection that arrived after the server stopped accepting."""
    try:
        client_socket.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, _RESET_ON_CLOSE)
    except OSError:
        pass
    client_socket.close()
    ACCEPT_LOGGER.debug(
        "Connection rejected while stopping",
        extra={"event": "connection_rejected", "client": client_addr_str},
    )


def _handle_accepted_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    """Hand a newly accepted connection to its own worker thread."""
    client_addr_str = f"{client_address[0]}:{client_address[1]}"
    if ACCEPT_LOGGER.logger.isEnabledFor(logging.DEBUG):
        ACCEPT_LOGGER.debug(
            "Client connection accepted",
            extra={"event": "client_accepted", "client": client_addr_str},
        )

    thread = threading.Thread(
        target=handle_client,
        args=(client_socket, client_address, context),
        name=f"dotserve-worker-{client_addr_str}",
        daemon=False,
    )
    context.lifecycle.register_connection(thread, client_socket)
    thread.start()


def run_server(
    server_socket: socket.socket, context: WorkerContext, lifecycle: ServerLifecycle
) -> None:
    """Accept connections until the lifecycle asks to stop, then close the listener."""
    try:
        while True:
            try:
                client_socket, client_address = server_socket.accept()
            except socket.timeout:
                if lifecycle.should_stop():
                    break
                continue
            except OSError as error:
                if lifecycle.should_stop():
                    break
                ACCEPT_LOGGER.error(
                    "Socket accept failed",
                    extra={
                        "event": "accept_error",
                        "error_type": type(error).__name__,
                        "errno": error.errno,
                    },
                )
                continue

            if lifecycle.should_stop():
                _reject_connection(
                    client_socket, f"{client_address[0]}:{client_address[1]}"
                )
                break

            _handle_accepted_client(client_socket, client_address, context)
    finally:
        try:
            server_socket.close()
        except OSError as error:
            ACCEPT_LOGGER.error(
                "Failed to close listener",
                extra={"event": "listener_close_failed", "error_type": type(error).__name__},
            )
        ACCEPT_LOGGER.info("Listener closed", extra={"event": "listener_closed"})
