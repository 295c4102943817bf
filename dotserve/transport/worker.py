"""Worker thread logic for handling individual client connections."""

import logging
import socket
import threading
from dataclasses import dataclass
from typing import Optional

from dotserve.bootstrap.config import MAX_BODY_BYTES, SECURITY_HEADERS
from dotserve.domain.correlation_id import (
    CorrelationLoggerAdapter,
    clear_correlation_id,
    generate_correlation_id,
    set_correlation_id,
)
from dotserve.domain.http_types import HttpRequest
from dotserve.domain.response_builders import (
    bad_request_response,
    entity_too_large_response,
)
from dotserve.pipeline.io import adapt_to_request_version, receive_request, send_response
from dotserve.pipeline.validation import RequestEntityTooLarge
from dotserve.transport.context import WorkerContext

WORKER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("dotserve.transport.worker"), {}
)


def _read_request_with_validation(
    client_socket: socket.socket,
    buffer: bytes,
    client_addr_str: str,
) -> tuple[Optional[HttpRequest], bytes, bool]:
    """Read a request from the socket while enforcing size limits."""

    try:
        request, buffer = receive_request(client_socket, buffer, client_addr_str)
    except RequestEntityTooLarge:
        WORKER_LOGGER.warning(
            "Request size exceeded limit",
            extra={
                "event": "body_size_exceeded",
                "client": client_addr_str,
                "limit": MAX_BODY_BYTES,
            },
        )
        send_response(client_socket, entity_too_large_response(SECURITY_HEADERS))
        return None, b"", True
    except ValueError:
        WORKER_LOGGER.warning(
            "Malformed request received",
            extra={"event": "malformed_request", "client": client_addr_str},
        )
        send_response(client_socket, bad_request_response(None, SECURITY_HEADERS))
        return None, b"", True

    if request is None:
        if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            WORKER_LOGGER.debug(
                "Client disconnected",
                extra={"event": "client_disconnected", "client": client_addr_str},
            )
        return None, buffer, True
    return request, buffer, False


def _process_request(
    request: HttpRequest,
    context: WorkerContext,
    client_socket: socket.socket,
) -> bool:
    response = context.handler(request)
    adapt_to_request_version(request, response)
    if context.lifecycle.is_draining():
        response.close_connection = True
    send_response(client_socket, response, include_body=request.method != "HEAD")
    return response.close_connection


@dataclass
class _WorkerResources:
    thread: threading.Thread
    client_socket: socket.socket
    client_addr_str: str


def _cleanup_worker(context: WorkerContext, resources: _WorkerResources) -> None:
    context.lifecycle.cleanup_connection(resources.thread)

    try:
        resources.client_socket.shutdown(socket.SHUT_WR)
    except OSError:
        pass
    resources.client_socket.close()

    WORKER_LOGGER.debug(
        "Socket closed",
        extra={"event": "socket_closed", "client": resources.client_addr_str},
    )
    clear_correlation_id()


def handle_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    """Process requests on a client socket until the connection is closed."""
    buffer = b""
    lifecycle = context.lifecycle
    current_thread = threading.current_thread()
    client_socket.settimeout(context.socket_timeout)
    client_addr_str = f"{client_address[0]}:{client_address[1]}"
    resources = _WorkerResources(current_thread, client_socket, client_addr_str)

    try:
        while True:
            set_correlation_id(generate_correlation_id())

            if lifecycle.is_draining():
                break

            request, buffer, should_terminate = _read_request_with_validation(
                client_socket, buffer, client_addr_str
            )
            if should_terminate:
                break

            if not lifecycle.mark_busy(current_thread):
                break
            try:
                should_terminate_connection = _process_request(
                    request, context, client_socket
                )
            finally:
                lifecycle.mark_idle(current_thread)

            WORKER_LOGGER.debug(
                "Request processing complete",
                extra={
                    "event": "request_complete",
                    "client": client_addr_str,
                    "method": request.method,
                    "route": request.path,
                },
            )
            clear_correlation_id()

            if should_terminate_connection:
                break
    except TimeoutError:
        WORKER_LOGGER.debug(
            "Idle connection timed out",
            extra={"event": "connection_timeout", "client": client_addr_str},
        )
    except (ConnectionError, OSError, UnicodeDecodeError) as error:
        WORKER_LOGGER.error(
            "Error handling client connection",
            extra={
                "event": "connection_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
        )
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Unexpected error in worker",
            extra={
                "event": "worker_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
            exc_info=True,
        )
    finally:
        _cleanup_worker(context, resources)
