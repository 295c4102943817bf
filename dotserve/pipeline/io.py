"""HTTP Input/Output operations."""

import logging
import socket
import urllib.parse
from typing import Optional, Tuple

from dotserve.bootstrap.config import HEADER_DELIMITER, MAX_BODY_BYTES
from dotserve.domain.correlation_id import (
    CorrelationLoggerAdapter,
    adopt_incoming_correlation_id,
    get_correlation_id,
)
from dotserve.domain.http_types import HttpRequest, HttpResponse
from dotserve.pipeline.validation import RequestEntityTooLarge

IO_LOGGER = CorrelationLoggerAdapter(logging.getLogger("dotserve.io"), {})

MAX_HEADER_BYTES = 64 * 1024


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Convert raw header lines into a lowercase-keyed dictionary."""
    parsed = {}
    for line in lines:
        name, separator, value = line.partition(":")
        if not separator or not name.strip():
            continue
        parsed[name.strip().lower()] = value.strip()
    return parsed


def parse_request_line(request_line: str) -> Tuple[str, str, str, str]:
    """Parse the method, decoded path, raw query and version from the request line."""
    try:
        method, target, version = request_line.split(" ", 2)
    except ValueError as exc:
        raise ValueError("Invalid request line") from exc
    if not version.startswith("HTTP/"):
        raise ValueError("Invalid HTTP version")

    parsed_target = urllib.parse.urlsplit(target)
    path = urllib.parse.unquote(parsed_target.path)
    return method.upper(), path, parsed_target.query, version.upper()


def determine_content_length(headers: dict[str, str]) -> int:
    """Validate and return the declared Content-Length for the request."""
    header_value = headers.get("content-length")
    if header_value is None:
        return 0
    try:
        content_length = int(header_value)
    except ValueError as exc:
        raise ValueError("Invalid Content-Length") from exc
    if content_length < 0:
        raise ValueError("Negative Content-Length")
    if content_length > MAX_BODY_BYTES:
        raise RequestEntityTooLarge
    return content_length


def receive_request(
    client_socket: socket.socket, buffer: bytes, client: str = "-"
) -> Tuple[Optional[HttpRequest], bytes]:
    """Read bytes from the socket until a complete request is available."""
    while HEADER_DELIMITER not in buffer:
        if len(buffer) > MAX_HEADER_BYTES:
            raise RequestEntityTooLarge
        chunk = client_socket.recv(4096)
        if not chunk:
            return None, b""
        buffer += chunk

    header_block, remainder = buffer.split(HEADER_DELIMITER, 1)
    header_lines = header_block.decode("latin-1").split("\r\n")
    method, path, query, version = parse_request_line(header_lines[0])
    headers = parse_headers(header_lines[1:])

    adopt_incoming_correlation_id(headers.get("x-request-id"))

    content_length = determine_content_length(headers)

    while len(remainder) < content_length:
        chunk = client_socket.recv(4096)
        if not chunk:
            return None, b""
        remainder += chunk

    body = remainder[:content_length]
    leftover = remainder[content_length:]
    IO_LOGGER.debug("Parsed request", extra={"method": method, "route": path})
    request = HttpRequest(method, path, headers, body, client, query, version)
    return request, leftover


BODILESS_STATUSES = {204, 304}


def adapt_to_request_version(request: HttpRequest, response: HttpResponse) -> None:
    """Fit the response framing to an HTTP/1.0 client.

    HTTP/1.0 has no chunked coding and closes by default, so chunked streams
    become close-delimited and only an explicit keep-alive is honoured.
    """
    if request.version != "HTTP/1.0":
        return
    if request.headers.get("connection", "").lower() != "keep-alive":
        response.close_connection = True
    if response.use_chunked:
        response.use_chunked = False
        response.close_connection = True
    if not response.close_connection:
        response.headers["Connection"] = "keep-alive"


def _serialize_head(response: HttpResponse) -> bytes:
    headers = dict(response.headers)

    correlation_id = get_correlation_id()
    if correlation_id:
        headers["X-Request-ID"] = correlation_id

    if response.use_chunked:
        headers.pop("Content-Length", None)
        headers["Transfer-Encoding"] = "chunked"
    elif response.body_iter is None and response.status_code not in BODILESS_STATUSES:
        headers["Content-Length"] = str(len(response.body))
    if response.close_connection:
        headers["Connection"] = "close"
    header_lines = [response.status_line]
    header_lines.extend(f"{name}: {value}" for name, value in headers.items())
    return "\r\n".join(header_lines).encode("latin-1") + b"\r\n\r\n"


def send_response(
    client_socket: socket.socket, response: HttpResponse, include_body: bool = True
) -> None:
    """Serialize and send the HTTP response over the socket.

    Streamed bodies without ``use_chunked`` carry their own Content-Length
    header or end when the connection closes. With ``include_body`` False (HEAD requests) only
    the status line and headers are written and the body stream is never
    started.
    """
    header_block = _serialize_head(response)
    if not include_body:
        client_socket.sendall(header_block)
    elif response.body_iter is not None:
        client_socket.sendall(header_block)
        for chunk in response.body_iter:
            if not chunk:
                continue
            if response.use_chunked:
                client_socket.sendall(f"{len(chunk):X}\r\n".encode() + chunk + b"\r\n")
            else:
                client_socket.sendall(chunk)
        if response.use_chunked:
            client_socket.sendall(b"0\r\n\r\n")
    else:
        client_socket.sendall(header_block + response.body)
    IO_LOGGER.debug(
        "Sent response",
        extra={"status_code": response.status_code, "use_chunked": response.use_chunked},
    )
