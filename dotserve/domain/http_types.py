"""Shared HTTP type definitions to avoid circular imports."""

from dataclasses import dataclass
from typing import Callable, Iterable, Optional


@dataclass
class HttpRequest:
    """Represents a parsed HTTP request."""

    method: str
    path: str
    headers: dict[str, str]
    body: bytes = b""
    client: str = "-"
    query: str = ""
    version: str = "HTTP/1.1"

    def is_conditional(self) -> bool:
        """Return True when the request may be answered with 304 Not Modified."""
        return bool(
            self.headers.get("if-none-match") or self.headers.get("if-modified-since")
        )


@dataclass
class HttpResponse:
    """Represents an HTTP response to be sent to a client.

    Streamed bodies come from ``body_iter``. They are sent with the
    ``Content-Length`` the producer declared, or chunked when ``use_chunked``
    is set.
    """

    status_line: str
    headers: dict[str, str]
    body: bytes
    close_connection: bool
    body_iter: Optional[Iterable[bytes]] = None
    use_chunked: bool = False

    @property
    def status_code(self) -> int:
        """Numeric status parsed from the status line."""
        return int(self.status_line.split(" ", 2)[1])


Handler = Callable[[HttpRequest], HttpResponse]


def should_close(headers: dict[str, str]) -> bool:
    """Determine whether the connection should be closed after responding."""
    return headers.get("connection", "").lower() == "close"
