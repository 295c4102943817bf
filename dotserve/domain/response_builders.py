"""Pure HTTP response builders."""

import html
from typing import Iterable, Optional

from dotserve.domain.http_types import HttpRequest, HttpResponse, should_close

TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"
HTML_CONTENT_TYPE = "text/html; charset=utf-8"


def _connection_preference(request: Optional[HttpRequest]) -> bool:
    return should_close(request.headers) if request is not None else True


def text_response(
    status_line: str,
    message: str,
    request: Optional[HttpRequest],
    security_headers: dict[str, str],
    extra_headers: Optional[dict[str, str]] = None,
) -> HttpResponse:
    """Return a text/plain response with the given status and message."""
    headers = {
        "Content-Type": TEXT_CONTENT_TYPE,
        **(extra_headers or {}),
        **security_headers,
    }
    return HttpResponse(
        status_line,
        headers,
        message.encode(),
        _connection_preference(request),
    )


def not_found_response(
    request: HttpRequest, security_headers: dict[str, str]
) -> HttpResponse:
    """Return a 404 response reusing the connection preference."""
    return text_response(
        "HTTP/1.1 404 Not Found", "404 page not found\n", request, security_headers
    )


def forbidden_response(
    request: Optional[HttpRequest], security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a 403 response honoring the caller's connection preference."""
    return text_response(
        "HTTP/1.1 403 Forbidden", "403 Forbidden\n", request, security_headers
    )


def bad_request_response(
    request: Optional[HttpRequest], security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a 400 response honoring the caller's connection preference."""
    return text_response(
        "HTTP/1.1 400 Bad Request", "400 Bad Request\n", request, security_headers
    )


def entity_too_large_response(security_headers: dict[str, str]) -> HttpResponse:
    """Produce a 413 response that always closes the connection."""
    return text_response(
        "HTTP/1.1 413 Payload Too Large",
        "413 Payload Too Large\n",
        None,
        security_headers,
    )


def method_not_allowed_response(
    request: HttpRequest,
    security_headers: dict[str, str],
    allowed_methods: Iterable[str],
) -> HttpResponse:
    """Produce a 405 response enumerating the supported HTTP methods."""
    allow_header = ", ".join(sorted(allowed_methods))
    return text_response(
        "HTTP/1.1 405 Method Not Allowed",
        "405 Method Not Allowed\n",
        request,
        security_headers,
        {"Allow": allow_header},
    )


def unauthorized_response(
    request: HttpRequest, realm: str, security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a 401 response carrying a Basic authentication challenge."""
    return text_response(
        "HTTP/1.1 401 Unauthorized",
        "Unauthorized\n",
        request,
        security_headers,
        {"WWW-Authenticate": f'Basic realm="{realm}"'},
    )


def not_modified_response(
    request: HttpRequest, headers: dict[str, str]
) -> HttpResponse:
    """Produce a bodiless 304 response keeping validator headers."""
    kept = {
        name: value
        for name, value in headers.items()
        if name not in ("Content-Type", "Content-Length")
    }
    return HttpResponse(
        "HTTP/1.1 304 Not Modified",
        kept,
        b"",
        should_close(request.headers),
    )


def redirect_response(
    request: HttpRequest, location: str, security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a 301 pointing at the canonical location of a resource."""
    body = f'<a href="{html.escape(location)}">Moved Permanently</a>.\n\n'
    headers = {
        "Content-Type": HTML_CONTENT_TYPE,
        "Location": location,
        **security_headers,
    }
    return HttpResponse(
        "HTTP/1.1 301 Moved Permanently",
        headers,
        body.encode(),
        should_close(request.headers),
    )


def range_not_satisfiable_response(
    request: HttpRequest, size: int, security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a 416 response advertising the full resource length."""
    return text_response(
        "HTTP/1.1 416 Requested Range Not Satisfiable",
        "invalid range\n",
        request,
        security_headers,
        {"Content-Range": f"bytes */{size}"},
    )


def html_response(
    markup: str, request: HttpRequest, security_headers: dict[str, str]
) -> HttpResponse:
    """Return a 200 text/html response."""
    headers = {"Content-Type": HTML_CONTENT_TYPE, **security_headers}
    return HttpResponse(
        "HTTP/1.1 200 OK", headers, markup.encode(), should_close(request.headers)
    )
