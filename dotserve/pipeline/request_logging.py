"""Request logging middleware."""

import logging

from dotserve.domain.correlation_id import CorrelationLoggerAdapter
from dotserve.domain.http_types import Handler, HttpRequest, HttpResponse

REQUEST_LOGGER = CorrelationLoggerAdapter(logging.getLogger("dotserve.requests"), {})


class RequestLoggingMiddleware:
    """Log the client address, method and path of every request."""

    name = "logging"

    def __init__(self, inner: Handler) -> None:
        self.inner = inner

    def __call__(self, request: HttpRequest) -> HttpResponse:
        REQUEST_LOGGER.info(
            "Request received",
            extra={
                "event": "request_received",
                "client": request.client,
                "method": request.method,
                "route": request.path,
            },
        )
        return self.inner(request)
