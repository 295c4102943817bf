"""Request correlation ID management using contextvars."""

import contextvars
import logging
import uuid
from typing import Any, MutableMapping, Optional

LOGGER_ROOT = "dotserve"
MAX_INCOMING_ID_LENGTH = 128

_correlation_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id", default=None
)


def generate_correlation_id() -> str:
    """Generate a new correlation ID using UUID4."""
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    """Retrieve the current correlation ID from context."""
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    """Store a correlation ID in the current context."""
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    """Remove the correlation ID from the current context."""
    _correlation_id_var.set(None)


def adopt_incoming_correlation_id(value: Optional[str]) -> None:
    """Replace the current ID with a client supplied X-Request-ID when usable."""
    if not value:
        return
    candidate = value.strip()
    if not candidate or len(candidate) > MAX_INCOMING_ID_LENGTH:
        return
    if not candidate.isprintable():
        return
    set_correlation_id(candidate)


class CorrelationLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that injects the correlation ID and component name."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        """Add correlation_id and component to the extra dict."""
        if "extra" not in kwargs:
            kwargs["extra"] = {}
        else:
            kwargs["extra"] = dict(kwargs["extra"])

        correlation_id = get_correlation_id()
        kwargs["extra"]["correlation_id"] = (
            correlation_id if correlation_id is not None else "-"
        )
        kwargs["extra"]["component"] = component_for(self.logger.name)
        return msg, kwargs


def component_for(logger_name: str) -> str:
    """Strip the project prefix from a logger name."""
    prefix = f"{LOGGER_ROOT}."
    if logger_name.startswith(prefix):
        return logger_name[len(prefix) :]
    return logger_name
