"""Context object shared across worker threads."""

from dataclasses import dataclass

from dotserve.bootstrap.config import DEFAULT_SOCKET_TIMEOUT
from dotserve.domain.http_types import Handler
from dotserve.lifecycle.state import ServerLifecycle


@dataclass
class WorkerContext:
    """Dependencies shared across handler threads."""

    handler: Handler
    lifecycle: ServerLifecycle
    socket_timeout: float = DEFAULT_SOCKET_TIMEOUT
