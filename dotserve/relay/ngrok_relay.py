"""Tunnel relay backed by the ngrok agent SDK."""

import asyncio
import logging
import threading
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Coroutine, Optional

import ngrok

from dotserve.domain.correlation_id import CorrelationLoggerAdapter
from dotserve.lifecycle.tunnel import TunnelError

RELAY_LOGGER = CorrelationLoggerAdapter(logging.getLogger("dotserve.relay"), {})

DEFAULT_RELAY_TIMEOUT = 30.0


class NgrokSession:
    """One ngrok agent session with a single HTTP endpoint listener."""

    def __init__(self, relay: "NgrokRelay", session: Any, listener: Any) -> None:
        self._relay = relay
        self._session = session
        self._listener = listener
        self.url: str = listener.url()

    async def _close(self) -> None:
        await self._listener.close()
        await self._session.close()

    def close(self) -> None:
        self._relay.run(self._close())


class NgrokRelay:
    """Run the asyncio based ngrok SDK on a private event loop thread.

    The authtoken is read from ``NGROK_AUTHTOKEN`` by the SDK itself and
    never passes through this process's configuration.
    """

    def __init__(self, timeout: float = DEFAULT_RELAY_TIMEOUT) -> None:
        self.timeout = timeout
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop, name="dotserve-relay", daemon=True
        )
        self._thread.start()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def run(self, coroutine: Coroutine[Any, Any, Any], timeout: Optional[float] = None):
        """Execute a coroutine on the relay loop and wait for its result."""
        future = asyncio.run_coroutine_threadsafe(coroutine, self._loop)
        try:
            return future.result(self.timeout if timeout is None else timeout)
        except FutureTimeoutError as error:
            future.cancel()
            raise TunnelError("relay operation timed out") from error
        except TunnelError:
            raise
        except Exception as error:  # pylint: disable=broad-except
            raise TunnelError(str(error)) from error

    async def _open(
        self,
        target: str,
        on_stop: Callable[..., None],
        on_restart: Callable[..., None],
    ) -> NgrokSession:
        builder = (
            ngrok.SessionBuilder()
            .authtoken_from_env()
            .handle_stop_command(on_stop)
            .handle_restart_command(on_restart)
        )
        session = await builder.connect()
        listener = await session.http_endpoint().listen()
        listener.forward(target)
        return NgrokSession(self, session, listener)

    def open(
        self,
        target: str,
        on_stop: Callable[..., None],
        on_restart: Callable[..., None],
    ) -> NgrokSession:
        """Connect a session forwarding public HTTP traffic to ``target``."""
        RELAY_LOGGER.debug(
            "Opening relay session", extra={"event": "relay_opening", "target": target}
        )
        return self.run(self._open(target, on_stop, on_restart))

    def shutdown(self) -> None:
        """Stop the relay loop; further ``run`` calls are invalid."""
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=1.0)
        if not self._thread.is_alive():
            self._loop.close()
