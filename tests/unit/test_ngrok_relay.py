"""Unit tests for the ngrok relay adapter with a mocked SDK."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from dotserve.lifecycle.tunnel import TunnelError
from dotserve.relay import ngrok_relay
from dotserve.relay.ngrok_relay import NgrokRelay


@pytest.fixture(name="relay")
def fixture_relay():
    relay = NgrokRelay(timeout=1.0)
    yield relay
    relay.shutdown()


@pytest.fixture(name="sdk")
def fixture_sdk(monkeypatch):
    """Patch SessionBuilder with a fluent MagicMock chain and record close order."""
    calls = []
    listener = MagicMock()
    listener.url.return_value = "https://abc123.ngrok.app"
    listener.close = AsyncMock(side_effect=lambda: calls.append("listener"))

    session = MagicMock()
    session.http_endpoint.return_value.listen = AsyncMock(return_value=listener)
    session.close = AsyncMock(side_effect=lambda: calls.append("session"))

    builder = MagicMock()
    builder.authtoken_from_env.return_value = builder
    builder.handle_stop_command.return_value = builder
    builder.handle_restart_command.return_value = builder
    builder.connect = AsyncMock(return_value=session)

    monkeypatch.setattr(ngrok_relay.ngrok, "SessionBuilder", MagicMock(return_value=builder))
    return {"builder": builder, "session": session, "listener": listener, "calls": calls}


def test_open_registers_callbacks_and_forwards_to_target(relay, sdk):
    on_stop, on_restart = MagicMock(), MagicMock()

    tunnel = relay.open("127.0.0.1:8080", on_stop, on_restart)

    builder = sdk["builder"]
    builder.authtoken_from_env.assert_called_once_with()
    builder.handle_stop_command.assert_called_once_with(on_stop)
    builder.handle_restart_command.assert_called_once_with(on_restart)
    builder.connect.assert_awaited_once()
    sdk["session"].http_endpoint.return_value.listen.assert_awaited_once()
    sdk["listener"].forward.assert_called_once_with("127.0.0.1:8080")
    assert tunnel.url == "https://abc123.ngrok.app"


def test_close_shuts_listener_before_session(relay, sdk):
    tunnel = relay.open("127.0.0.1:8080", MagicMock(), MagicMock())
    tunnel.close()
    assert sdk["calls"] == ["listener", "session"]


def test_sdk_errors_become_tunnel_errors(relay, sdk):
    sdk["builder"].connect = AsyncMock(side_effect=ValueError("invalid authtoken"))
    with pytest.raises(TunnelError, match="invalid authtoken"):
        relay.open("127.0.0.1:8080", MagicMock(), MagicMock())


def test_close_errors_become_tunnel_errors(relay, sdk):
    tunnel = relay.open("127.0.0.1:8080", MagicMock(), MagicMock())
    sdk["listener"].close = AsyncMock(side_effect=RuntimeError("already closed"))
    with pytest.raises(TunnelError):
        tunnel.close()


def test_slow_operations_time_out_as_tunnel_errors(relay):
    with pytest.raises(TunnelError, match="timed out"):
        relay.run(asyncio.sleep(5), timeout=0.1)


def test_shutdown_is_idempotent():
    relay = NgrokRelay()
    relay.shutdown()
    relay.shutdown()
